from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ItemStatus(str, Enum):
    """Status of a single file inside a batch."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    COMPLETE = "complete"
    FAILED = "failed"


class BatchStatus(str, Enum):
    """Lifecycle of a batch record."""

    RUNNING = "running"
    INTERRUPTED = "interrupted"
    COMPLETED = "completed"
    DISMISSED = "dismissed"


class FeedbackAction(str, Enum):
    """What the user did with a suggested name."""

    ACCEPTED = "accepted"
    EDITED = "edited"
    REJECTED = "rejected"
    SKIPPED = "skipped"


class TimeRange(str, Enum):
    """Window used by the effectiveness queries."""

    HOUR = "1h"
    DAY = "24h"
    WEEK = "7d"
    MONTH = "30d"
    ALL = "all"

    def since(self, now: datetime | None = None) -> datetime | None:
        """Return the start of the window, or ``None`` for ``all``."""
        if self is TimeRange.ALL:
            return None
        spans = {
            TimeRange.HOUR: timedelta(hours=1),
            TimeRange.DAY: timedelta(days=1),
            TimeRange.WEEK: timedelta(days=7),
            TimeRange.MONTH: timedelta(days=30),
        }
        return (now or utc_now()) - spans[self]


class ValidationAttempt(BaseModel):
    """One naming attempt checked by the validator."""

    attempt: int = Field(ge=1)
    filename: str | None = None
    passed: bool = False
    reason: str | None = None
    suggested_fix: str | None = None
    prompt: str | None = None
    response: str | None = None
    duration_ms: int = 0
    model: str | None = None


class StageTimings(BaseModel):
    categorization_ms: int = 0
    naming_ms: int = 0
    validation_ms: int = 0
    total_ms: int = 0


class ProcessResult(BaseModel):
    """Outcome of categorizing and naming one file.

    ``ai_suggested_name`` is what the model produced (after extension
    enforcement) and never changes. ``suggested_name`` starts out equal to it and
    follows later edits.
    """

    file_path: str
    original_name: str
    category: str
    category_reasoning: str | None = None
    ai_suggested_name: str = Field(frozen=True)
    suggested_name: str | None = None
    naming_reasoning: str | None = None
    validation_passed: bool | None = None
    validation_attempts: list[ValidationAttempt] = Field(default_factory=list)
    timings: StageTimings = Field(default_factory=StageTimings)
    models: dict[str, str] = Field(default_factory=dict)
    prompts: dict[str, str] = Field(default_factory=dict)
    responses: dict[str, str] = Field(default_factory=dict)
    is_regeneration: bool = False
    feedback: str | None = None
    rejected_name: str | None = None

    @model_validator(mode="after")
    def _default_suggested_name(self) -> "ProcessResult":
        if self.suggested_name is None:
            self.suggested_name = self.ai_suggested_name
        return self

    @property
    def model_used(self) -> str | None:
        """Model that produced the name."""
        return self.models.get("regeneration") or self.models.get("naming")


class Batch(BaseModel):
    """A persisted unit of work: an ordered, immutable list of file paths."""

    batch_id: str
    directory: str | None = None
    queue: list[str]
    status: BatchStatus = BatchStatus.RUNNING
    started_at: datetime = Field(default_factory=utc_now)
    last_updated_at: datetime = Field(default_factory=utc_now)

    @property
    def total(self) -> int:
        return len(self.queue)


class QueueItem(BaseModel):
    file_path: str
    position: int
    status: ItemStatus = ItemStatus.PENDING
    error: str | None = None
    result: ProcessResult | None = None
    updated_at: datetime = Field(default_factory=utc_now)


class BatchStats(BaseModel):
    """Item counts derived from stored statuses."""

    total: int = 0
    pending: int = 0
    in_flight: int = 0
    complete: int = 0
    failed: int = 0

    @property
    def finished(self) -> int:
        return self.complete + self.failed

    @property
    def remaining(self) -> int:
        # A crash can leave items in flight; they are retried on resume.
        return self.pending + self.in_flight


class ProgressEvent(BaseModel):
    """Emitted after each group resolves.

    ``completed`` counts every item that reached a terminal state (including
    failures) so it can be shown against ``total``; ``failed`` is the subset
    that failed.
    """

    batch_id: str
    completed: int
    failed: int
    total: int
    group_index: int = 0


class BatchSummary(BaseModel):
    batch_id: str
    total: int
    dispatched: int = 0
    succeeded: int = 0
    failed: int = 0
    cancelled: bool = False
    bookkeeping_errors: int = 0
    status: BatchStatus = BatchStatus.COMPLETED


class SuggestionLog(BaseModel):
    """A row of the suggestion ledger, optionally carrying user feedback."""

    request_id: str
    file_path: str
    original_name: str
    category: str | None = None
    ai_suggested_name: str | None = None
    final_name: str | None = None
    action: FeedbackAction | None = None
    edit_distance: int | None = None
    model: str | None = None
    batch_id: str | None = None
    is_regeneration: bool = False
    regeneration_feedback: str | None = None
    rejected_name: str | None = None
    validation_passed: bool | None = None
    total_ms: int | None = None
    created_at: datetime = Field(default_factory=utc_now)
    feedback_at: datetime | None = None


class FeedbackRecord(BaseModel):
    """User disposition of a suggestion."""

    request_id: str
    file_path: str
    category: str | None = None
    ai_suggested_name: str | None = None
    action: FeedbackAction
    final_name: str | None = None
    edit_distance: int | None = None
    recorded_at: datetime = Field(default_factory=utc_now)

    @field_validator("edit_distance")
    @classmethod
    def _non_negative(cls, value: int | None) -> int | None:
        if value is not None and value < 0:
            raise ValueError("edit_distance cannot be negative")
        return value


class CategoryEffectiveness(BaseModel):
    category: str
    total: int = 0
    accepted: int = 0
    edited: int = 0
    rejected: int = 0
    skipped: int = 0
    acceptance_rate: float | None = None
    avg_edit_distance: float | None = None


class RegenerationStats(BaseModel):
    category: str | None = None
    total: int = 0
    with_feedback: int = 0
    accepted: int = 0
    edited: int = 0
    rejected: int = 0
