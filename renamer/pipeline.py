"""Caller-facing entry point that wires the pipeline components together."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path

from renamer.ai_provider import AIProvider, OllamaProvider
from renamer.batch_processor import (
    BatchCompleteCallback,
    BatchHandle,
    BatchProcessor,
    ItemCompleteCallback,
    ItemFailedCallback,
    ProgressCallback,
)
from renamer.config_utils import Settings, load_settings
from renamer.database_manager import Database, initialize_db
from renamer.errors import ExecutorError, FeedbackError
from renamer.executor import ApplyOutcome, LocalRenameExecutor, RenameExecutor
from renamer.feedback import FeedbackTracker
from renamer.filename_utils import UnusableNameError, sanitize_suggested_name
from renamer.processor import ItemProcessor, StageCallback
from renamer.queue_store import QueueStore
from renamer.resume import InterruptedBatch, ResumeController
from renamer.schema import (
    Batch,
    CategoryEffectiveness,
    FeedbackAction,
    FeedbackRecord,
    ProcessResult,
    RegenerationStats,
    SuggestionLog,
    TimeRange,
)

logger = logging.getLogger(__name__)


class RenamePipeline:
    """Batch categorize-and-rename with resume and a feedback ledger."""

    def __init__(
        self,
        settings: Settings,
        *,
        provider: AIProvider | None = None,
        db: Database | None = None,
        executor: RenameExecutor | None = None,
        on_progress: ProgressCallback | None = None,
        on_item_complete: ItemCompleteCallback | None = None,
        on_item_failed: ItemFailedCallback | None = None,
        on_batch_complete: BatchCompleteCallback | None = None,
        on_item_stage: StageCallback | None = None,
    ) -> None:
        self.settings = settings
        self.db = db or initialize_db(settings.storage.database_path)
        self.provider = provider or OllamaProvider(
            host=settings.ollama.host, timeout=settings.ollama.timeout
        )
        self.queue_store = QueueStore(self.db)
        self.feedback = FeedbackTracker(self.db, self.queue_store)
        self.processor = ItemProcessor(self.provider, settings)
        self.batch_processor = BatchProcessor(
            self.processor,
            self.queue_store,
            feedback=self.feedback,
            default_concurrency=settings.processing.parallel_files,
            on_progress=on_progress,
            on_item_complete=on_item_complete,
            on_item_failed=on_item_failed,
            on_batch_complete=on_batch_complete,
            on_item_stage=on_item_stage,
        )
        self.resume_controller = ResumeController(
            self.queue_store, self.batch_processor
        )
        self.executor = executor or LocalRenameExecutor(settings.folders)

    @classmethod
    def from_config(
        cls, config_path: Path | str | None = None, **kwargs
    ) -> "RenamePipeline":
        return cls(load_settings(config_path), **kwargs)

    def close(self) -> None:
        self.db.close()

    # Batches

    def start_batch(
        self,
        file_paths: Sequence[str],
        concurrency: int | None = None,
        *,
        directory: str | None = None,
    ) -> BatchHandle:
        return self.batch_processor.start(file_paths, concurrency, directory=directory)

    def cancel_batch(self) -> None:
        self.batch_processor.cancel()

    def check_for_interrupted_batch(self) -> InterruptedBatch | None:
        return self.resume_controller.check_for_interrupted_batch()

    def resume_batch(
        self, batch: InterruptedBatch | Batch | str, concurrency: int | None = None
    ) -> BatchHandle:
        return self.resume_controller.resume(batch, concurrency)

    def dismiss_batch(self, batch: InterruptedBatch | Batch | str) -> None:
        self.resume_controller.dismiss(batch)

    def get_result(self, file_path: str) -> ProcessResult | None:
        return self.queue_store.find_latest_result(file_path)

    # Single-file actions

    def regenerate(self, file_path: str, feedback: str | None = None) -> ProcessResult:
        """Reject the current suggestion and ask for a different name.

        Returns the stored result: its ``ai_suggested_name`` is unchanged and
        ``suggested_name`` holds the new name.
        """
        previous = self.get_result(file_path)
        latest = self.feedback.upsert_or_create(file_path)
        rejected_name = None
        category = None
        if previous is not None:
            rejected_name = previous.suggested_name
            category = previous.category
        if latest is not None:
            rejected_name = rejected_name or latest.ai_suggested_name
            category = category or latest.category
            if latest.action is not FeedbackAction.REJECTED:
                self.feedback.record(file_path, FeedbackAction.REJECTED)

        result = self.processor.process(
            file_path,
            feedback=feedback,
            rejected_name=rejected_name,
            is_regeneration=True,
            category=category,
        )
        self.feedback.log_suggestion(result)
        stored = self.queue_store.update_result(file_path, result)
        logger.info(
            "Regenerated %s: %s -> %s",
            file_path,
            rejected_name,
            result.suggested_name,
        )
        return stored or result

    def edit_suggestion(self, file_path: str, name: str) -> ProcessResult:
        """Save the user's own name as the proposal for ``file_path``."""
        stored = self.get_result(file_path)
        if stored is None:
            raise FeedbackError(f"No processed result exists for {file_path}")
        try:
            name = sanitize_suggested_name(name, stored.original_name)
        except UnusableNameError as exc:
            raise FeedbackError(f"Cannot use {name!r}: {exc}") from exc
        updated = self.queue_store.update_suggested_name(file_path, name)
        if updated is None:
            raise FeedbackError(f"No processed result exists for {file_path}")
        logger.info("Edited suggestion for %s: %s", file_path, name)
        return updated

    def apply(self, file_path: str, final_name: str | None = None) -> ApplyOutcome:
        """Rename ``file_path`` and record the outcome as accepted or edited.

        Without ``final_name`` the stored ``suggested_name`` is used. Edit
        distance is always measured against the AI's own suggestion.
        """
        latest = self.feedback.upsert_or_create(file_path)
        if latest is None or not latest.ai_suggested_name:
            raise FeedbackError(f"No suggestion to apply for {file_path}")

        stored = self.get_result(file_path)
        name = final_name
        if not name and stored is not None:
            name = stored.suggested_name
        name = name or latest.ai_suggested_name
        action = (
            FeedbackAction.ACCEPTED
            if name == latest.ai_suggested_name
            else FeedbackAction.EDITED
        )
        outcome = self.executor.apply(file_path, name, category=latest.category)
        self.feedback.record(file_path, action, final_name=name)
        return outcome

    def apply_many(
        self, items: Iterable[tuple[str, str | None]]
    ) -> tuple[list[ApplyOutcome], dict[str, str]]:
        """Apply several renames; one failure does not stop the others."""
        outcomes: list[ApplyOutcome] = []
        errors: dict[str, str] = {}
        for file_path, final_name in items:
            try:
                outcomes.append(self.apply(file_path, final_name))
            except (ExecutorError, FeedbackError) as exc:
                logger.error("Could not apply %s: %s", file_path, exc)
                errors[file_path] = str(exc)
        return outcomes, errors

    def reject(self, file_path: str) -> FeedbackRecord:
        return self.feedback.record(file_path, FeedbackAction.REJECTED)

    def skip(self, file_path: str) -> FeedbackRecord:
        return self.feedback.record(file_path, FeedbackAction.SKIPPED)

    def record_feedback(
        self,
        file_path: str,
        action: FeedbackAction | str,
        final_name: str | None = None,
    ) -> FeedbackRecord:
        return self.feedback.record(file_path, action, final_name)

    # Effectiveness

    def get_effectiveness(
        self, time_range: TimeRange | str = TimeRange.ALL
    ) -> list[CategoryEffectiveness]:
        return self.feedback.get_effectiveness(time_range)

    def get_low_performing(
        self, threshold: float = 50, time_range: TimeRange | str = TimeRange.ALL
    ) -> list[CategoryEffectiveness]:
        return self.feedback.get_low_performing(threshold, time_range)

    def get_recent_rejections(
        self, limit: int = 10, time_range: TimeRange | str = TimeRange.ALL
    ) -> list[SuggestionLog]:
        return self.feedback.get_recent_rejections(limit, time_range)

    def get_regeneration_stats(
        self, time_range: TimeRange | str = TimeRange.ALL
    ) -> tuple[RegenerationStats, list[RegenerationStats]]:
        return self.feedback.get_regeneration_stats(time_range)

    def cleanup(self, days: int | None = None) -> tuple[int, int]:
        """Apply retention; returns (ledger rows, batches) removed."""
        if days is None:
            days = self.settings.storage.retention_days
        return (
            self.feedback.cleanup_old_records(days),
            self.queue_store.cleanup_finished(days),
        )
