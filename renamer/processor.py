"""Single-file pipeline: categorize, name and optionally validate."""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Mapping
from enum import Enum
from pathlib import Path
from typing import Any

from renamer.ai_provider import AIProvider
from renamer.config_utils import Settings, resolve_stage_model
from renamer.content_extractor import FileRef, describe_file
from renamer.errors import (
    ItemProcessingError,
    ProviderContentError,
    ProviderError,
    ProviderUnavailableError,
)
from renamer.filename_utils import (
    UnusableNameError,
    extract_name_hints,
    sanitize_suggested_name,
)
from renamer.prompts import (
    build_categorization_prompt,
    build_naming_prompt,
    build_validation_prompt,
    format_retry_feedback,
)
from renamer.schema import ProcessResult, StageTimings, ValidationAttempt

logger = logging.getLogger(__name__)


class ItemStage(str, Enum):
    PENDING = "pending"
    CATEGORIZING = "categorizing"
    NAMING = "naming"
    VALIDATING = "validating"
    DONE = "done"
    ERROR = "error"


StageCallback = Callable[[str, ItemStage], None]
Describer = Callable[..., FileRef]

CATEGORY_SYNONYMS = {
    "receipt": "invoice",
    "bill": "invoice",
    "order": "invoice",
    "picture": "photo",
    "image": "photo",
    "notes": "note",
    "document": "note",
    "meeting": "meeting_notes",
    "screen": "screenshot",
    "capture": "screenshot",
}


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def normalize_category(
    raw_category: str, categories: Mapping[str, str], fallback: str
) -> str:
    """Map a model's category answer onto a configured category key."""
    cleaned = re.sub(
        r"^(category|type|result|answer)[\s:]+", "", raw_category.strip(), flags=re.I
    )
    normalized = re.sub(r"[^a-z_]", "", re.sub(r"\s+", "_", cleaned.lower()))
    if normalized in categories:
        return normalized
    if normalized:
        for key in categories:
            if key in normalized or (len(normalized) >= 3 and normalized in key):
                return key
        for synonym, key in CATEGORY_SYNONYMS.items():
            if synonym in normalized and key in categories:
                return key
    logger.warning(
        "Category %r is not configured; using fallback %r", raw_category, fallback
    )
    return fallback


class ItemProcessor:
    """Run one file through categorize -> name -> (validate)*.

    Provider errors during categorization or naming surface as
    :class:`ItemProcessingError`. A name that never passes validation is still
    returned, tagged with ``validation_passed=False``.
    """

    def __init__(
        self,
        provider: AIProvider,
        settings: Settings,
        *,
        describe: Describer = describe_file,
    ) -> None:
        self.provider = provider
        self.settings = settings
        self._describe = describe

    def _model(self, stage: str) -> dict[str, Any]:
        return resolve_stage_model(self.settings.models, stage)

    def process(
        self,
        file_path: str,
        *,
        feedback: str | None = None,
        rejected_name: str | None = None,
        is_regeneration: bool = False,
        category: str | None = None,
        on_stage: StageCallback | None = None,
    ) -> ProcessResult:
        processing = self.settings.processing
        total_start = time.perf_counter()
        timings = StageTimings()
        models: dict[str, str] = {}
        prompts: dict[str, str] = {}
        responses: dict[str, str] = {}

        def enter(stage: ItemStage) -> None:
            logger.debug("%s -> %s", file_path, stage.value)
            if on_stage is not None:
                on_stage(file_path, stage)

        enter(ItemStage.PENDING)
        try:
            file_ref = self._describe(file_path, max_chars=processing.max_content_chars)
        except OSError as exc:
            enter(ItemStage.ERROR)
            raise ItemProcessingError(file_path, ItemStage.PENDING.value, exc) from exc

        # Categorize
        category_reasoning = None
        if category is None:
            enter(ItemStage.CATEGORIZING)
            model = self._model("categorization")
            prompt = build_categorization_prompt(
                file_name=file_ref.name,
                categories=self.settings.categories,
                content=file_ref.content,
                metadata=file_ref.metadata,
            )
            stage_start = time.perf_counter()
            try:
                response = self.provider.categorize(file_ref, prompt, model=model)
            except ProviderError as exc:
                enter(ItemStage.ERROR)
                raise ItemProcessingError(
                    file_path, ItemStage.CATEGORIZING.value, exc
                ) from exc
            timings.categorization_ms = _elapsed_ms(stage_start)
            category = normalize_category(
                response.category,
                self.settings.categories,
                processing.fallback_category,
            )
            category_reasoning = response.reasoning
            models["categorization"] = model["name"]
            prompts["categorization"] = prompt
            responses["categorization"] = response.raw
            logger.info("Categorized %s as %s", file_ref.name, category)

        # Name, validating each candidate when enabled
        naming_stage = "regeneration" if is_regeneration else "naming"
        naming_model = self._model(naming_stage)
        validation_model = self._model("validation")
        max_attempts = (
            processing.validation_retry_count if processing.enable_validation else 1
        )
        hints = extract_name_hints(file_ref.name)

        attempts: list[ValidationAttempt] = []
        failures: list[str] = []
        retry_feedback: str | None = None
        best_name: str | None = None
        naming_reasoning: str | None = None
        last_error: Exception | None = None

        for attempt in range(1, max_attempts + 1):
            enter(ItemStage.NAMING)
            naming_prompt = build_naming_prompt(
                file_name=file_ref.name,
                file_type=file_ref.mime_type,
                category=category,
                category_description=self.settings.categories.get(category),
                content=file_ref.content,
                metadata=file_ref.metadata,
                hints=hints,
                feedback=feedback,
                rejected_name=rejected_name,
                retry_feedback=retry_feedback,
                max_content_chars=processing.max_content_chars,
            )
            stage_start = time.perf_counter()
            try:
                generated = self.provider.generate_name(
                    file_ref, naming_prompt, model=naming_model
                )
                candidate = sanitize_suggested_name(generated.name, file_ref.name)
            except ProviderUnavailableError as exc:
                enter(ItemStage.ERROR)
                raise ItemProcessingError(
                    file_path, ItemStage.NAMING.value, exc
                ) from exc
            except (ProviderError, UnusableNameError) as exc:
                timings.naming_ms += _elapsed_ms(stage_start)
                last_error = exc
                logger.warning(
                    "Naming attempt %d/%d for %s produced no usable name: %s",
                    attempt,
                    max_attempts,
                    file_ref.name,
                    exc,
                )
                attempts.append(
                    ValidationAttempt(
                        attempt=attempt,
                        passed=False,
                        reason=f"No usable filename generated: {exc}",
                        prompt=naming_prompt,
                        model=naming_model["name"],
                    )
                )
                failures.append(str(exc))
                retry_feedback = format_retry_feedback(str(exc), None)
                continue
            timings.naming_ms += _elapsed_ms(stage_start)
            best_name = candidate
            naming_reasoning = generated.reasoning
            models[naming_stage] = naming_model["name"]
            prompts[naming_stage] = naming_prompt
            responses[naming_stage] = generated.raw

            if not processing.enable_validation:
                break

            enter(ItemStage.VALIDATING)
            validation_prompt = build_validation_prompt(
                original_name=file_ref.name,
                generated_name=candidate,
                category=category,
                content=file_ref.content,
                naming_prompt=naming_prompt,
                previous_failures=failures,
            )
            stage_start = time.perf_counter()
            try:
                verdict = self.provider.validate_name(
                    file_ref, validation_prompt, model=validation_model
                )
                passed = verdict.valid
                reason = verdict.reason
                suggested_fix = verdict.suggested_fix
                raw_verdict = verdict.raw
            except ProviderError as exc:
                passed = False
                reason = f"Validation call failed: {exc}"
                suggested_fix = None
                raw_verdict = None
            duration = _elapsed_ms(stage_start)
            timings.validation_ms += duration
            models["validation"] = validation_model["name"]
            attempts.append(
                ValidationAttempt(
                    attempt=attempt,
                    filename=candidate,
                    passed=passed,
                    reason=reason,
                    suggested_fix=suggested_fix,
                    prompt=validation_prompt,
                    response=raw_verdict,
                    duration_ms=duration,
                    model=validation_model["name"],
                )
            )
            if passed:
                logger.info(
                    "Validation passed for %s on attempt %d", candidate, attempt
                )
                break
            logger.info(
                "Validation failed for %s (attempt %d/%d): %s",
                candidate,
                attempt,
                max_attempts,
                reason,
            )
            failures.append(reason or "No reason provided")
            retry_feedback = format_retry_feedback(reason, suggested_fix)

        if best_name is None:
            enter(ItemStage.ERROR)
            cause = last_error or ProviderContentError("No filename generated")
            if not isinstance(cause, ProviderError):
                cause = ProviderContentError(str(cause))
            raise ItemProcessingError(file_path, ItemStage.NAMING.value, cause)

        validation_passed = None
        if processing.enable_validation:
            validation_passed = attempts[-1].passed
        if validation_passed is False:
            logger.warning(
                "Returning unvalidated name %s for %s after %d attempts",
                best_name,
                file_ref.name,
                len(attempts),
            )

        timings.total_ms = _elapsed_ms(total_start)
        enter(ItemStage.DONE)
        return ProcessResult(
            file_path=file_path,
            original_name=Path(file_path).name,
            category=category,
            category_reasoning=category_reasoning,
            ai_suggested_name=best_name,
            naming_reasoning=naming_reasoning,
            validation_passed=validation_passed,
            validation_attempts=attempts,
            timings=timings,
            models=models,
            prompts=prompts,
            responses=responses,
            is_regeneration=is_regeneration,
            feedback=feedback,
            rejected_name=rejected_name,
        )
