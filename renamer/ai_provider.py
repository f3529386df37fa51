"""AI provider interface and the default Ollama implementation."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
import ollama

from renamer.config_utils import build_ollama_options
from renamer.content_extractor import FileRef
from renamer.errors import (
    ProviderContentError,
    ProviderError,
    ProviderUnavailableError,
)
from renamer.prompts import (
    JSON_OUTPUT_OPTIONS,
    JSON_RESPONSE_FORMAT,
    JSON_SYSTEM_MESSAGE,
    STRICT_JSON_REMINDER,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0
DEFAULT_JSON_ATTEMPTS = 2


@dataclass
class CategorizationResponse:
    category: str
    reasoning: str | None = None
    raw: str = ""


@dataclass
class NamingResponse:
    name: str
    reasoning: str | None = None
    raw: str = ""


@dataclass
class ValidationResponse:
    valid: bool
    reason: str | None = None
    suggested_fix: str | None = None
    raw: str = ""


class AIProvider(Protocol):
    """Anything that can categorize, name and validate a file.

    ``model`` is a normalized model entry (``name`` plus optional
    ``context_window``). Implementations raise ``ProviderUnavailableError`` when
    the backend cannot be reached and ``ProviderContentError`` when it answers
    with something unusable.
    """

    def categorize(
        self, file_ref: FileRef, prompt: str, *, model: Mapping[str, Any]
    ) -> CategorizationResponse: ...

    def generate_name(
        self, file_ref: FileRef, prompt: str, *, model: Mapping[str, Any]
    ) -> NamingResponse: ...

    def validate_name(
        self, file_ref: FileRef, prompt: str, *, model: Mapping[str, Any]
    ) -> ValidationResponse: ...


def _clean_json_response(response_text: str) -> str:
    """Strip code fences that models like to wrap JSON in."""
    response_text = response_text.strip()
    if response_text.startswith("```json"):
        response_text = response_text[7:]
    elif response_text.startswith("```"):
        response_text = response_text[3:]
    if response_text.endswith("```"):
        response_text = response_text[:-3]
    return response_text.strip()


def _extract_json_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` block in ``text``."""
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escape = False
    for position in range(start, len(text)):
        char = text[position]
        if escape:
            escape = False
            continue
        if char == "\\":
            escape = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : position + 1]
    return None


def _parse_json_payload(payload: str) -> Any:
    cleaned = _clean_json_response(payload)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        candidate = _extract_json_object(cleaned)
        if candidate and candidate != cleaned:
            try:
                return json.loads(candidate)
            except json.JSONDecodeError:
                logger.debug("Failed to parse extracted JSON segment: %s", candidate)
        raise


def _ollama_chat(
    model: str,
    messages: list[dict[str, Any]],
    *,
    options: dict[str, Any] | None = None,
    response_format: str | None = None,
    timeout: float | None = None,
    host: str | None = None,
) -> Any:
    """Invoke Ollama chat with optional configuration."""
    request: dict[str, Any] = {"model": model, "messages": messages}
    if options:
        request["options"] = dict(options)
    if response_format:
        request["format"] = response_format
    if host or (timeout and timeout > 0):
        client = ollama.Client(host=host, timeout=timeout)
        return client.chat(**request)
    return ollama.chat(**request)


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class OllamaProvider:
    """:class:`AIProvider` backed by a local Ollama server."""

    def __init__(
        self,
        *,
        host: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_json_attempts: int = DEFAULT_JSON_ATTEMPTS,
    ) -> None:
        self.host = host
        self.timeout = timeout
        self.max_json_attempts = max(1, max_json_attempts)

    def _chat_json(
        self,
        file_ref: FileRef,
        prompt: str,
        model: Mapping[str, Any],
        context: str,
    ) -> tuple[dict[str, Any], str]:
        """Send ``prompt`` and return the parsed JSON object plus raw text."""
        model_name = model["name"]
        options = {**JSON_OUTPUT_OPTIONS, **build_ollama_options(model)}
        prompt_to_send = prompt

        for attempt in range(1, self.max_json_attempts + 1):
            user_message: dict[str, Any] = {"role": "user", "content": prompt_to_send}
            if file_ref.is_image:
                user_message["images"] = [file_ref.image_base64]
            try:
                response = _ollama_chat(
                    model_name,
                    [{"role": "system", "content": JSON_SYSTEM_MESSAGE}, user_message],
                    options=options,
                    response_format=JSON_RESPONSE_FORMAT,
                    timeout=self.timeout,
                    host=self.host,
                )
            except (httpx.ConnectError, httpx.TimeoutException, ConnectionError) as exc:
                raise ProviderUnavailableError(
                    f"Ollama unreachable during {context}: {exc}"
                ) from exc
            except ollama.ResponseError as exc:
                raise ProviderError(f"Ollama rejected {context}: {exc}") from exc

            raw = (response["message"]["content"] or "").strip()
            if not raw:
                logger.warning(
                    "%s returned an empty response (attempt %d/%d)",
                    context,
                    attempt,
                    self.max_json_attempts,
                )
                prompt_to_send = f"{prompt}\n\n{STRICT_JSON_REMINDER}"
                continue
            try:
                parsed = _parse_json_payload(raw)
            except json.JSONDecodeError as exc:
                logger.warning(
                    "%s returned invalid JSON (attempt %d/%d): %s",
                    context,
                    attempt,
                    self.max_json_attempts,
                    exc,
                )
                prompt_to_send = f"{prompt}\n\n{STRICT_JSON_REMINDER}"
                continue
            if not isinstance(parsed, dict):
                raise ProviderContentError(
                    f"{context} returned {type(parsed).__name__}, expected an object"
                )
            return parsed, raw

        raise ProviderContentError(
            f"{context} did not return valid JSON after "
            f"{self.max_json_attempts} attempts"
        )

    def categorize(
        self, file_ref: FileRef, prompt: str, *, model: Mapping[str, Any]
    ) -> CategorizationResponse:
        parsed, raw = self._chat_json(
            file_ref, prompt, model, f"categorization of {file_ref.name}"
        )
        category = _optional_text(parsed.get("category"))
        if category is None:
            raise ProviderContentError(f"No category returned for {file_ref.name}")
        return CategorizationResponse(
            category=category,
            reasoning=_optional_text(parsed.get("reasoning")),
            raw=raw,
        )

    def generate_name(
        self, file_ref: FileRef, prompt: str, *, model: Mapping[str, Any]
    ) -> NamingResponse:
        parsed, raw = self._chat_json(
            file_ref, prompt, model, f"naming of {file_ref.name}"
        )
        name = _optional_text(parsed.get("filename") or parsed.get("name"))
        if name is None:
            raise ProviderContentError(f"No filename returned for {file_ref.name}")
        return NamingResponse(
            name=name, reasoning=_optional_text(parsed.get("reasoning")), raw=raw
        )

    def validate_name(
        self, file_ref: FileRef, prompt: str, *, model: Mapping[str, Any]
    ) -> ValidationResponse:
        parsed, raw = self._chat_json(
            file_ref, prompt, model, f"validation of {file_ref.name}"
        )
        return ValidationResponse(
            valid=parsed.get("valid") is True,
            reason=_optional_text(parsed.get("reason")) or "No reason provided",
            suggested_fix=_optional_text(
                parsed.get("suggested_fix") or parsed.get("suggestedFix")
            ),
            raw=raw,
        )
