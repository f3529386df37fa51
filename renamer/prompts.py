"""Standardized prompts for the categorize, name and validate stages."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any

from renamer.filename_utils import NameHints

JSON_RESPONSE_FORMAT = "json"
JSON_OUTPUT_OPTIONS = {"temperature": 0}
STRICT_JSON_REMINDER = (
    "REMINDER: Reply with strictly valid JSON. Use double quotes for all keys and "
    "string values, include commas between fields, and do not add commentary."
)
JSON_SYSTEM_MESSAGE = (
    "You are a JSON generation engine. Every reply MUST be a single valid JSON "
    "object that strictly follows the caller's schema. Do not add explanations, "
    "code fences, or any text outside the JSON object."
)

CATEGORY_PREVIEW_CHARS = 2000
VALIDATION_PREVIEW_CHARS = 1500

# --- Categorization ---

CATEGORIZATION_INSTRUCTIONS = """You sort files into categories so they can be renamed
consistently. Pick exactly one category from the list below, using the file name,
metadata and content preview. Prefer the most specific category that fits.

Respond with a JSON object with two keys: "category" (one of the listed keys) and
"reasoning" (one short sentence).

Example response:
{
  "category": "invoice",
  "reasoning": "The document lists line items and an amount due."
}"""


def _format_metadata(metadata: Mapping[str, Any] | None) -> str:
    if not metadata:
        return ""
    return f"Metadata: {json.dumps(dict(metadata), indent=2, default=str)}\n"


def build_categorization_prompt(
    *,
    file_name: str,
    categories: Mapping[str, str],
    content: str | None = None,
    metadata: Mapping[str, Any] | None = None,
) -> str:
    """Build the prompt asking the model to pick a category."""
    category_lines = "\n".join(
        f"- {key}: {description}" for key, description in categories.items()
    )
    prompt = (
        f"{CATEGORIZATION_INSTRUCTIONS}\n\n"
        f"Available categories:\n{category_lines}\n\n"
        f"File to categorize: {file_name}\n"
    )
    prompt += _format_metadata(metadata)
    if content and content.strip():
        prompt += f"\nContent preview:\n{content[:CATEGORY_PREVIEW_CHARS]}\n"
    return prompt


# --- Naming ---

GLOBAL_NAMING_RULES = """Filename rules:
- Start the name with the category key followed by an underscore, e.g. invoice_.
- Use lowercase words separated by underscores or hyphens.
- Keep it under 80 characters and make it describe the content, not the format.
- Do not invent dates. Only include a date when one is given below or clearly
  stated in the content."""

NAMING_INSTRUCTIONS = """Respond with a JSON object with two keys: "filename" (the new
name, extension optional) and "reasoning" (one short sentence).

Example response:
{
  "filename": "invoice_acme_hosting_2024-03-01.pdf",
  "reasoning": "Vendor and billing date taken from the header."
}"""


def _regeneration_section(rejected_name: str, feedback: str | None) -> str:
    section = (
        "\n=== REGENERATION REQUEST ===\n"
        "The user REJECTED the previous suggestion. Produce a DIFFERENT filename.\n"
        f"Rejected filename (do not reuse it or anything close): {rejected_name}\n"
    )
    if feedback and feedback.strip():
        section += (
            "\nUser feedback on the rejected name:\n"
            f'"{feedback.strip()}"\n'
            "Address this feedback in the new name.\n"
        )
    else:
        section += (
            "\nNo feedback was given. Try a more descriptive name built from "
            "different details of the content.\n"
        )
    return section


def _hints_section(hints: NameHints | None) -> str:
    if hints is None:
        return ""
    section = ""
    if hints.identifiers:
        section += (
            "\nThe original filename contains identifiers that should be kept: "
            f"{', '.join(hints.identifiers)}\n"
        )
    if hints.date:
        section += (
            f"\nThe original filename carries the date {hints.date}. Use this date "
            "and do not replace it with today's date.\n"
        )
    return section


def build_naming_prompt(
    *,
    file_name: str,
    file_type: str,
    category: str,
    category_description: str | None = None,
    content: str | None = None,
    metadata: Mapping[str, Any] | None = None,
    hints: NameHints | None = None,
    feedback: str | None = None,
    rejected_name: str | None = None,
    retry_feedback: str | None = None,
    max_content_chars: int = 3000,
) -> str:
    """Build the prompt asking the model for a new filename."""
    prompt = f"{GLOBAL_NAMING_RULES}\n\nCategory: {category}\n"
    if category_description:
        prompt += f"Category description: {category_description}\n"
    prompt += f"\nFile to rename: {file_name}\nFile type: {file_type}\n"
    prompt += _format_metadata(metadata)
    if content and content.strip():
        prompt += f"\nContent:\n{content[:max_content_chars]}\n"
    if rejected_name:
        prompt += _regeneration_section(rejected_name, feedback)
    elif feedback and feedback.strip():
        prompt += f"\nUser guidance: {feedback.strip()}\n"
    if retry_feedback:
        prompt += (
            "\n=== PREVIOUS ATTEMPT ===\n"
            f"{retry_feedback}\nFix these problems in the new filename.\n"
        )
    prompt += _hints_section(hints)
    prompt += f"\n{NAMING_INSTRUCTIONS}"
    return prompt


# --- Validation ---

VALIDATION_INSTRUCTIONS = """You are a filename quality validator. Decide whether the
generated filename follows the naming rules and matches the file content.

Check that it starts with the category prefix, describes the content, keeps any
date or identifier from the original filename, and does not contain invented facts.

Respond with JSON: {"valid": true or false, "reason": "short explanation",
"suggested_fix": "a corrected filename or instruction, or null when valid"}"""


def build_validation_prompt(
    *,
    original_name: str,
    generated_name: str,
    category: str,
    content: str | None = None,
    naming_prompt: str | None = None,
    previous_failures: Sequence[str] = (),
) -> str:
    """Build the prompt asking the model to check a generated filename."""
    preview = content[:VALIDATION_PREVIEW_CHARS] if content else ""
    prompt = (
        f"{VALIDATION_INSTRUCTIONS}\n\n"
        "=== FILE BEING VALIDATED ===\n"
        f"Original filename: {original_name}\n"
        f"Generated filename: {generated_name}\n"
        f"Detected category: {category}\n\n"
        f"Content preview:\n{preview or '(no text content available)'}\n\n"
        f"Prompt used to generate the filename:\n{naming_prompt or '(not available)'}\n"
    )
    if previous_failures:
        failures = "\n".join(
            f"Attempt {index}: {reason}"
            for index, reason in enumerate(previous_failures, start=1)
        )
        prompt += (
            f"\nPrevious validation failures (this is attempt "
            f"{len(previous_failures) + 1}):\n{failures}\n"
            "If the filename is now close to correct, consider passing it.\n"
        )
    return prompt


def format_retry_feedback(reason: str | None, suggested_fix: str | None) -> str:
    """Describe a failed validation for the next naming attempt."""
    message = f"Previous attempt failed validation: {reason or 'no reason given'}."
    if suggested_fix:
        message += f" {suggested_fix}"
    return message
