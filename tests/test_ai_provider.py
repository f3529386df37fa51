import json
from unittest.mock import patch

import pytest
from httpx import ConnectError

from renamer.ai_provider import OllamaProvider, _parse_json_payload
from renamer.content_extractor import FileRef
from renamer.errors import ProviderContentError, ProviderUnavailableError
from renamer.prompts import STRICT_JSON_REMINDER

MODEL = {"name": "qwen3-vl:8b", "context_window": 8192}


def _file_ref(**overrides):
    data = {
        "path": "/inbox/scan.pdf",
        "name": "scan.pdf",
        "extension": "pdf",
        "mime_type": "application/pdf",
        "content": "Invoice #42",
    }
    data.update(overrides)
    return FileRef(**data)


# Common mock for a successful ollama chat response
def mock_ollama_chat_response(content):
    if not isinstance(content, str):
        content = json.dumps(content)
    return {"message": {"content": content}}


@patch("renamer.ai_provider._ollama_chat")
def test_categorize_parses_json(mock_chat):
    mock_chat.return_value = mock_ollama_chat_response(
        {"category": "invoice", "reasoning": "Has an amount due."}
    )

    response = OllamaProvider().categorize(_file_ref(), "prompt", model=MODEL)

    assert response.category == "invoice"
    assert response.reasoning == "Has an amount due."
    _, kwargs = mock_chat.call_args
    assert kwargs["options"]["num_ctx"] == 8192
    assert kwargs["response_format"] == "json"


@patch("renamer.ai_provider._ollama_chat")
def test_generate_name_accepts_fenced_json(mock_chat):
    mock_chat.return_value = mock_ollama_chat_response(
        '```json\n{"filename": "invoice_acme.pdf", "reasoning": "vendor"}\n```'
    )

    response = OllamaProvider().generate_name(_file_ref(), "prompt", model=MODEL)

    assert response.name == "invoice_acme.pdf"


@patch("renamer.ai_provider._ollama_chat")
def test_invalid_json_is_retried_with_reminder(mock_chat):
    mock_chat.side_effect = [
        mock_ollama_chat_response("not json at all"),
        mock_ollama_chat_response({"name": "invoice_acme"}),
    ]

    response = OllamaProvider().generate_name(_file_ref(), "prompt", model=MODEL)

    assert response.name == "invoice_acme"
    second_messages = mock_chat.call_args_list[1].args[1]
    assert STRICT_JSON_REMINDER in second_messages[-1]["content"]


@patch("renamer.ai_provider._ollama_chat")
def test_empty_responses_raise_content_error(mock_chat):
    mock_chat.return_value = mock_ollama_chat_response("")

    with pytest.raises(ProviderContentError):
        OllamaProvider(max_json_attempts=2).categorize(
            _file_ref(), "prompt", model=MODEL
        )
    assert mock_chat.call_count == 2


@patch("renamer.ai_provider._ollama_chat")
def test_connection_error_is_unavailable(mock_chat):
    mock_chat.side_effect = ConnectError("Failed to connect")

    with pytest.raises(ProviderUnavailableError):
        OllamaProvider().categorize(_file_ref(), "prompt", model=MODEL)


@patch("renamer.ai_provider._ollama_chat")
def test_missing_filename_is_content_error(mock_chat):
    mock_chat.return_value = mock_ollama_chat_response({"reasoning": "no idea"})

    with pytest.raises(ProviderContentError):
        OllamaProvider().generate_name(_file_ref(), "prompt", model=MODEL)


@patch("renamer.ai_provider._ollama_chat")
def test_validate_name_reads_camel_case_fix(mock_chat):
    mock_chat.return_value = mock_ollama_chat_response(
        {"valid": False, "reason": "No prefix", "suggestedFix": "invoice_acme.pdf"}
    )

    verdict = OllamaProvider().validate_name(_file_ref(), "prompt", model=MODEL)

    assert verdict.valid is False
    assert verdict.reason == "No prefix"
    assert verdict.suggested_fix == "invoice_acme.pdf"


@patch("renamer.ai_provider._ollama_chat")
def test_images_are_attached_to_the_message(mock_chat):
    mock_chat.return_value = mock_ollama_chat_response({"category": "photo"})

    OllamaProvider().categorize(
        _file_ref(image_base64="aGVsbG8="), "prompt", model=MODEL
    )

    user_message = mock_chat.call_args.args[1][-1]
    assert user_message["images"] == ["aGVsbG8="]


def test_parse_json_payload_extracts_embedded_object():
    assert _parse_json_payload('Sure! {"valid": true} Hope that helps') == {
        "valid": True
    }
