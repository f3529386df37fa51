from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from renamer.schema import (
    BatchStats,
    FeedbackRecord,
    FeedbackAction,
    ProcessResult,
    TimeRange,
)


def _result(**overrides):
    data = {
        "file_path": "/inbox/scan.pdf",
        "original_name": "scan.pdf",
        "category": "invoice",
        "ai_suggested_name": "invoice_acme_2024.pdf",
    }
    data.update(overrides)
    return ProcessResult(**data)


def test_suggested_name_defaults_to_ai_suggestion():
    result = _result()
    assert result.suggested_name == "invoice_acme_2024.pdf"
    assert result.validation_passed is None
    assert result.validation_attempts == []


def test_ai_suggested_name_cannot_be_changed():
    result = _result()
    result.suggested_name = "invoice_acme_march.pdf"

    with pytest.raises(ValidationError):
        result.ai_suggested_name = "something_else.pdf"
    assert result.ai_suggested_name == "invoice_acme_2024.pdf"


def test_result_survives_json_round_trip():
    result = _result(models={"naming": "qwen3-vl:8b"}, suggested_name="edited.pdf")
    restored = ProcessResult.model_validate_json(result.model_dump_json())
    assert restored.suggested_name == "edited.pdf"
    assert restored.model_used == "qwen3-vl:8b"


def test_model_used_prefers_regeneration_model():
    result = _result(models={"naming": "small", "regeneration": "large"})
    assert result.model_used == "large"


def test_batch_stats_counts_in_flight_as_remaining():
    stats = BatchStats(total=5, pending=1, in_flight=1, complete=2, failed=1)
    assert stats.finished == 3
    assert stats.remaining == 2


def test_feedback_record_rejects_negative_distance():
    with pytest.raises(ValidationError):
        FeedbackRecord(
            request_id="req_1",
            file_path="/inbox/a.txt",
            action=FeedbackAction.EDITED,
            edit_distance=-1,
        )


def test_time_range_since():
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert TimeRange("24h").since(now) == now - timedelta(days=1)
    assert TimeRange.WEEK.since(now) == now - timedelta(days=7)
    assert TimeRange.ALL.since(now) is None
