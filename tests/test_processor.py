from unittest.mock import patch

import pytest

from renamer.config_utils import Settings
from renamer.errors import (
    ItemProcessingError,
    ProviderContentError,
    ProviderUnavailableError,
)
from renamer.processor import ItemProcessor, ItemStage, normalize_category

from fakes import FakeProvider


def _settings(**processing):
    return Settings.model_validate({"processing": processing})


def test_process_without_validation(make_files):
    (path,) = make_files(1)
    provider = FakeProvider()
    processor = ItemProcessor(provider, _settings(enable_validation=False))

    result = processor.process(path)

    assert result.category == "invoice"
    assert result.ai_suggested_name == "invoice_doc1_renamed.txt"
    assert result.suggested_name == result.ai_suggested_name
    assert result.validation_passed is None
    assert result.validation_attempts == []
    assert provider.calls == {"categorize": 1, "generate_name": 1, "validate_name": 0}
    assert result.models["naming"] == "qwen3-vl:8b"
    assert "categorization" in result.prompts


def test_validation_passes_on_second_attempt(make_files):
    (path,) = make_files(1)
    provider = FakeProvider(verdicts=[False, True])
    processor = ItemProcessor(
        provider, _settings(enable_validation=True, validation_retry_count=3)
    )

    result = processor.process(path)

    assert result.validation_passed is True
    assert [attempt.passed for attempt in result.validation_attempts] == [False, True]
    assert provider.calls["generate_name"] == 2
    assert "Previous attempt failed validation" in provider.prompts[1]


def test_validation_exhaustion_returns_last_name(make_files):
    (path,) = make_files(1)
    provider = FakeProvider(verdicts=[False, False, False, False])
    processor = ItemProcessor(
        provider, _settings(enable_validation=True, validation_retry_count=3)
    )

    result = processor.process(path)

    assert provider.calls["generate_name"] <= 3
    assert provider.calls["validate_name"] == 3
    assert result.ai_suggested_name
    assert result.validation_passed is False
    assert len(result.validation_attempts) == 3


def test_unusable_names_count_as_failed_attempts(make_files):
    (path,) = make_files(1)
    provider = FakeProvider(names=["doc1.txt", "invoice_acme.pdf"])
    processor = ItemProcessor(
        provider, _settings(enable_validation=True, validation_retry_count=3)
    )

    result = processor.process(path)

    assert result.ai_suggested_name == "invoice_acme.txt"
    assert result.validation_passed is True
    assert result.validation_attempts[0].passed is False


def test_provider_outage_fails_the_item(make_files):
    (path,) = make_files(1)
    provider = FakeProvider(fail_on=[path])
    processor = ItemProcessor(provider, _settings())

    with pytest.raises(ItemProcessingError) as excinfo:
        processor.process(path)

    assert excinfo.value.stage == "categorizing"
    assert isinstance(excinfo.value.cause, ProviderUnavailableError)
    assert provider.calls["generate_name"] == 0


def test_naming_outage_is_not_retried(make_files):
    (path,) = make_files(1)
    provider = FakeProvider()
    processor = ItemProcessor(provider, _settings(validation_retry_count=3))

    with patch.object(
        provider,
        "generate_name",
        side_effect=ProviderUnavailableError("timed out"),
    ) as mock_generate:
        with pytest.raises(ItemProcessingError) as excinfo:
            processor.process(path)

    mock_generate.assert_called_once()
    assert excinfo.value.stage == "naming"


def test_no_usable_name_after_all_attempts(make_files):
    (path,) = make_files(1)
    provider = FakeProvider(names=["", "", ""])
    processor = ItemProcessor(provider, _settings(validation_retry_count=3))

    with pytest.raises(ItemProcessingError) as excinfo:
        processor.process(path)

    assert isinstance(excinfo.value.cause, ProviderContentError)
    assert provider.calls["generate_name"] == 3


def test_missing_file_fails_before_any_provider_call(tmp_path):
    provider = FakeProvider()
    processor = ItemProcessor(provider, _settings())

    with pytest.raises(ItemProcessingError):
        processor.process(str(tmp_path / "gone.txt"))

    assert provider.calls["categorize"] == 0


def test_regeneration_reuses_category_and_mentions_rejected_name(make_files):
    (path,) = make_files(1)
    provider = FakeProvider(names=["invoice_acme_march"])
    processor = ItemProcessor(provider, _settings(enable_validation=False))

    result = processor.process(
        path,
        feedback="use the vendor name",
        rejected_name="invoice_doc1_renamed.txt",
        is_regeneration=True,
        category="invoice",
    )

    assert provider.calls["categorize"] == 0
    assert result.is_regeneration is True
    assert result.rejected_name == "invoice_doc1_renamed.txt"
    assert "invoice_doc1_renamed.txt" in provider.prompts[0]
    assert "use the vendor name" in provider.prompts[0]
    assert "regeneration" in result.models


def test_stage_callback_sees_each_stage(make_files):
    (path,) = make_files(1)
    processor = ItemProcessor(FakeProvider(), _settings(enable_validation=True))
    stages = []

    processor.process(path, on_stage=lambda _path, stage: stages.append(stage))

    assert stages == [
        ItemStage.PENDING,
        ItemStage.CATEGORIZING,
        ItemStage.NAMING,
        ItemStage.VALIDATING,
        ItemStage.DONE,
    ]


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("invoice", "invoice"),
        ("Category: Invoice", "invoice"),
        ("receipt", "invoice"),
        ("Meeting Notes", "meeting_notes"),
        ("something odd", "note"),
    ],
)
def test_normalize_category(raw, expected):
    categories = {"invoice": "", "meeting_notes": "", "note": ""}
    assert normalize_category(raw, categories, "note") == expected

