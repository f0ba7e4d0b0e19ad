import logging

import pytest
from pydantic import ValidationError

from buildmaster.config.settings import Settings, settings
from buildmaster.src.utils.logger import get_logger


def test_environment_overrides_are_loaded():
    assert settings.EMBEDDING_PROVIDER == "hash"
    assert settings.EMBEDDING_DIMENSION == 16
    assert settings.GOOGLE_API_KEY.get_secret_value() == "test-google-key"
    assert "test-google-key" not in repr(settings)


def test_defaults():
    assert settings.HISTORY_WINDOW == 10
    assert settings.DEFAULT_RAG_TOP_K == 5
    assert settings.RECOMMEND_TOP_K == 10
    assert settings.VECTOR_METRIC == "l2"


@pytest.mark.parametrize("field, value", [("EMBEDDING_DIMENSION", 0), ("HISTORY_WINDOW", -1), ("REQUEST_TIMEOUT_SECONDS", 0), ("RETRY_BASE_DELAY_MS", -5), ("VECTOR_METRIC", "hamming")])
def test_invalid_values_are_rejected(field, value):
    with pytest.raises(ValidationError):
        Settings(**{field: value})


def test_logger_is_configured_once():
    first = get_logger("buildmaster.tests.once")
    second = get_logger("buildmaster.tests.once")

    assert first is second
    assert len(first.handlers) == 1
    assert first.level == logging.DEBUG
    assert first.propagate is False
