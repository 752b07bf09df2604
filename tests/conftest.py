from __future__ import annotations

import pytest
from loguru import logger

from eventscout.config import settings
from eventscout.services.pipeline_context import PipelineContext


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """No credentials, no backoff waits and a throwaway extraction cache."""
    for key in (
        "openrouter_api_key",
        "firecrawl_api_key",
        "google_cse_key",
        "google_cse_cx",
        "voyage_api_key",
        "database_url",
    ):
        monkeypatch.setattr(settings, key, "")
    monkeypatch.setattr(settings, "default_industry", "")
    monkeypatch.setattr(settings, "extraction_cache_dir", str(tmp_path / "extract"))
    monkeypatch.setattr(settings, "retry_base_delay_seconds", 0.0)
    monkeypatch.setattr(settings, "retry_max_delay_seconds", 0.0)
    monkeypatch.setattr(settings, "prioritize_min_interval_seconds", 0.0)
    return settings


@pytest.fixture
def ctx(isolated_settings):
    return PipelineContext(isolated_settings)


@pytest.fixture
def log_messages():
    messages: list[str] = []
    handler_id = logger.add(lambda message: messages.append(message.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)
