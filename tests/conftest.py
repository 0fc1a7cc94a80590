"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from proofline.services.settings import Settings

from helpers import FakeProvider


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def fast_settings() -> Settings:
    return Settings(idle_delay=0.0, context_chars=40)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("PROOFLINE_API_KEY", "PROOFLINE_MODEL", "PROOFLINE_BASE_URL", "PROOFLINE_LOG_DIR"):
        monkeypatch.delenv(name, raising=False)
