# pylint: disable=missing-module-docstring,missing-function-docstring
from __future__ import annotations

import pytest

from config import AppConfig
from observability import logger

from fakes import FakeBackend, FakeTransportFactory


@pytest.fixture(autouse=True)
def captured_logs(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    """Route JSONL logs into a list instead of stdout."""
    lines: list[str] = []
    monkeypatch.setattr(logger, "_print", lines.append)
    monkeypatch.setattr(logger, "_enabled", True)
    return lines


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def transport_factory() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(api_key="test-key")
