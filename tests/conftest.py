from __future__ import annotations

import pytest

from tests.support.stubs import RecordingSleep


@pytest.fixture
def no_sleep():
    return RecordingSleep()


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    monkeypatch.setenv("SPICE_RUNNER_SKIP_DOTENV", "1")
    monkeypatch.delenv("SPICE_QUERY_HISTORY", raising=False)
