from __future__ import annotations

import sys
from pathlib import Path

import pytest


def pytest_configure() -> None:
    project_root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(project_root))


@pytest.fixture(autouse=True)
def _clean_market_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # Keep a developer's .env / shell settings out of the tests.
    for name in (
        "MARKET_PAYMENT_TIMEOUT_S",
        "MARKET_CALL_TIMEOUT_S",
        "MARKET_MAX_CONCURRENCY",
        "MARKET_REP_GAIN_RATE",
        "MARKET_REP_LOSS_RATE",
        "MARKET_REP_INITIAL",
        "MARKET_STRICT_STRATEGY",
        "MARKET_LEDGER_PATH",
        "MARKET_ID",
    ):
        monkeypatch.delenv(name, raising=False)
