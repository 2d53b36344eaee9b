from __future__ import annotations

import logging
from pathlib import Path

import pytest

from api_market import config
from api_market.config import configure_logging, load_settings
from api_market.ledger import HashChainedLedger, InMemoryLedger
from api_market.market import Marketplace
from tests.helpers import EchoExecutor, RecordingPayments


@pytest.fixture(autouse=True)
def _no_dotenv(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "load_env", lambda: None)


def test_defaults() -> None:
    settings = load_settings()

    assert settings.settlement.payment_timeout_seconds == 10.0
    assert settings.settlement.call_timeout_seconds == 30.0
    assert settings.settlement.max_concurrency == 8
    assert settings.settlement.deterministic is False
    assert settings.reputation.gain_rate == 0.1
    assert settings.reputation.loss_rate == 0.2
    assert settings.reputation.initial == 50.0
    assert settings.strict_strategy is False
    assert settings.ledger_path is None
    assert settings.market_id == "market"


def test_env_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("MARKET_PAYMENT_TIMEOUT_S", "2.5")
    monkeypatch.setenv("MARKET_CALL_TIMEOUT_S", "off")
    monkeypatch.setenv("MARKET_MAX_CONCURRENCY", "0")
    monkeypatch.setenv("MARKET_REP_GAIN_RATE", "0.5")
    monkeypatch.setenv("MARKET_STRICT_STRATEGY", "yes")
    monkeypatch.setenv("MARKET_LEDGER_PATH", str(tmp_path / "l.jsonl"))
    monkeypatch.setenv("MARKET_ID", "prod")

    settings = load_settings()

    assert settings.settlement.payment_timeout_seconds == 2.5
    assert settings.settlement.call_timeout_seconds is None
    assert settings.settlement.max_concurrency == 1
    assert settings.reputation.gain_rate == 0.5
    assert settings.strict_strategy is True
    assert settings.ledger_path == Path(tmp_path / "l.jsonl")
    assert settings.market_id == "prod"


def test_invalid_values_raise(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MARKET_CALL_TIMEOUT_S", "soon")
    with pytest.raises(ValueError, match="MARKET_CALL_TIMEOUT_S"):
        load_settings()

    monkeypatch.delenv("MARKET_CALL_TIMEOUT_S")
    monkeypatch.setenv("MARKET_REP_LOSS_RATE", "none")
    with pytest.raises(ValueError, match="cannot be disabled"):
        load_settings()

    monkeypatch.setenv("MARKET_REP_LOSS_RATE", "3")
    with pytest.raises(ValueError, match="loss_rate"):
        load_settings()


def test_from_env_picks_ledger_backend(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    with Marketplace.from_env(payments=RecordingPayments(), executor=EchoExecutor()) as market:
        assert isinstance(market.ledger, InMemoryLedger)

    monkeypatch.setenv("MARKET_LEDGER_PATH", str(tmp_path / "audit" / "market.jsonl"))
    with Marketplace.from_env(payments=RecordingPayments(), executor=EchoExecutor()) as market:
        assert isinstance(market.ledger, HashChainedLedger)
        assert len(market.ledger) == 1
    assert (tmp_path / "audit" / "market.jsonl").exists()


def test_configure_logging_is_idempotent() -> None:
    configure_logging(logging.DEBUG)
    configure_logging(logging.WARNING)

    logger = logging.getLogger("api_market")
    assert len(logger.handlers) == 1
    assert logger.level == logging.WARNING
