from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

from api_market.reputation import ReputationPolicy
from api_market.settlement import SettlementSettings


def repo_root() -> Path:
    # Project root is the directory that contains the `api_market/` package.
    return Path(__file__).resolve().parents[1]


def load_env() -> None:
    # Prefer a project-local `.env`; fall back to searching from CWD.
    root_env = repo_root() / ".env"
    env_path = str(root_env) if root_env.exists() else (find_dotenv(usecwd=True) or str(root_env))
    load_dotenv(env_path)


def _env_float(name: str, default: float | None) -> float | None:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    if raw.lower() in {"none", "off"}:
        return None
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_rate(name: str, default: float) -> float:
    value = _env_float(name, default)
    if value is None:
        raise ValueError(f"{name} cannot be disabled")
    return value


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class MarketSettings:
    settlement: SettlementSettings
    reputation: ReputationPolicy
    strict_strategy: bool = False
    ledger_path: Path | None = None
    market_id: str = "market"


def load_settings() -> MarketSettings:
    load_env()
    ledger_raw = (os.getenv("MARKET_LEDGER_PATH") or "").strip()
    return MarketSettings(
        settlement=SettlementSettings(
            payment_timeout_seconds=_env_float("MARKET_PAYMENT_TIMEOUT_S", 10.0),
            call_timeout_seconds=_env_float("MARKET_CALL_TIMEOUT_S", 30.0),
            max_concurrency=max(1, _env_int("MARKET_MAX_CONCURRENCY", 8)),
        ),
        reputation=ReputationPolicy(
            gain_rate=_env_rate("MARKET_REP_GAIN_RATE", 0.1),
            loss_rate=_env_rate("MARKET_REP_LOSS_RATE", 0.2),
            initial=_env_rate("MARKET_REP_INITIAL", 50.0),
        ),
        strict_strategy=_env_bool("MARKET_STRICT_STRATEGY", False),
        ledger_path=Path(ledger_raw) if ledger_raw else None,
        market_id=(os.getenv("MARKET_ID") or "market").strip() or "market",
    )


def configure_logging(level: int = logging.INFO, *, format_string: str | None = None) -> None:
    """Attach a stderr handler to the `api_market` logger. The library itself adds no handlers."""
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter(format_string or "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root = logging.getLogger("api_market")
    root.handlers = [handler]
    root.setLevel(level)
