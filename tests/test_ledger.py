from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest

from api_market.ledger import (
    HashChainedLedger,
    InMemoryLedger,
    Ledger,
    settlement_records,
    stable_json_dumps,
)
from api_market.schemas import EventType, SettlementRecord


def _record(price: int = 5, *, success: bool = True) -> dict:
    return SettlementRecord(
        settlement_id="s1",
        agent_id="a1",
        provider_id="p1",
        api_id="x",
        price=price,
        timestamp=datetime(2026, 1, 1, tzinfo=UTC),
        success=success,
    ).model_dump(mode="json")


def test_hash_chained_ledger_verifies_and_detects_tampering(tmp_path) -> None:
    ledger_path = tmp_path / "ledger.jsonl"
    ledger = HashChainedLedger(ledger_path)

    ledger.append(EventType.MARKET_OPENED, market_id="m1")
    ledger.append(EventType.SETTLEMENT_RECORDED, market_id="m1", payload=_record(10))
    ledger.verify_chain()

    lines = ledger_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    event2 = json.loads(lines[1])
    event2["payload"]["price"] = 1  # tamper without recomputing hash
    lines[1] = stable_json_dumps(event2)
    ledger_path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    with pytest.raises(ValueError, match="hash mismatch"):
        HashChainedLedger(ledger_path).verify_chain()


def test_reopened_ledger_extends_chain(tmp_path) -> None:
    path = tmp_path / "nested" / "ledger.jsonl"
    first = HashChainedLedger(path)
    e1 = first.append(EventType.MARKET_OPENED, market_id="m1")

    second = HashChainedLedger(path)
    e2 = second.append(EventType.AGENT_REGISTERED, market_id="m1", payload={"agent_id": "a1"})

    assert e2.prev_hash == e1.hash
    assert len(second) == 2
    second.verify_chain()


def test_big_prices_survive_round_trip(tmp_path) -> None:
    ledger = HashChainedLedger(tmp_path / "ledger.jsonl")
    ledger.append(EventType.SETTLEMENT_RECORDED, market_id="m1", payload=_record(10**30))

    [record] = settlement_records(ledger.iter_events())
    assert record.price == 10**30
    ledger.verify_chain()


def test_in_memory_ledger_chain_and_copies() -> None:
    ledger = InMemoryLedger()
    e1 = ledger.append(EventType.MARKET_OPENED, market_id="m1")
    e2 = ledger.append(EventType.SETTLEMENT_RECORDED, market_id="m1", payload=_record(5))
    assert e1.prev_hash is None
    assert e2.prev_hash == e1.hash

    events = list(ledger.iter_events())
    events[1].payload["price"] = 999
    ledger.verify_chain()
    assert list(ledger.iter_events())[1].payload["price"] == 5

    ledger._events[1].payload["price"] = 999
    with pytest.raises(ValueError, match="hash mismatch"):
        ledger.verify_chain()


def test_both_backends_satisfy_the_protocol(tmp_path) -> None:
    for ledger in (InMemoryLedger(), HashChainedLedger(tmp_path / "l.jsonl")):
        assert isinstance(ledger, Ledger)
        ledger.append(EventType.MARKET_OPENED, market_id="m1")
        assert len(ledger) == 1
        ledger.verify_chain()


def test_settlement_records_filters_event_types() -> None:
    ledger = InMemoryLedger()
    ledger.append(EventType.MARKET_OPENED, market_id="m1")
    ledger.append(EventType.SETTLEMENT_RECORDED, market_id="m1", payload=_record(success=False))
    ledger.append(EventType.REPUTATION_UPDATED, market_id="m1", payload={"provider_id": "p1"})

    records = settlement_records(ledger.iter_events())
    assert len(records) == 1
    assert records[0].flat() == {
        "agent_id": "a1",
        "provider_id": "p1",
        "api_id": "x",
        "price": 5,
        "timestamp": "2026-01-01T00:00:00+00:00",
        "success": False,
    }
