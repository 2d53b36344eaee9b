from __future__ import annotations

import hashlib
import json
import threading
import uuid
from collections.abc import Iterable, Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from api_market.schemas import EventType, LedgerEvent, SettlementRecord


def stable_json_dumps(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


@runtime_checkable
class Ledger(Protocol):
    """Structural interface shared by all ledger backends."""

    def append(
        self,
        event_type: EventType,
        *,
        market_id: str,
        payload: dict[str, Any] | None = ...,
        ts: datetime | None = ...,
        event_id: str | None = ...,
    ) -> LedgerEvent: ...

    def iter_events(self) -> Iterator[LedgerEvent]: ...

    def verify_chain(self) -> None: ...

    def __len__(self) -> int: ...


def _sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _compute_event_hash(
    *,
    schema_version: int,
    event_id: str,
    prev_hash: str | None,
    ts: datetime,
    market_id: str,
    event_type: EventType,
    payload: dict[str, Any],
) -> str:
    to_hash = {
        "schema_version": schema_version,
        "event_id": event_id,
        "prev_hash": prev_hash,
        "ts": ts.isoformat(),
        "market_id": market_id,
        "type": event_type.value,
        "payload": payload,
    }
    return _sha256_hex(stable_json_dumps(to_hash))


def _build_event(
    event_type: EventType,
    *,
    market_id: str,
    prev_hash: str | None,
    payload: dict[str, Any] | None = None,
    ts: datetime | None = None,
    schema_version: int = 1,
    event_id: str | None = None,
) -> LedgerEvent:
    payload = payload or {}
    ts = ts or datetime.now(tz=UTC)
    event_id = event_id or str(uuid.uuid4())

    event_hash = _compute_event_hash(
        schema_version=schema_version,
        event_id=event_id,
        prev_hash=prev_hash,
        ts=ts,
        market_id=market_id,
        event_type=event_type,
        payload=payload,
    )
    return LedgerEvent(
        schema_version=schema_version,
        event_id=event_id,
        prev_hash=prev_hash,
        hash=event_hash,
        ts=ts,
        market_id=market_id,
        type=event_type,
        payload=payload,
    )


def _verify_event_chain(events: Iterable[LedgerEvent]) -> None:
    prev_hash: str | None = None
    for event in events:
        expected = _compute_event_hash(
            schema_version=event.schema_version,
            event_id=event.event_id,
            prev_hash=prev_hash,
            ts=event.ts,
            market_id=event.market_id,
            event_type=event.type,
            payload=event.payload,
        )
        if event.prev_hash != prev_hash:
            raise ValueError("ledger prev_hash mismatch")
        if event.hash != expected:
            raise ValueError("ledger hash mismatch")
        prev_hash = event.hash


def settlement_records(events: Iterable[LedgerEvent]) -> list[SettlementRecord]:
    return [
        SettlementRecord.model_validate(e.payload)
        for e in events
        if e.type == EventType.SETTLEMENT_RECORDED
    ]


class HashChainedLedger:
    """JSONL ledger where each line carries the hash of its predecessor.

    Appends are serialized so concurrent settlements extend a single chain.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._tail_hash: str | None = None
        self._lock = threading.Lock()

        if self._path.exists():
            self._tail_hash = self._read_last_hash()

    @property
    def path(self) -> Path:
        return self._path

    def append(
        self,
        event_type: EventType,
        *,
        market_id: str,
        payload: dict[str, Any] | None = None,
        ts: datetime | None = None,
        event_id: str | None = None,
    ) -> LedgerEvent:
        with self._lock:
            event = _build_event(
                event_type,
                market_id=market_id,
                prev_hash=self._tail_hash,
                payload=payload,
                ts=ts,
                event_id=event_id,
            )
            with self._path.open("a", encoding="utf-8") as f:
                f.write(stable_json_dumps(event.model_dump(mode="json")))
                f.write("\n")
            self._tail_hash = event.hash
        return event

    def iter_events(self) -> Iterator[LedgerEvent]:
        if not self._path.exists():
            return
        with self._path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                yield LedgerEvent.model_validate_json(line)

    def verify_chain(self) -> None:
        _verify_event_chain(self.iter_events())

    def __len__(self) -> int:
        if not self._path.exists():
            return 0
        with self._path.open("r", encoding="utf-8") as f:
            return sum(1 for line in f if line.strip())

    def _read_last_hash(self) -> str | None:
        with self._path.open("rb") as f:
            f.seek(0, 2)
            size = f.tell()
            read_size = min(size, 128 * 1024)
            f.seek(size - read_size)
            chunk = f.read(read_size).decode("utf-8", errors="ignore")

        lines = [ln.strip() for ln in chunk.splitlines() if ln.strip()]
        if not lines:
            return None

        # The first line of a partial tail read may be truncated; only the last one matters.
        return LedgerEvent.model_validate_json(lines[-1]).hash


class InMemoryLedger:
    """Same interface as HashChainedLedger, backed by a list. Used by tests and short-lived markets."""

    def __init__(self) -> None:
        self._events: list[LedgerEvent] = []
        self._tail_hash: str | None = None
        self._lock = threading.Lock()

    def append(
        self,
        event_type: EventType,
        *,
        market_id: str,
        payload: dict[str, Any] | None = None,
        ts: datetime | None = None,
        event_id: str | None = None,
    ) -> LedgerEvent:
        with self._lock:
            event = _build_event(
                event_type,
                market_id=market_id,
                prev_hash=self._tail_hash,
                payload=payload,
                ts=ts,
                event_id=event_id,
            )
            self._events.append(event)
            self._tail_hash = event.hash
        return event

    def iter_events(self) -> Iterator[LedgerEvent]:
        with self._lock:
            events = list(self._events)
        for event in events:
            yield event.model_copy(deep=True)

    def verify_chain(self) -> None:
        with self._lock:
            events = list(self._events)
        _verify_event_chain(events)

    def __len__(self) -> int:
        return len(self._events)
