from __future__ import annotations

import threading
import time
from typing import Any, Callable

from api_market.schemas import CallResult, Listing, PaymentReceipt


def make_listing(
    provider_id: str = "p1",
    api_id: str = "api-1",
    *,
    category: str = "weather",
    price: int = 10,
    reputation: float = 80.0,
    active: bool = True,
) -> Listing:
    return Listing(
        provider_id=provider_id,
        api_id=api_id,
        category=category,
        price_per_call=price,
        reputation=reputation,
        active=active,
    )


class RecordingPayments:
    """Payment gateway that approves everything and dedups on the idempotency key."""

    def __init__(self, *, decline: bool = False) -> None:
        self.decline = decline
        self.transfers: dict[str, tuple[str, str, int]] = {}
        self._lock = threading.Lock()

    def authorize_and_transfer(
        self,
        *,
        payer_id: str,
        payee_id: str,
        amount: int,
        idempotency_key: str,
    ) -> PaymentReceipt:
        if self.decline:
            return PaymentReceipt(success=False, detail="card_declined")
        with self._lock:
            self.transfers.setdefault(idempotency_key, (payer_id, payee_id, amount))
        return PaymentReceipt(success=True, reference=f"tx-{idempotency_key[:8]}")

    @property
    def total_transferred(self) -> int:
        return sum(amount for _, _, amount in self.transfers.values())


class RaisingPayments:
    def authorize_and_transfer(self, **kw: Any) -> PaymentReceipt:
        raise ConnectionError("rpc unreachable")


class SlowPayments(RecordingPayments):
    """Answers only after `delay` seconds, well past a short payment deadline."""

    def __init__(self, *, delay: float, decline: bool = False) -> None:
        super().__init__(decline=decline)
        self.delay = delay

    def authorize_and_transfer(self, **kw: Any) -> PaymentReceipt:
        time.sleep(self.delay)
        return super().authorize_and_transfer(**kw)


class InterruptingPayments:
    """Simulates the caller being interrupted while the payment is in flight."""

    def authorize_and_transfer(self, **kw: Any) -> PaymentReceipt:
        raise KeyboardInterrupt


def wait_until(predicate: Callable[[], bool], *, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class EchoExecutor:
    """Returns the payload back as data."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []
        self._lock = threading.Lock()

    def invoke(self, *, endpoint: str, payload: Any) -> CallResult:
        with self._lock:
            self.calls.append((endpoint, payload))
        return CallResult(success=True, data={"echo": payload}, elapsed_ms=1.5)


class FailingExecutor:
    def invoke(self, *, endpoint: str, payload: Any) -> CallResult:
        return CallResult(success=False, error="upstream 500")


class RaisingExecutor:
    def invoke(self, *, endpoint: str, payload: Any) -> CallResult:
        raise RuntimeError("boom")


class DictExecutor:
    """Collaborator returning a plain mapping instead of a CallResult."""

    def invoke(self, *, endpoint: str, payload: Any) -> dict[str, Any]:
        return {"success": True, "data": [1, 2, 3]}


class BlockingExecutor:
    def __init__(self) -> None:
        self.release = threading.Event()

    def invoke(self, *, endpoint: str, payload: Any) -> CallResult:
        self.release.wait(5)
        return CallResult(success=True, data="late")


class InterruptingExecutor:
    """Simulates the caller being interrupted while waiting on the call."""

    def invoke(self, *, endpoint: str, payload: Any) -> CallResult:
        raise KeyboardInterrupt


class FixedAnalyzer:
    def __init__(self, category: str) -> None:
        self.category = category
        self.seen: list[str] = []

    def category_for(self, task_description: str) -> str:
        self.seen.append(task_description)
        return self.category
