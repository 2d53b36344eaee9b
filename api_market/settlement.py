from __future__ import annotations

import logging
import threading
import time
import uuid
import weakref
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from concurrent.futures import thread as _futures_thread
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Callable, Protocol

from api_market.accounts import AgentAccount, AgentRegistry
from api_market.catalog import ListingCatalog
from api_market.errors import ExecutionFailed, InsufficientFunds, NotFound, PaymentFailed
from api_market.ledger import Ledger
from api_market.reputation import ReputationLedger
from api_market.schemas import (
    CallResult,
    EventType,
    Match,
    PaymentReceipt,
    SettlementRecord,
)

logger = logging.getLogger(__name__)


class PaymentGateway(Protocol):
    """Moves funds from payer to payee.

    Must be idempotent per `idempotency_key`: a retried transfer with the same
    key returns the original receipt instead of paying twice.
    """

    def authorize_and_transfer(
        self,
        *,
        payer_id: str,
        payee_id: str,
        amount: int,
        idempotency_key: str,
    ) -> PaymentReceipt: ...


class CallExecutor(Protocol):
    def invoke(self, *, endpoint: str, payload: Any) -> CallResult: ...


@dataclass(frozen=True)
class SettlementSettings:
    payment_timeout_seconds: float | None = 10.0
    call_timeout_seconds: float | None = 30.0
    max_concurrency: int = 8

    # When True, collaborators are called inline on the settling thread.
    # No deadline can be enforced in this mode.
    deterministic: bool = False


@dataclass(frozen=True)
class SettlementOutcome:
    settlement_id: str
    success: bool
    provider_id: str
    api_id: str
    price_charged: int
    elapsed_ms: float
    data: Any = None
    error: str | None = None
    payment_reference: str | None = None
    reputation_after: float | None = None

    def raise_for_status(self) -> SettlementOutcome:
        if not self.success:
            raise ExecutionFailed(
                f"call to {self.provider_id}/{self.api_id} failed after payment: {self.error}",
                outcome=self,
            )
        return self


class _SynchronousExecutor:
    """Runs the function immediately and hands back an already-resolved future."""

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future

    def shutdown(self, wait: bool = True, *, cancel_futures: bool = False) -> None:
        return None


class _DaemonThreadPoolExecutor(ThreadPoolExecutor):
    """ThreadPoolExecutor variant whose worker threads are daemon threads.

    A collaborator that never returns must not keep the interpreter alive
    after `close()`.
    """

    def _adjust_thread_count(self) -> None:
        if self._idle_semaphore.acquire(timeout=0):
            return

        def weakref_cb(_ref: object, q: object = self._work_queue) -> None:
            # Wake up workers when the executor is GC'd.
            q.put(None)  # type: ignore[attr-defined]

        num_threads = len(self._threads)
        if num_threads >= self._max_workers:
            return

        if hasattr(self, "_create_worker_context"):
            # Python 3.14+ passes a worker context instead of the initializer.
            args: tuple[Any, ...] = (
                weakref.ref(self, weakref_cb),
                self._create_worker_context(),
                self._work_queue,
            )
        else:
            args = (
                weakref.ref(self, weakref_cb),
                self._work_queue,
                self._initializer,
                self._initargs,
            )

        t = threading.Thread(
            name=f"{self._thread_name_prefix}_{num_threads}",
            target=_futures_thread._worker,
            args=args,
            daemon=True,
        )
        t.start()
        self._threads.add(t)


def _as_receipt(raw: Any) -> PaymentReceipt:
    return raw if isinstance(raw, PaymentReceipt) else PaymentReceipt.model_validate(raw)


def _timeout_arg(seconds: float | None) -> float | None:
    if seconds is None or seconds <= 0:
        return None
    return float(seconds)


class SettlementCoordinator:
    """Runs payment, call execution and bookkeeping for one match as a unit.

    The agent's account lock is held from the balance check through the
    payment, so two settlements for the same agent can never both pass the
    check on the same funds. Once payment succeeds the settlement is always
    recorded, whatever happens to the call.
    """

    def __init__(
        self,
        *,
        accounts: AgentRegistry,
        catalog: ListingCatalog,
        reputation: ReputationLedger,
        ledger: Ledger,
        payments: PaymentGateway,
        executor: CallExecutor,
        market_id: str = "market",
        settings: SettlementSettings | None = None,
    ) -> None:
        self._accounts = accounts
        self._catalog = catalog
        self._reputation = reputation
        self._ledger = ledger
        self._payments = payments
        self._executor = executor
        self._market_id = market_id
        self._settings = settings or SettlementSettings()
        # Payments and calls get separate pools so hung calls cannot starve
        # payments for other agents.
        if self._settings.deterministic:
            self._payment_pool: _DaemonThreadPoolExecutor | _SynchronousExecutor = (
                _SynchronousExecutor()
            )
            self._call_pool: _DaemonThreadPoolExecutor | _SynchronousExecutor = (
                _SynchronousExecutor()
            )
        else:
            max_workers = max(1, int(self._settings.max_concurrency))
            self._payment_pool = _DaemonThreadPoolExecutor(
                max_workers=max_workers, thread_name_prefix="market_pay"
            )
            self._call_pool = _DaemonThreadPoolExecutor(
                max_workers=max_workers, thread_name_prefix="market_call"
            )

    @property
    def settings(self) -> SettlementSettings:
        return self._settings

    def close(self) -> None:
        self._payment_pool.shutdown(wait=False, cancel_futures=True)
        self._call_pool.shutdown(wait=False, cancel_futures=True)

    def settle(self, agent_id: str, match: Match, payload: Any = None) -> SettlementOutcome:
        account = self._accounts.get(agent_id)
        listing = self._catalog.get(*match.listing.listing_id)
        if not listing.active:
            raise NotFound(f"listing {listing.provider_id}/{listing.api_id} is no longer active")

        price = int(match.estimated_cost)
        settlement_id = str(uuid.uuid4())

        receipt = self._pay(account, match, price=price, settlement_id=settlement_id)

        started = time.monotonic()
        try:
            result = self._invoke(listing.endpoint or "", payload)
        except BaseException:
            # Interrupted after payment: the money moved, so the settlement is
            # recorded as a failure before the interrupt propagates.
            self._finalize(
                agent_id=agent_id,
                match=match,
                price=price,
                settlement_id=settlement_id,
                receipt=receipt,
                result=CallResult(success=False, error="cancelled"),
                elapsed_ms=(time.monotonic() - started) * 1000.0,
                update_reputation=False,
            )
            raise

        elapsed_ms = result.elapsed_ms
        if elapsed_ms is None:
            elapsed_ms = (time.monotonic() - started) * 1000.0
        return self._finalize(
            agent_id=agent_id,
            match=match,
            price=price,
            settlement_id=settlement_id,
            receipt=receipt,
            result=result,
            elapsed_ms=elapsed_ms,
            update_reputation=True,
        )

    def _await(self, future: Future, timeout_seconds: float | None) -> Any:
        try:
            return future.result(timeout=_timeout_arg(timeout_seconds))
        except FutureTimeout:
            future.cancel()
            raise

    def _pay(
        self, account: AgentAccount, match: Match, *, price: int, settlement_id: str
    ) -> PaymentReceipt:
        provider_id = match.listing.provider_id
        with account.lock:
            if not account.debit(price):
                raise InsufficientFunds(account.agent_id, balance=account.balance(), price=price)

            future: Future | None = None
            detail: str | None = None
            receipt: PaymentReceipt | None = None
            try:
                future = self._payment_pool.submit(
                    self._payments.authorize_and_transfer,
                    payer_id=account.agent_id,
                    payee_id=provider_id,
                    amount=price,
                    idempotency_key=settlement_id,
                )
                receipt = _as_receipt(
                    self._await(future, self._settings.payment_timeout_seconds)
                )
            except FutureTimeout:
                # The transfer may still land: keep the debit until the
                # gateway answers.
                timeout_s = _timeout_arg(self._settings.payment_timeout_seconds) or 0.0
                detail = f"payment_timeout_after_s={timeout_s:g}"
                self._hold_pending(account, match, price, settlement_id, future, detail)
                raise PaymentFailed(detail, settlement_id=settlement_id) from None
            except Exception as e:
                detail = f"payment_exception={type(e).__name__}: {e}"
            except BaseException:
                if future is None:
                    account.credit(price)
                    self._record_decline(account.agent_id, match, price, settlement_id, "cancelled")
                else:
                    self._hold_pending(account, match, price, settlement_id, future, "cancelled")
                raise

            if receipt is None or not receipt.success:
                if receipt is not None:
                    detail = receipt.detail or "payment_declined"
                account.credit(price)
                self._record_decline(account.agent_id, match, price, settlement_id, detail)
                logger.warning(
                    "payment for settlement %s declined: %s", settlement_id, detail
                )
                raise PaymentFailed(detail or "payment_declined", settlement_id=settlement_id)

        return receipt

    def _hold_pending(
        self,
        account: AgentAccount,
        match: Match,
        price: int,
        settlement_id: str,
        future: Future,
        detail: str,
    ) -> None:
        self._ledger.append(
            EventType.PAYMENT_PENDING,
            market_id=self._market_id,
            payload={
                "settlement_id": settlement_id,
                "agent_id": account.agent_id,
                "provider_id": match.listing.provider_id,
                "api_id": match.listing.api_id,
                "price": price,
                "detail": detail,
            },
        )
        logger.warning(
            "payment for settlement %s unresolved (%s); holding %d until the gateway answers",
            settlement_id,
            detail,
            price,
        )
        future.add_done_callback(
            lambda done: self._resolve_late_payment(
                done, account=account, match=match, price=price, settlement_id=settlement_id
            )
        )

    def _resolve_late_payment(
        self,
        future: Future,
        *,
        account: AgentAccount,
        match: Match,
        price: int,
        settlement_id: str,
    ) -> None:
        """Settle a payment that answered after its deadline.

        A late approval is recorded as a paid settlement whose call never ran;
        anything else releases the held debit.
        """
        receipt: PaymentReceipt | None = None
        detail = "payment_cancelled"
        if not future.cancelled():
            try:
                receipt = _as_receipt(future.result())
            except BaseException as e:
                detail = f"payment_exception={type(e).__name__}: {e}"

        if receipt is not None and receipt.success:
            self._finalize(
                agent_id=account.agent_id,
                match=match,
                price=price,
                settlement_id=settlement_id,
                receipt=receipt,
                result=CallResult(success=False, error="payment_late"),
                elapsed_ms=0.0,
                update_reputation=False,
                count_call=False,
            )
            return

        if receipt is not None:
            detail = receipt.detail or "payment_declined"
        account.credit(price)
        self._record_decline(account.agent_id, match, price, settlement_id, detail)
        logger.info("late payment for settlement %s released: %s", settlement_id, detail)

    def _invoke(self, endpoint: str, payload: Any) -> CallResult:
        try:
            raw = self._await(
                self._call_pool.submit(self._executor.invoke, endpoint=endpoint, payload=payload),
                self._settings.call_timeout_seconds,
            )
            return raw if isinstance(raw, CallResult) else CallResult.model_validate(raw)
        except FutureTimeout:
            timeout_s = _timeout_arg(self._settings.call_timeout_seconds) or 0.0
            return CallResult(success=False, error=f"call_timeout_after_s={timeout_s:g}")
        except Exception as e:
            return CallResult(success=False, error=f"call_exception={type(e).__name__}: {e}")

    def _record_decline(
        self, agent_id: str, match: Match, price: int, settlement_id: str, detail: str | None
    ) -> None:
        self._ledger.append(
            EventType.PAYMENT_DECLINED,
            market_id=self._market_id,
            payload={
                "settlement_id": settlement_id,
                "agent_id": agent_id,
                "provider_id": match.listing.provider_id,
                "api_id": match.listing.api_id,
                "price": price,
                "detail": detail,
            },
        )

    def _finalize(
        self,
        *,
        agent_id: str,
        match: Match,
        price: int,
        settlement_id: str,
        receipt: PaymentReceipt,
        result: CallResult,
        elapsed_ms: float,
        update_reputation: bool,
        count_call: bool = True,
    ) -> SettlementOutcome:
        provider_id, api_id = match.listing.listing_id
        error = None if result.success else (result.error or "call_failed")

        record = SettlementRecord(
            settlement_id=settlement_id,
            agent_id=agent_id,
            provider_id=provider_id,
            api_id=api_id,
            price=price,
            timestamp=datetime.now(tz=UTC),
            success=result.success,
            payment_reference=receipt.reference,
            elapsed_ms=elapsed_ms,
            error=error,
        )
        self._ledger.append(
            EventType.SETTLEMENT_RECORDED,
            market_id=self._market_id,
            payload=record.model_dump(mode="json"),
        )
        if count_call:
            self._catalog.record_call(provider_id, api_id, success=result.success)

        reputation_after: float | None = None
        if update_reputation:
            reputation_after = self._reputation.update(provider_id, result.success)
            self._ledger.append(
                EventType.REPUTATION_UPDATED,
                market_id=self._market_id,
                payload={
                    "provider_id": provider_id,
                    "success": result.success,
                    "score": reputation_after,
                },
            )

        if result.success:
            logger.info(
                "settlement %s: agent=%s paid %d to %s/%s",
                settlement_id,
                agent_id,
                price,
                provider_id,
                api_id,
            )
        else:
            logger.warning(
                "settlement %s: paid call to %s/%s failed: %s",
                settlement_id,
                provider_id,
                api_id,
                error,
            )

        return SettlementOutcome(
            settlement_id=settlement_id,
            success=result.success,
            provider_id=provider_id,
            api_id=api_id,
            price_charged=price,
            elapsed_ms=float(elapsed_ms),
            data=result.data if result.success else None,
            error=error,
            payment_reference=receipt.reference,
            reputation_after=reputation_after,
        )
