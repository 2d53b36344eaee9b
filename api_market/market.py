from __future__ import annotations

import logging
import uuid
from typing import Any, Protocol

from api_market.accounts import AgentRegistry
from api_market.catalog import ListingCatalog
from api_market.config import MarketSettings, load_settings
from api_market.ledger import HashChainedLedger, InMemoryLedger, Ledger, settlement_records
from api_market.matching import MatchingEngine
from api_market.reputation import ReputationLedger, ReputationPolicy
from api_market.schemas import (
    AgentProfile,
    EventType,
    Listing,
    Match,
    MatchRequest,
    SettlementRecord,
    Strategy,
)
from api_market.settlement import (
    CallExecutor,
    PaymentGateway,
    SettlementCoordinator,
    SettlementOutcome,
    SettlementSettings,
)

logger = logging.getLogger(__name__)


class TaskAnalyzer(Protocol):
    """Maps a free-form task description to a listing category."""

    def category_for(self, task_description: str) -> str: ...


def _new_agent_id() -> str:
    return f"agent-{uuid.uuid4().hex[:12]}"


class Marketplace:
    """Owns one catalog, reputation ledger, agent registry and audit ledger.

    Created at process start and closed at shutdown; components receive each
    other by reference instead of sharing module-level registries.
    """

    def __init__(
        self,
        *,
        payments: PaymentGateway,
        executor: CallExecutor,
        ledger: Ledger | None = None,
        settings: MarketSettings | None = None,
        analyzer: TaskAnalyzer | None = None,
    ) -> None:
        self._settings = settings or MarketSettings(
            settlement=SettlementSettings(), reputation=ReputationPolicy()
        )
        self._market_id = self._settings.market_id
        self._ledger = ledger if ledger is not None else InMemoryLedger()
        self._analyzer = analyzer

        self.reputation = ReputationLedger(self._settings.reputation)
        self.catalog = ListingCatalog(self.reputation)
        self.accounts = AgentRegistry()
        self.engine = MatchingEngine(self.catalog, strict_strategy=self._settings.strict_strategy)
        self.coordinator = SettlementCoordinator(
            accounts=self.accounts,
            catalog=self.catalog,
            reputation=self.reputation,
            ledger=self._ledger,
            payments=payments,
            executor=executor,
            market_id=self._market_id,
            settings=self._settings.settlement,
        )
        self._ledger.append(EventType.MARKET_OPENED, market_id=self._market_id)

    @classmethod
    def from_env(
        cls,
        *,
        payments: PaymentGateway,
        executor: CallExecutor,
        analyzer: TaskAnalyzer | None = None,
    ) -> Marketplace:
        settings = load_settings()
        ledger: Ledger = (
            HashChainedLedger(settings.ledger_path)
            if settings.ledger_path is not None
            else InMemoryLedger()
        )
        return cls(
            payments=payments,
            executor=executor,
            ledger=ledger,
            settings=settings,
            analyzer=analyzer,
        )

    @property
    def ledger(self) -> Ledger:
        return self._ledger

    @property
    def market_id(self) -> str:
        return self._market_id

    def close(self) -> None:
        self.coordinator.close()

    def __enter__(self) -> Marketplace:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # Registration

    def register_listing(self, listing: Listing) -> Listing:
        stored = self.catalog.upsert(listing)
        self._ledger.append(
            EventType.LISTING_UPSERTED,
            market_id=self._market_id,
            payload=listing.model_dump(mode="json"),
        )
        return stored

    def withdraw_listing(self, provider_id: str, api_id: str) -> Listing:
        listing = self.catalog.deactivate(provider_id, api_id)
        self._ledger.append(
            EventType.LISTING_DEACTIVATED,
            market_id=self._market_id,
            payload={"provider_id": provider_id, "api_id": api_id},
        )
        return listing

    def register_agent(
        self,
        *,
        balance: int = 0,
        min_provider_reputation: float = 0.0,
        strategy: Strategy | str = Strategy.BALANCED,
        name: str | None = None,
        specialization: str | None = None,
        agent_id: str | None = None,
    ) -> str:
        profile = AgentProfile(
            agent_id=agent_id or _new_agent_id(),
            name=name,
            specialization=specialization,
            min_provider_reputation=min_provider_reputation,
            strategy=strategy,
        )
        self.accounts.register(profile, balance=balance)
        self._ledger.append(
            EventType.AGENT_REGISTERED,
            market_id=self._market_id,
            payload={**profile.model_dump(mode="json"), "balance": balance},
        )
        logger.info("registered agent %s with balance %d", profile.agent_id, balance)
        return profile.agent_id

    def fund_agent(self, agent_id: str, amount: int) -> int:
        account = self.accounts.get(agent_id)
        account.credit(amount)
        self._ledger.append(
            EventType.FUNDS_CREDITED,
            market_id=self._market_id,
            payload={"agent_id": agent_id, "amount": amount},
        )
        return account.balance()

    def balance(self, agent_id: str) -> int:
        return self.accounts.get(agent_id).balance()

    # Matching and settlement

    def request_for(self, agent_id: str, *, category: str, budget: int) -> MatchRequest:
        profile = self.accounts.profile(agent_id)
        return MatchRequest(
            category=category,
            max_price=budget,
            min_reputation=profile.min_provider_reputation,
            strategy=profile.strategy,
        )

    def discover(self, request: MatchRequest) -> list[Match]:
        return self.engine.rank(request)

    def select(self, request: MatchRequest) -> Match:
        return self.engine.select(request)

    def settle(self, agent_id: str, match: Match, payload: Any = None) -> SettlementOutcome:
        return self.coordinator.settle(agent_id, match, payload)

    def execute(
        self, agent_id: str, *, category: str, budget: int, payload: Any = None
    ) -> SettlementOutcome:
        """Select the best listing for the agent's own preferences and settle one call."""
        match = self.engine.select(self.request_for(agent_id, category=category, budget=budget))
        return self.coordinator.settle(agent_id, match, payload)

    def execute_task(
        self, agent_id: str, task_description: str, *, budget: int, payload: Any = None
    ) -> SettlementOutcome:
        if self._analyzer is None:
            raise ValueError("execute_task requires a TaskAnalyzer")
        category = self._analyzer.category_for(task_description)
        return self.execute(
            agent_id,
            category=category,
            budget=budget,
            payload=task_description if payload is None else payload,
        )

    def settlement_records(self) -> list[SettlementRecord]:
        return settlement_records(self._ledger.iter_events())
