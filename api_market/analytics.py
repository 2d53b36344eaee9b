from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field

from api_market.catalog import ListingCatalog
from api_market.errors import NotFound
from api_market.ledger import settlement_records
from api_market.reputation import ReputationLedger
from api_market.schemas import LedgerEvent


@dataclass(frozen=True)
class ProviderAnalytics:
    provider_id: str
    total_apis: int
    active_apis: int
    total_calls: int
    failed_calls: int
    total_earnings: int
    reputation: float
    popular_apis: list[tuple[str, int]] = field(default_factory=list)

    @property
    def success_rate(self) -> float | None:
        if self.total_calls == 0:
            return None
        return (self.total_calls - self.failed_calls) / self.total_calls


@dataclass(frozen=True)
class AgentSpend:
    agent_id: str
    settlements: int
    successes: int
    total_spent: int


def provider_analytics(
    *,
    events: Iterable[LedgerEvent],
    catalog: ListingCatalog,
    reputation: ReputationLedger,
    provider_id: str,
    top_n: int = 3,
) -> ProviderAnalytics:
    """Aggregate a provider's settlements from the ledger.

    Earnings count every paid settlement, including paid calls that failed.
    """
    listings = catalog.listings_for(provider_id)
    records = [r for r in settlement_records(events) if r.provider_id == provider_id]
    if not listings and not records:
        raise NotFound(f"unknown provider: {provider_id}")

    per_api = Counter(r.api_id for r in records)
    popular = sorted(per_api.items(), key=lambda kv: (-kv[1], kv[0]))[: max(0, top_n)]

    return ProviderAnalytics(
        provider_id=provider_id,
        total_apis=len(listings),
        active_apis=sum(1 for x in listings if x.active),
        total_calls=len(records),
        failed_calls=sum(1 for r in records if not r.success),
        total_earnings=sum(r.price for r in records),
        reputation=reputation.score_of(provider_id),
        popular_apis=popular,
    )


def agent_spend(*, events: Iterable[LedgerEvent], agent_id: str) -> AgentSpend:
    records = [r for r in settlement_records(events) if r.agent_id == agent_id]
    return AgentSpend(
        agent_id=agent_id,
        settlements=len(records),
        successes=sum(1 for r in records if r.success),
        total_spent=sum(r.price for r in records),
    )
