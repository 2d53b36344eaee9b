from __future__ import annotations

from collections.abc import Iterable
from fractions import Fraction
from typing import Any

from api_market.catalog import ListingCatalog
from api_market.errors import InvalidStrategy, NoListingsAvailable
from api_market.schemas import Listing, Match, MatchRequest, Strategy


def parse_strategy(raw: Strategy | str | None, *, strict: bool = False) -> Strategy:
    """Resolve a strategy name. Unknown or missing names mean `balanced` unless `strict`."""
    if isinstance(raw, Strategy):
        return raw
    name = str(raw or "").strip().lower().replace("_", "-")
    for s in Strategy:
        if s.value == name:
            return s
    if strict:
        raise InvalidStrategy(f"unknown strategy: {raw!r}")
    return Strategy.BALANCED


def value_score(listing: Listing) -> Fraction | None:
    """Reliability per unit price, exact. None stands for a free listing (unbounded value)."""
    if listing.price_per_call == 0:
        return None
    return Fraction(listing.reputation) / (100 * listing.price_per_call)


def _sort_key(listing: Listing, strategy: Strategy) -> tuple[Any, ...]:
    tiebreak = listing.listing_id
    if strategy == Strategy.COST_EFFECTIVE:
        return (listing.price_per_call, *tiebreak)
    if strategy == Strategy.HIGH_RELIABILITY:
        return (-listing.reputation, *tiebreak)

    value = value_score(listing)
    if value is None:
        # Free listings rank first, best reputation among them first.
        return (0, -listing.reputation, *tiebreak)
    return (1, -value, *tiebreak)


def _score(listing: Listing, strategy: Strategy) -> float:
    if strategy == Strategy.COST_EFFECTIVE:
        return float(listing.price_per_call)
    if strategy == Strategy.HIGH_RELIABILITY:
        return listing.reliability
    value = value_score(listing)
    return float("inf") if value is None else float(value)


def rank_listings(listings: Iterable[Listing], strategy: Strategy) -> list[Listing]:
    return sorted(listings, key=lambda x: _sort_key(x, strategy))


class MatchingEngine:
    """Selects a listing for a request. Read-only over the catalog."""

    def __init__(self, catalog: ListingCatalog, *, strict_strategy: bool = False) -> None:
        self._catalog = catalog
        self._strict_strategy = strict_strategy

    def rank(self, request: MatchRequest) -> list[Match]:
        strategy = parse_strategy(request.strategy, strict=self._strict_strategy)
        candidates = self._catalog.query(
            request.category, request.max_price, request.min_reputation
        )
        return [
            Match(
                listing=listing,
                estimated_cost=listing.price_per_call,
                strategy=strategy,
                score=_score(listing, strategy),
            )
            for listing in rank_listings(candidates, strategy)
        ]

    def select(self, request: MatchRequest) -> Match:
        ranked = self.rank(request)
        if not ranked:
            raise NoListingsAvailable(
                f"no active {request.category!r} listing within price {request.max_price} "
                f"and reputation >= {request.min_reputation:g}"
            )
        return ranked[0]
