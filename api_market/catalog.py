from __future__ import annotations

import threading

from api_market.errors import NotFound
from api_market.reputation import ReputationLedger
from api_market.schemas import Listing


class ListingCatalog:
    """Known provider listings.

    Every read returns copies taken under the catalog lock, so callers never
    observe a half-applied upsert. When a ReputationLedger is attached, listing
    reputation is pulled from it at read time.
    """

    def __init__(self, reputation: ReputationLedger | None = None) -> None:
        self._reputation = reputation
        self._listings: dict[tuple[str, str], Listing] = {}
        self._lock = threading.RLock()

    def _fresh(self, listing: Listing) -> Listing:
        if self._reputation is None:
            return listing.model_copy()
        return listing.model_copy(
            update={"reputation": self._reputation.score_of(listing.provider_id)}
        )

    def upsert(self, listing: Listing) -> Listing:
        if self._reputation is not None:
            self._reputation.seed(listing.provider_id, listing.reputation)
        with self._lock:
            key = listing.listing_id
            existing = self._listings.get(key)
            stored = listing.model_copy()
            if existing is not None:
                # Re-registration changes terms, not history.
                stored.call_count = existing.call_count
                stored.failure_count = existing.failure_count
            self._listings[key] = stored
            return self._fresh(stored)

    def deactivate(self, provider_id: str, api_id: str) -> Listing:
        with self._lock:
            listing = self._listings.get((provider_id, api_id))
            if listing is None:
                raise NotFound(f"unknown listing: {provider_id}/{api_id}")
            listing.active = False
            return self._fresh(listing)

    def get(self, provider_id: str, api_id: str) -> Listing:
        with self._lock:
            listing = self._listings.get((provider_id, api_id))
            if listing is None:
                raise NotFound(f"unknown listing: {provider_id}/{api_id}")
            return self._fresh(listing)

    def query(self, category: str, max_price: int, min_reputation: float) -> list[Listing]:
        out: list[Listing] = []
        for listing in self.snapshot():
            if not listing.active:
                continue
            if listing.category != category:
                continue
            if listing.price_per_call > max_price:
                continue
            if listing.reputation < min_reputation:
                continue
            out.append(listing)
        return out

    def snapshot(self) -> list[Listing]:
        with self._lock:
            return [self._fresh(listing) for listing in self._listings.values()]

    def listings_for(self, provider_id: str) -> list[Listing]:
        return [x for x in self.snapshot() if x.provider_id == provider_id]

    def record_call(self, provider_id: str, api_id: str, *, success: bool) -> Listing:
        with self._lock:
            listing = self._listings.get((provider_id, api_id))
            if listing is None:
                raise NotFound(f"unknown listing: {provider_id}/{api_id}")
            listing.call_count += 1
            if not success:
                listing.failure_count += 1
            return self._fresh(listing)

    def __len__(self) -> int:
        return len(self._listings)
