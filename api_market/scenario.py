from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from api_market.market import Marketplace
from api_market.schemas import AgentProfile, Listing


class AgentSeed(AgentProfile):
    balance: int = Field(default=0, ge=0)


@dataclass(frozen=True)
class MarketSpec:
    market_id: str
    listings: list[Listing]
    agents: list[AgentSeed]


def _parse_items(raw: Any, *, key: str, model: type[BaseModel]) -> list[Any]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError(f"{key} must be a list")
    out: list[Any] = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValueError(f"each entry of {key} must be a mapping")
        out.append(model.model_validate(item))
    return out


def load_market_spec(path: Path) -> MarketSpec:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("market file must be a YAML mapping")

    listings = _parse_items(data.get("listings"), key="listings", model=Listing)
    agents = _parse_items(data.get("agents"), key="agents", model=AgentSeed)

    seen: set[tuple[str, str]] = set()
    for listing in listings:
        if listing.listing_id in seen:
            raise ValueError(f"duplicate listing: {listing.provider_id}/{listing.api_id}")
        seen.add(listing.listing_id)

    return MarketSpec(
        market_id=str(data.get("market_id") or "market"),
        listings=listings,
        agents=agents,
    )


def seed_market(market: Marketplace, spec: MarketSpec) -> list[str]:
    """Register the market file's listings and agents; returns agent ids in file order."""
    for listing in spec.listings:
        market.register_listing(listing)
    agent_ids: list[str] = []
    for agent in spec.agents:
        agent_ids.append(
            market.register_agent(
                agent_id=agent.agent_id,
                balance=agent.balance,
                min_provider_reputation=agent.min_provider_reputation,
                strategy=agent.strategy,
                name=agent.name,
                specialization=agent.specialization,
            )
        )
    return agent_ids
