from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class EventType(str, Enum):
    MARKET_OPENED = "market_opened"

    LISTING_UPSERTED = "listing_upserted"
    LISTING_DEACTIVATED = "listing_deactivated"
    AGENT_REGISTERED = "agent_registered"

    FUNDS_CREDITED = "funds_credited"
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_DECLINED = "payment_declined"
    SETTLEMENT_RECORDED = "settlement_recorded"
    REPUTATION_UPDATED = "reputation_updated"


class Strategy(str, Enum):
    COST_EFFECTIVE = "cost-effective"
    HIGH_RELIABILITY = "high-reliability"
    BALANCED = "balanced"


class LedgerEvent(BaseModel):
    schema_version: int = Field(default=1, ge=1)
    event_id: str
    prev_hash: str | None = None
    hash: str
    ts: datetime
    market_id: str
    type: EventType
    payload: dict[str, Any] = Field(default_factory=dict)


class Listing(BaseModel):
    provider_id: str
    api_id: str
    name: str = ""
    category: str
    price_per_call: int = Field(ge=0)
    active: bool = True
    reputation: float = Field(default=50.0, ge=0.0, le=100.0)
    endpoint: str | None = None

    call_count: int = Field(default=0, ge=0)
    failure_count: int = Field(default=0, ge=0)

    @field_validator("provider_id", "api_id", "category")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must be a non-empty string")
        return v

    @field_validator("price_per_call", mode="before")
    @classmethod
    def _coerce_price(cls, v: Any) -> Any:
        # Prices may arrive as decimal strings (token base units exceed JSON-safe ints).
        if isinstance(v, str) and v.strip().isdigit():
            return int(v.strip())
        return v

    @model_validator(mode="after")
    def _default_endpoint(self) -> "Listing":
        if not self.endpoint:
            self.endpoint = f"{self.provider_id}/{self.api_id}"
        return self

    @property
    def listing_id(self) -> tuple[str, str]:
        return (self.provider_id, self.api_id)

    @property
    def reliability(self) -> float:
        return self.reputation / 100.0


class AgentProfile(BaseModel):
    agent_id: str
    name: str | None = None
    specialization: str | None = None
    min_provider_reputation: float = Field(default=0.0, ge=0.0, le=100.0)
    # Kept as given; unknown names resolve at match time (see matching.parse_strategy).
    strategy: Strategy | str = Strategy.BALANCED


class MatchRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: str
    max_price: int = Field(ge=0)
    min_reputation: float = Field(default=0.0, ge=0.0, le=100.0)
    strategy: Strategy | str = Strategy.BALANCED


class Match(BaseModel):
    model_config = ConfigDict(frozen=True)

    listing: Listing
    estimated_cost: int = Field(ge=0)
    strategy: Strategy
    # Strategy-specific ranking value (price, reliability or reliability/price).
    score: float

    @property
    def price(self) -> int:
        return self.estimated_cost


class SettlementRecord(BaseModel):
    """Append-only audit entry written for every settlement that reached the call."""

    settlement_id: str
    agent_id: str
    provider_id: str
    api_id: str
    price: int = Field(ge=0)
    timestamp: datetime
    success: bool
    payment_reference: str | None = None
    elapsed_ms: float | None = None
    error: str | None = None

    def flat(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "provider_id": self.provider_id,
            "api_id": self.api_id,
            "price": self.price,
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
        }


class PaymentReceipt(BaseModel):
    success: bool
    reference: str | None = None
    detail: str | None = None


class CallResult(BaseModel):
    success: bool
    data: Any = None
    error: str | None = None
    elapsed_ms: float | None = Field(default=None, ge=0.0)
