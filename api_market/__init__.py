from __future__ import annotations

from api_market.accounts import AgentAccount, AgentRegistry
from api_market.analytics import AgentSpend, ProviderAnalytics, agent_spend, provider_analytics
from api_market.catalog import ListingCatalog
from api_market.config import MarketSettings, configure_logging, load_settings
from api_market.errors import (
    ExecutionFailed,
    InsufficientFunds,
    InvalidStrategy,
    MarketError,
    NoListingsAvailable,
    NotFound,
    PaymentFailed,
)
from api_market.ledger import HashChainedLedger, InMemoryLedger, Ledger
from api_market.market import Marketplace, TaskAnalyzer
from api_market.matching import MatchingEngine, parse_strategy
from api_market.reputation import ReputationLedger, ReputationPolicy
from api_market.scenario import MarketSpec, load_market_spec, seed_market
from api_market.schemas import (
    AgentProfile,
    CallResult,
    EventType,
    LedgerEvent,
    Listing,
    Match,
    MatchRequest,
    PaymentReceipt,
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

__all__ = [
    "__version__",
    # Facade
    "Marketplace",
    "TaskAnalyzer",
    # Components
    "ListingCatalog",
    "MatchingEngine",
    "SettlementCoordinator",
    "ReputationLedger",
    "AgentAccount",
    "AgentRegistry",
    "parse_strategy",
    # Protocols
    "PaymentGateway",
    "CallExecutor",
    # Ledger
    "Ledger",
    "HashChainedLedger",
    "InMemoryLedger",
    # Schemas
    "AgentProfile",
    "CallResult",
    "EventType",
    "LedgerEvent",
    "Listing",
    "Match",
    "MatchRequest",
    "PaymentReceipt",
    "SettlementRecord",
    "Strategy",
    # Settlement
    "SettlementOutcome",
    "SettlementSettings",
    "ReputationPolicy",
    # Errors
    "MarketError",
    "NotFound",
    "NoListingsAvailable",
    "InsufficientFunds",
    "PaymentFailed",
    "ExecutionFailed",
    "InvalidStrategy",
    # Config
    "MarketSettings",
    "load_settings",
    "configure_logging",
    # Analytics
    "ProviderAnalytics",
    "AgentSpend",
    "provider_analytics",
    "agent_spend",
    # Market files
    "MarketSpec",
    "load_market_spec",
    "seed_market",
]

__version__ = "0.1.0"
