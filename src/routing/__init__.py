"""Request routing and budget governance for pipeline steps.

This package decides, for every request a pipeline step makes, which
provider serves it, what happens when that provider fails, and whether the
request is affordable at all:
- Per-step provider/model selection from a validated routing configuration
- Fallback across providers (cascade, round-robin, cheapest-first)
- Cost ledger with per-run/daily ceilings and threshold alerts
- Offline mode forcing a single local provider

The ledger and round-robin cursor are in-memory and scoped to one router.
"""

from __future__ import annotations

from src.routing.budget import BudgetCheck, CostAlert, CostLedger, CostStatistics
from src.routing.config import (
    CostManagementConfig,
    DefaultsConfig,
    FallbackCandidate,
    FallbackConfig,
    OfflineModeConfig,
    RoutingConfig,
    RoutingConfigError,
    StepConfig,
    create_default_routing_config,
    load_routing_config,
    parse_routing_config,
)
from src.routing.errors import (
    AllProvidersFailedError,
    BudgetExceededError,
    ProviderNotRegisteredError,
)
from src.routing.fallback import FallbackStrategy, RoundRobinCursor, order_candidates
from src.routing.router import ModelRouter, RoutingResult

__all__ = [
    "AllProvidersFailedError",
    "BudgetCheck",
    "BudgetExceededError",
    "CostAlert",
    "CostLedger",
    "CostManagementConfig",
    "CostStatistics",
    "DefaultsConfig",
    "FallbackCandidate",
    "FallbackConfig",
    "FallbackStrategy",
    "ModelRouter",
    "OfflineModeConfig",
    "ProviderNotRegisteredError",
    "RoundRobinCursor",
    "RoutingConfig",
    "RoutingConfigError",
    "RoutingResult",
    "StepConfig",
    "create_default_routing_config",
    "load_routing_config",
    "order_candidates",
    "parse_routing_config",
]
