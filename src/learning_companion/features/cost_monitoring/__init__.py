"""Cost-aware request optimization: prompt compression, tier selection, usage ledger."""

from .monitor import CostTracker, ModelTier, Priority, UsageRecord, UsageReport
from .optimizer import OptimizedRequest, RequestOptimizer, estimate_tokens

__all__ = [
    "CostTracker",
    "ModelTier",
    "OptimizedRequest",
    "Priority",
    "RequestOptimizer",
    "UsageRecord",
    "UsageReport",
    "estimate_tokens",
]
