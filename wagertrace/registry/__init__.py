from wagertrace.registry.reputation import ReputationRegistry
from wagertrace.registry.trace import TraceRegistry

__all__ = ["ReputationRegistry", "TraceRegistry"]
