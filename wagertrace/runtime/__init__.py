from wagertrace.runtime.context import RuntimeContext

__all__ = ["RuntimeContext"]
