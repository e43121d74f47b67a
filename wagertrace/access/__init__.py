from wagertrace.access.control import AccessControl
from wagertrace.access.scheduler import ExpiryScheduler

__all__ = ["AccessControl", "ExpiryScheduler"]
