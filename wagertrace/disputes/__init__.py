from wagertrace.disputes.resolver import DisputeResolver

__all__ = ["DisputeResolver"]
