from wagertrace.betting.book import BettingCollaborator, InMemoryBetBook

__all__ = ["BettingCollaborator", "InMemoryBetBook"]
