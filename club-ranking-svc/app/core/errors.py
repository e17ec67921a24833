from __future__ import annotations


class ClubRankingError(Exception):
    """Base class for errors raised by the ranking service."""


class InvalidQuery(ClubRankingError, ValueError):
    """Bad ranking query parameters (period selector, limit)."""


class InvalidPeriod(InvalidQuery):
    def __init__(self, period: str):
        super().__init__(f"unknown period {period!r}; expected one of all, month, year")
        self.period = period


class StorageUnavailable(ClubRankingError):
    """Reading members or facts failed. Nothing partial is returned."""


class RankingTimeout(StorageUnavailable):
    pass


class NotFound(ClubRankingError):
    pass


class IntegrityViolation(ClubRankingError):
    """A write would break a fact-store invariant (duplicate completion, member still referenced, ...)."""
