from __future__ import annotations


class MiningCompsError(RuntimeError):
    """Base exception for pipeline failures."""


class SourceUnavailable(MiningCompsError):
    """A fetch source failed, timed out or returned something unusable."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class PersistenceFailure(MiningCompsError):
    """The store rejected a write for one ticker."""

    def __init__(self, ticker: str, reason: str) -> None:
        super().__init__(f"{ticker}: {reason}")
        self.ticker = ticker
        self.reason = reason
