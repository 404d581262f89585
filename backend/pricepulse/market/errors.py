"""Exception types raised inside the market data core.

None of these escape MarketDataService: the orchestrator catches them and
degrades to cached or simulated data.
"""

from __future__ import annotations


class MarketDataError(Exception):
    """Base class for market data failures."""


class ProviderError(MarketDataError):
    """A single provider failed to answer a request.

    ``retryable`` separates transient failures (timeouts, connection resets,
    HTTP 429/5xx) that are retried on the same provider from terminal ones
    that trigger an immediate switch to the next provider in the chain.
    """

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        retryable: bool = False,
        status: int | None = None,
    ) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.retryable = retryable
        self.status = status


class ChainExhaustedError(MarketDataError):
    """Every provider in a chain failed. Chains end in MOCK, so this is a bug."""


class ReconnectExhausted(MarketDataError):
    """A ConnectionManager used up its reconnect attempts and gave up."""

    def __init__(self, url: str, attempts: int) -> None:
        super().__init__(f"gave up on {url} after {attempts} reconnect attempts")
        self.url = url
        self.attempts = attempts
