"""Abstract interfaces for market data providers and streams."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import aiohttp

from .models import MarketData, MarketRequest


class Provider(ABC):
    """Contract for one upstream price provider in a fallback chain.

    The Request Client owns the retry/failover policy; a provider only knows
    how to ask its own upstream and how to read the answer:

        payload = await provider.fetch(session, request)   # may raise ProviderError
        data = provider.parse(payload, request)            # may raise ProviderError

    MOCK is a provider like any other, it just never touches the network.
    """

    name: str = ""
    simulated: bool = False

    @abstractmethod
    async def fetch(self, session: aiohttp.ClientSession | None, request: MarketRequest) -> Any:
        """Ask the upstream for ``request`` and return its decoded payload.

        Raises ProviderError, with ``retryable`` set for transient failures.
        """

    @abstractmethod
    def parse(self, payload: Any, request: MarketRequest) -> MarketData:
        """Turn a payload returned by fetch() into a MarketData snapshot.

        Raises ProviderError (terminal) when the payload is malformed.
        """


class StreamStrategy(ABC):
    """How one ``category:symbol`` stream is fed: a real socket or a timer.

    Chosen once at subscribe time. The strategy publishes every new snapshot
    through the ``publish`` callback it was built with.
    """

    mode: str = ""

    @abstractmethod
    def start(self) -> None:
        """Begin producing updates. Must not block; schedules its own tasks."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop producing updates and release resources.

        Safe to call multiple times and from any state.
        """
