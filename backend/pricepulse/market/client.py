"""Request Client: per-provider retry with exponential backoff, then failover."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, replace

import aiohttp

from .errors import ChainExhaustedError, ProviderError
from .interface import Provider
from .models import MarketRequest, MarketResponse
from .providers import NO_CACHE_HEADERS, classify_error
from .registry import MOCK, provider_chain
from .settings import HttpConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """How hard to push one provider before moving down the chain."""

    max_retries: int = 3
    initial_backoff: float = 0.3
    max_backoff: float = 10.0
    jitter: float = 0.1

    @classmethod
    def from_config(cls, http: HttpConfig) -> RetryPolicy:
        return cls(
            max_retries=http.retry_attempts,
            initial_backoff=http.initial_backoff,
            max_backoff=http.max_backoff,
            jitter=http.backoff_jitter,
        )


@dataclass(frozen=True, slots=True)
class RetryState:
    """Position in the chain plus the retry budget left on that provider."""

    index: int
    retries_left: int
    backoff: float

    @classmethod
    def initial(cls, policy: RetryPolicy) -> RetryState:
        return cls(index=0, retries_left=policy.max_retries, backoff=policy.initial_backoff)


def advance(
    state: RetryState,
    error: ProviderError,
    chain: Sequence[str],
    policy: RetryPolicy,
) -> tuple[RetryState, float]:
    """Next state after ``error``, and how long to wait before trying it.

    A retryable error with budget left stays on the same provider and waits
    the current backoff, doubling it (capped) for next time. Anything else
    moves to the next provider with a fresh budget and no wait. An index past
    the end of ``chain`` means the chain is exhausted. MOCK is never retried.
    """
    if error.retryable and state.retries_left > 0 and chain[state.index] != MOCK:
        return (
            RetryState(
                index=state.index,
                retries_left=state.retries_left - 1,
                backoff=min(state.backoff * 2, policy.max_backoff),
            ),
            state.backoff,
        )
    return (
        RetryState(index=state.index + 1, retries_left=policy.max_retries, backoff=policy.initial_backoff),
        0.0,
    )


def jittered(delay: float, jitter: float) -> float:
    if delay <= 0 or jitter <= 0:
        return delay
    return max(0.0, delay * (1 + random.uniform(-jitter, jitter)))


class RequestClient:
    """Walks a provider chain until someone answers.

    Chains always end in MOCK, so in practice fetch() always returns. MOCK is
    answered by the simulator with no network call.

    The aiohttp session is opened by start() and closed by close(). Without a
    session, HTTP providers fail terminally and the request falls through to
    MOCK.
    """

    def __init__(
        self,
        providers: Mapping[str, Provider],
        policy: RetryPolicy | None = None,
        timeout: float = 12.0,
        chain_lookup: Callable[[str, str | None], tuple[str, ...]] = provider_chain,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._providers = dict(providers)
        self._policy = policy or RetryPolicy()
        self._timeout = timeout
        self._chain_lookup = chain_lookup
        self._sleep = sleep
        self._session: aiohttp.ClientSession | None = None

    @property
    def session(self) -> aiohttp.ClientSession | None:
        return self._session

    def provider(self, name: str) -> Provider | None:
        return self._providers.get(name)

    async def start(self) -> None:
        """Open the shared HTTP session. No-op if already open."""
        if self._session is not None and not self._session.closed:
            return
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self._timeout),
            headers=NO_CACHE_HEADERS,
        )
        logger.info("Request client session opened (timeout %.1fs)", self._timeout)

    async def close(self) -> None:
        """Close the HTTP session. Safe to call multiple times."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
            logger.info("Request client session closed")
        self._session = None

    async def fetch(self, request: MarketRequest) -> MarketResponse:
        """Answer ``request`` from the first provider in its chain that succeeds."""
        chain = self._chain_lookup(request.category, request.instrument or request.symbol)
        policy = replace(self._policy, max_retries=0) if request.skip_retry else self._policy
        state = RetryState.initial(policy)

        while state.index < len(chain):
            name = chain[state.index]
            try:
                return await self._attempt(name, request)
            except Exception as e:
                error = classify_error(name, e)

            state, delay = advance(state, error, chain, policy)
            if delay > 0:
                logger.warning(
                    "%s failed for %s (%s), retrying in %.2fs (%d left)",
                    name, request.symbol, error, delay, state.retries_left,
                )
                await self._sleep(jittered(delay, policy.jitter))
            elif state.index < len(chain):
                logger.info(
                    "%s failed for %s (%s), switching to %s",
                    name, request.symbol, error, chain[state.index],
                )

        logger.error("Provider chain %s exhausted for %s", chain, request.symbol)
        return await self._synthesize(request, chain)

    async def batch_fetch(
        self,
        requests: Iterable[MarketRequest],
        batch_size: int = 5,
        pause: float = 0.3,
    ) -> list[MarketResponse | None]:
        """fetch() for many requests, ``batch_size`` at a time.

        Results keep the input order. An item that raised becomes None.
        """
        pending = list(requests)
        size = max(1, batch_size)
        results: list[MarketResponse | None] = []

        for start in range(0, len(pending), size):
            if start:
                await self._sleep(pause)
            batch = pending[start:start + size]
            outcomes = await asyncio.gather(*(self.fetch(r) for r in batch), return_exceptions=True)
            for request, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error("Batch fetch failed for %s: %s", request.symbol, outcome)
                    results.append(None)
                else:
                    results.append(outcome)
        return results

    # --- Internals ---

    async def _attempt(self, name: str, request: MarketRequest) -> MarketResponse:
        provider = self._providers.get(name)
        if provider is None:
            raise ProviderError(name, "provider not registered")

        session = None if provider.simulated else self._session
        payload = await provider.fetch(session, request)
        data = provider.parse(payload, request)
        return MarketResponse(provider=name, payload=payload, simulated=provider.simulated, data=data)

    async def _synthesize(self, request: MarketRequest, chain: Sequence[str]) -> MarketResponse:
        if MOCK not in self._providers:
            raise ChainExhaustedError(f"no provider in {tuple(chain)} answered {request.symbol}")
        return await self._attempt(MOCK, request)
