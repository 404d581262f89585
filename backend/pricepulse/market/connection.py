"""Self-healing WebSocket connection: reconnect with jittered backoff plus heartbeat."""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import random
import time
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed

from .errors import ReconnectExhausted

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006
MAX_BACKOFF_FACTOR = 10.0

# The connect timeout is enforced with asyncio.wait_for around the connector
default_connector: Callable[[str], Awaitable[Any]] = partial(ws_connect, open_timeout=None)


class ConnectionState(enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


def reconnect_delay_for(base: float, attempt: int) -> float:
    """base * U(0.8, 1.1) * min(1.5^(attempt-1), 10)."""
    factor = min(1.5 ** max(attempt - 1, 0), MAX_BACKOFF_FACTOR)
    return base * random.uniform(0.8, 1.1) * factor


def decode_message(raw: str | bytes) -> Any:
    """JSON-decode a frame, passing the raw text through if it is not JSON."""
    if isinstance(raw, (bytes, bytearray)):
        raw = bytes(raw).decode("utf-8", errors="replace")
    try:
        return json.loads(raw)
    except ValueError:
        return raw


class ConnectionManager:
    """One WebSocket URL kept alive until cleanup().

    Lifecycle:
        IDLE -> CONNECTING -> OPEN -> (drop) -> CONNECTING ... -> CLOSED

    connect() only schedules the run loop; all I/O happens in a background
    task. On open, the reconnect counter resets, the subscription message is
    sent and the heartbeat starts. An unclean close or a failed connect is
    retried after ``reconnect_delay_for(reconnect_delay, attempt)``; once
    ``max_reconnect_attempts`` is used up, a single ReconnectExhausted goes to
    on_error and the manager stays CLOSED. A clean close (code 1000) is final.

    The heartbeat treats a connection with no inbound frame for more than
    2 x heartbeat_interval as dead and forces a reconnect.
    """

    def __init__(
        self,
        url: str,
        on_message: Callable[[Any], None],
        *,
        on_open: Callable[[], None] | None = None,
        on_close: Callable[[int], None] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
        subscription_message: Any = None,
        auto_reconnect: bool = True,
        max_reconnect_attempts: int = 3,
        reconnect_delay: float = 2.0,
        heartbeat_interval: float = 30.0,
        heartbeat_message: Any = None,
        connection_timeout: float = 10.0,
        connector: Callable[[str], Awaitable[Any]] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.url = url
        self.subscription_message = subscription_message
        self.auto_reconnect = auto_reconnect
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self.heartbeat_interval = heartbeat_interval
        self.heartbeat_message = heartbeat_message
        self.connection_timeout = connection_timeout

        self._on_message = on_message
        self._on_open = on_open
        self._on_close = on_close
        self._on_error = on_error
        self._connector = connector or default_connector
        self._clock = clock

        self._state = ConnectionState.IDLE
        self._transport: Any = None
        self._task: asyncio.Task | None = None
        self._reader: asyncio.Task | None = None
        self._heartbeat: asyncio.Task | None = None
        self._reconnect_attempts = 0
        self._reconnecting = False
        self._stopped = False
        self._last_activity = 0.0

    # --- Public API ---

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.OPEN

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def reconnecting(self) -> bool:
        return self._reconnecting

    def connect(self) -> None:
        """Start (or restart) the connection loop. No-op while one is running."""
        if self._task and not self._task.done():
            return
        self._stopped = False
        self._reconnect_attempts = 0
        self._task = asyncio.create_task(self._run(), name=f"ws:{self.url}")

    async def send(self, message: Any) -> bool:
        """Send a frame if OPEN. Non-string messages are JSON-encoded."""
        transport = self._transport
        if transport is None or self._state is not ConnectionState.OPEN:
            logger.debug("Dropping send on %s: not connected", self.url)
            return False
        frame = message if isinstance(message, (str, bytes)) else json.dumps(message)
        try:
            await transport.send(frame)
        except Exception as e:
            logger.warning("Send failed on %s: %s", self.url, e)
            return False
        return True

    async def cleanup(self) -> None:
        """Close with code 1000 and stop all tasks. Idempotent, safe from any state."""
        self._stopped = True
        if self._state not in (ConnectionState.IDLE, ConnectionState.CLOSED):
            self._state = ConnectionState.CLOSING

        transport = self._transport
        if transport is not None:
            await self._close_transport(transport, NORMAL_CLOSURE, "client cleanup")

        await self._cancel(self._task)
        self._task = None
        await self._cancel(self._heartbeat)
        self._heartbeat = None
        await self._cancel(self._reader)
        self._reader = None

        self._transport = None
        self._reconnecting = False
        self._state = ConnectionState.CLOSED

    # --- Internals ---

    async def _run(self) -> None:
        while not self._stopped:
            self._state = ConnectionState.CONNECTING
            try:
                transport = await asyncio.wait_for(self._connector(self.url), self.connection_timeout)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Connect to %s failed: %s", self.url, str(e) or type(e).__name__)
                self._emit_error(e)
                if not await self._schedule_reconnect():
                    break
                continue

            code = await self._serve(transport)
            self._notify_close(code)

            if self._stopped or code == NORMAL_CLOSURE:
                break
            if not await self._schedule_reconnect():
                break

        if not self._stopped:
            self._state = ConnectionState.CLOSED

    async def _serve(self, transport: Any) -> int:
        """Run one open connection until it closes. Returns the close code."""
        self._transport = transport
        self._state = ConnectionState.OPEN
        self._reconnect_attempts = 0
        self._last_activity = self._clock()
        logger.info("WebSocket open: %s", self.url)

        if self.subscription_message is not None:
            await self.send(self.subscription_message)
        if self._on_open:
            try:
                self._on_open()
            except Exception:
                logger.exception("on_open callback failed for %s", self.url)

        self._reader = asyncio.create_task(self._read_loop(transport), name=f"ws-reader:{self.url}")
        if self.heartbeat_interval > 0:
            self._heartbeat = asyncio.create_task(self._heartbeat_loop(), name=f"ws-heartbeat:{self.url}")

        try:
            await asyncio.wait({self._reader})
        finally:
            await self._cancel(self._heartbeat)
            self._heartbeat = None

        reader, self._reader = self._reader, None
        if self._stopped:
            code = NORMAL_CLOSURE
        elif reader is None or reader.cancelled():
            # Heartbeat declared the connection dead
            await self._close_transport(transport, 4000, "heartbeat timeout")
            code = ABNORMAL_CLOSURE
        else:
            code = reader.result()

        self._transport = None
        self._state = ConnectionState.CLOSED
        return code

    async def _read_loop(self, transport: Any) -> int:
        while True:
            try:
                raw = await transport.recv()
            except ConnectionClosed as e:
                return e.rcvd.code if e.rcvd is not None else ABNORMAL_CLOSURE
            except Exception as e:
                logger.warning("Read failed on %s: %s", self.url, e)
                self._emit_error(e)
                return ABNORMAL_CLOSURE

            self._last_activity = self._clock()
            try:
                self._on_message(decode_message(raw))
            except Exception:
                logger.exception("on_message callback failed for %s", self.url)

    async def _heartbeat_loop(self) -> None:
        interval = self.heartbeat_interval
        while True:
            await asyncio.sleep(interval)
            idle = self._clock() - self._last_activity
            if idle > 2 * interval:
                logger.warning("No traffic on %s for %.1fs, restarting connection", self.url, idle)
                if self._reader is not None:
                    self._reader.cancel()
                return
            if self.heartbeat_message is not None:
                await self.send(self.heartbeat_message)

    async def _schedule_reconnect(self) -> bool:
        """Sleep before the next attempt. False when we should give up."""
        if self._stopped or not self.auto_reconnect:
            return False
        if self._reconnect_attempts >= self.max_reconnect_attempts:
            error = ReconnectExhausted(self.url, self._reconnect_attempts)
            logger.error("%s", error)
            self._emit_error(error)
            return False

        self._reconnect_attempts += 1
        delay = reconnect_delay_for(self.reconnect_delay, self._reconnect_attempts)
        logger.info(
            "Reconnecting to %s in %.2fs (attempt %d/%d)",
            self.url, delay, self._reconnect_attempts, self.max_reconnect_attempts,
        )
        self._reconnecting = True
        try:
            await asyncio.sleep(delay)
        finally:
            self._reconnecting = False
        return not self._stopped

    async def _close_transport(self, transport: Any, code: int, reason: str) -> None:
        try:
            await asyncio.wait_for(transport.close(code=code, reason=reason), self.connection_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug("Close of %s raised %s", self.url, e)

    def _notify_close(self, code: int) -> None:
        logger.info("WebSocket closed: %s (code %d)", self.url, code)
        if self._on_close:
            try:
                self._on_close(code)
            except Exception:
                logger.exception("on_close callback failed for %s", self.url)

    def _emit_error(self, error: BaseException) -> None:
        if self._on_error:
            try:
                self._on_error(error)
            except Exception:
                logger.exception("on_error callback failed for %s", self.url)

    @staticmethod
    async def _cancel(task: asyncio.Task | None) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
