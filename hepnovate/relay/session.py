"""Per-client audio relay: client audio -> upstream transcriber -> client.

Each client WebSocket owns exactly one ``RelaySession``. Upstream lifecycle
events arrive on an inbox queue and are handled by a single pump task, so
session state is only mutated from the session's own tasks.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from enum import Enum
import logging

from fastapi import WebSocket, WebSocketDisconnect

from hepnovate.config import settings
from hepnovate.relay.base import (
    UpstreamConnection,
    UpstreamEvent,
    UpstreamEventType,
    UpstreamFactory,
)
from hepnovate.relay.deepgram import deepgram_upstream_factory

logger = logging.getLogger(__name__)


class RelayState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


_ALLOWED_TRANSITIONS: dict[RelayState, set[RelayState]] = {
    RelayState.IDLE: {RelayState.CONNECTING, RelayState.CLOSED},
    RelayState.CONNECTING: {RelayState.OPEN, RelayState.IDLE, RelayState.CLOSED},
    RelayState.OPEN: {RelayState.IDLE, RelayState.CLOSED},
    RelayState.CLOSED: set(),
}


async def _cancel_task(task: asyncio.Task | None, name: str) -> None:
    """Cancel a task and swallow cancellation errors."""
    if task is None or task.done():
        return
    task.cancel()
    with suppress(asyncio.CancelledError):
        await task
    logger.debug("Cancelled %s task.", name)


class RelaySession:
    def __init__(
        self,
        client: WebSocket,
        upstream_factory: UpstreamFactory | None = None,
        *,
        keepalive_seconds: float | None = None,
        connect_timeout_seconds: float | None = None,
    ) -> None:
        self.client = client
        self.state = RelayState.IDLE
        self.upstream: UpstreamConnection | None = None
        self._upstream_factory = upstream_factory or deepgram_upstream_factory
        self._keepalive_seconds = (
            keepalive_seconds if keepalive_seconds is not None else settings.relay_keepalive_seconds
        )
        self._connect_timeout = (
            connect_timeout_seconds
            if connect_timeout_seconds is not None
            else settings.relay_connect_timeout_seconds
        )
        self._inbox: asyncio.Queue[UpstreamEvent] = asyncio.Queue()
        self._keepalive_task: asyncio.Task | None = None
        self._events_task: asyncio.Task | None = None

    def _transition(self, new_state: RelayState) -> None:
        if new_state is self.state:
            return
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal relay transition {self.state.value} -> {new_state.value}")
        logger.debug("Relay state %s -> %s", self.state.value, new_state.value)
        self.state = new_state

    async def run(self) -> None:
        """Serve one client until it disconnects."""
        await self.client.accept()
        logger.info("Relay client connected.")
        self._events_task = asyncio.create_task(self._pump_upstream_events())
        try:
            await self._connect_upstream()
            await self._receive_client_frames()
        except WebSocketDisconnect:
            logger.info("Relay client disconnected.")
        except Exception as e:
            logger.exception("Relay session error: %s", e)
        finally:
            await self.close()

    async def _receive_client_frames(self) -> None:
        while self.state is not RelayState.CLOSED:
            message = await self.client.receive()
            if message.get("type") == "websocket.disconnect":
                logger.info("Relay client disconnected.")
                return
            if message.get("bytes"):
                await self.handle_frame(message["bytes"])
            elif message.get("text"):
                logger.debug("Ignoring text frame from relay client.")

    async def handle_frame(self, frame: bytes) -> None:
        """Forward one audio frame, reconnecting once if the upstream is not ready."""
        if self.state is RelayState.CLOSED:
            return
        upstream = self.upstream
        if upstream is None or not upstream.ready:
            logger.info("Upstream not ready; reconnecting.")
            await self._reconnect()
            upstream = self.upstream
            if upstream is None or not upstream.ready:
                logger.warning("Upstream unavailable; dropped %d-byte frame.", len(frame))
                return
        try:
            await upstream.send(frame)
        except Exception as e:
            logger.warning("Upstream send failed: %s", e)
            await _cancel_task(self._keepalive_task, "keepalive")
            await self._release_upstream()

    async def _connect_upstream(self) -> None:
        self._transition(RelayState.CONNECTING)
        upstream = self._upstream_factory(self._inbox.put_nowait)
        self.upstream = upstream
        try:
            await asyncio.wait_for(upstream.open(), timeout=self._connect_timeout)
        except Exception as e:
            logger.warning("Upstream connection failed: %s", e)
            if self.upstream is upstream:
                await self._release_upstream()
            return

        if self.upstream is not upstream or not upstream.ready:
            # Closed again before the handshake result was observed.
            if self.upstream is upstream:
                await self._release_upstream()
            return

        self._transition(RelayState.OPEN)
        self._keepalive_task = asyncio.create_task(self._keepalive_loop())
        logger.info("Upstream connected.")

    async def _reconnect(self) -> None:
        await _cancel_task(self._keepalive_task, "keepalive")
        await self._release_upstream()
        await self._connect_upstream()

    async def _release_upstream(self) -> None:
        """Detach and finish the current upstream handle, if any."""
        upstream = self.upstream
        if upstream is None:
            return
        self.upstream = None
        upstream.detach()
        if self.state is not RelayState.CLOSED:
            self._transition(RelayState.IDLE)
        try:
            await upstream.finish()
        except Exception as e:
            logger.warning("Upstream finish failed: %s", e)

    async def _keepalive_loop(self) -> None:
        while True:
            await asyncio.sleep(self._keepalive_seconds)
            upstream = self.upstream
            if upstream is None or not upstream.ready:
                continue
            try:
                await upstream.keep_alive()
            except Exception as e:
                logger.warning("Upstream keepalive failed: %s", e)

    async def _pump_upstream_events(self) -> None:
        while True:
            event = await self._inbox.get()
            await self._handle_event(event)

    async def _handle_event(self, event: UpstreamEvent) -> None:
        if event.source is not self.upstream:
            logger.debug("Dropping %s event from a replaced upstream.", event.type.value)
            return

        if event.type is UpstreamEventType.TRANSCRIPT:
            try:
                await self.client.send_text(event.payload or "")
            except Exception as e:
                logger.debug("Could not deliver transcript to client: %s", e)
            return

        if event.type is UpstreamEventType.ERROR:
            logger.warning("Upstream error: %s", event.error)
        else:
            logger.info("Upstream closed.")
        await _cancel_task(self._keepalive_task, "keepalive")
        await self._release_upstream()

    async def close(self) -> None:
        """Tear the session down. Safe to call more than once."""
        if self.state is RelayState.CLOSED:
            return
        self._transition(RelayState.CLOSED)
        await _cancel_task(self._keepalive_task, "keepalive")
        await self._release_upstream()
        await _cancel_task(self._events_task, "upstream_events")
        logger.info("Relay session closed.")


async def handle_relay_websocket(
    ws: WebSocket, upstream_factory: UpstreamFactory | None = None
) -> None:
    await RelaySession(ws, upstream_factory).run()
