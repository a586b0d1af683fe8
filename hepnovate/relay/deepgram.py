"""Deepgram live-listen connection speaking the relay upstream contract."""

from __future__ import annotations

import asyncio
from contextlib import suppress
import json
import logging
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedError
from websockets.protocol import State

from hepnovate.config import settings
from hepnovate.relay.base import EventSink, UpstreamConnection, UpstreamEventType

logger = logging.getLogger(__name__)

KEEPALIVE_MESSAGE = json.dumps({"type": "KeepAlive"})
CLOSE_STREAM_MESSAGE = json.dumps({"type": "CloseStream"})


def build_listen_url(
    base_url: str,
    *,
    language: str,
    punctuate: bool,
    smart_format: bool,
    model: str,
) -> str:
    query = urlencode(
        {
            "language": language,
            "punctuate": str(punctuate).lower(),
            "smart_format": str(smart_format).lower(),
            "model": model,
        }
    )
    return f"{base_url}?{query}"


def is_transcript_message(message: str) -> bool:
    """Deepgram sends transcripts as ``{"type": "Results", ...}``; other
    messages (Metadata, SpeechStarted, UtteranceEnd) are not relayed."""
    try:
        data = json.loads(message)
    except json.JSONDecodeError:
        return False
    return isinstance(data, dict) and data.get("type") == "Results"


class DeepgramUpstream(UpstreamConnection):
    def __init__(
        self,
        sink: EventSink,
        *,
        api_key: str | None,
        url: str,
        open_timeout: float = 10.0,
    ) -> None:
        super().__init__(sink)
        self._api_key = api_key
        self._url = url
        self._open_timeout = open_timeout
        self._ws = None
        self._reader: asyncio.Task | None = None
        self._finished = False

    @property
    def ready(self) -> bool:
        return self._ws is not None and not self._finished and self._ws.state is State.OPEN

    async def open(self) -> None:
        if not self._api_key:
            raise RuntimeError("DEEPGRAM_API_KEY is not configured.")
        self._ws = await websockets.connect(
            self._url,
            additional_headers={"Authorization": f"Token {self._api_key}"},
            open_timeout=self._open_timeout,
        )
        logger.info("Deepgram connected.")
        self._reader = asyncio.create_task(self._read_loop())

    async def _read_loop(self) -> None:
        try:
            async for message in self._ws:
                if isinstance(message, bytes):
                    message = message.decode("utf-8", errors="replace")
                if is_transcript_message(message):
                    self._publish(UpstreamEventType.TRANSCRIPT, payload=message)
                else:
                    logger.debug("Deepgram non-transcript message ignored.")
        except ConnectionClosedError as e:
            logger.warning("Deepgram connection closed with error: %s", e)
            self._publish(UpstreamEventType.ERROR, error=e)
        except Exception as e:
            logger.exception("Deepgram reader failed: %s", e)
            self._publish(UpstreamEventType.ERROR, error=e)
        finally:
            logger.info("Deepgram disconnected.")
            self._publish(UpstreamEventType.CLOSE)

    async def send(self, frame: bytes) -> None:
        if self._ws is None:
            raise RuntimeError("Deepgram connection is not open.")
        await self._ws.send(frame)

    async def keep_alive(self) -> None:
        if self.ready:
            await self._ws.send(KEEPALIVE_MESSAGE)
            logger.debug("Deepgram keepalive sent.")

    async def finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        if self._ws is not None:
            try:
                if self._ws.state is State.OPEN:
                    await self._ws.send(CLOSE_STREAM_MESSAGE)
                await self._ws.close()
            except (ConnectionClosed, OSError) as e:
                logger.debug("Deepgram close raised: %s", e)
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
            with suppress(asyncio.CancelledError):
                await self._reader


def deepgram_upstream_factory(sink: EventSink) -> DeepgramUpstream:
    """Build a Deepgram upstream from settings."""
    return DeepgramUpstream(
        sink,
        api_key=settings.deepgram_api_key,
        url=build_listen_url(
            settings.deepgram_listen_url,
            language=settings.transcription_language,
            punctuate=settings.transcription_punctuate,
            smart_format=settings.transcription_smart_format,
            model=settings.transcription_model,
        ),
        open_timeout=settings.relay_connect_timeout_seconds,
    )
