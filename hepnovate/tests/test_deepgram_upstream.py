import asyncio
import json
import unittest
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlsplit

from websockets.exceptions import ConnectionClosedError
from websockets.frames import Close
from websockets.protocol import State

from hepnovate.config import settings
from hepnovate.relay.base import UpstreamEventType
from hepnovate.relay.deepgram import (
    CLOSE_STREAM_MESSAGE,
    KEEPALIVE_MESSAGE,
    DeepgramUpstream,
    build_listen_url,
    deepgram_upstream_factory,
    is_transcript_message,
)

RESULTS = json.dumps(
    {"type": "Results", "channel": {"alternatives": [{"transcript": "patient has fever"}]}}
)
METADATA = json.dumps({"type": "Metadata", "request_id": "abc"})


class _FakeDeepgramSocket:
    def __init__(self, messages: list, error: Exception | None = None) -> None:
        self.messages = messages
        self.error = error
        self.state = State.OPEN
        self.sent: list = []
        self.closed = False
        self._release = asyncio.Event()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.messages:
            yield message
        if self.error is not None:
            raise self.error
        await self._release.wait()

    async def send(self, message) -> None:
        self.sent.append(message)

    async def close(self) -> None:
        self.closed = True
        self.state = State.CLOSED
        self._release.set()


async def _settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


class DeepgramHelpersTests(unittest.TestCase):
    def test_listen_url_carries_options(self) -> None:
        url = build_listen_url(
            "wss://api.deepgram.com/v1/listen",
            language="en",
            punctuate=True,
            smart_format=False,
            model="nova-2",
        )
        parts = urlsplit(url)
        self.assertEqual(parts.netloc, "api.deepgram.com")
        self.assertEqual(
            parse_qs(parts.query),
            {
                "language": ["en"],
                "punctuate": ["true"],
                "smart_format": ["false"],
                "model": ["nova-2"],
            },
        )

    def test_transcript_detection(self) -> None:
        self.assertTrue(is_transcript_message(RESULTS))
        self.assertFalse(is_transcript_message(METADATA))
        self.assertFalse(is_transcript_message("not json"))
        self.assertFalse(is_transcript_message("[1, 2]"))

    def test_factory_reads_settings(self) -> None:
        with (
            patch.object(settings, "deepgram_api_key", "dg-key"),
            patch.object(settings, "transcription_language", "es"),
        ):
            upstream = deepgram_upstream_factory(lambda event: None)

        self.assertEqual(upstream._api_key, "dg-key")
        self.assertIn("language=es", upstream._url)


class DeepgramUpstreamTests(unittest.TestCase):
    def test_open_relays_results_verbatim_and_closes(self) -> None:
        async def scenario() -> None:
            events = []
            fake_ws = _FakeDeepgramSocket([METADATA, RESULTS])
            connect_mock = AsyncMock(return_value=fake_ws)
            upstream = DeepgramUpstream(events.append, api_key="dg-key", url="wss://dg/listen")

            with patch("hepnovate.relay.deepgram.websockets.connect", new=connect_mock):
                await upstream.open()
            await _settle()

            self.assertTrue(upstream.ready)
            self.assertEqual(connect_mock.await_args.args[0], "wss://dg/listen")
            self.assertEqual(
                connect_mock.await_args.kwargs["additional_headers"],
                {"Authorization": "Token dg-key"},
            )
            self.assertEqual([event.type for event in events], [UpstreamEventType.TRANSCRIPT])
            self.assertEqual(events[0].payload, RESULTS)
            self.assertIs(events[0].source, upstream)

            await upstream.keep_alive()
            await upstream.send(b"\x00\x01")
            await upstream.finish()
            await upstream.finish()

            self.assertEqual(fake_ws.sent, [KEEPALIVE_MESSAGE, b"\x00\x01", CLOSE_STREAM_MESSAGE])
            self.assertTrue(fake_ws.closed)
            self.assertFalse(upstream.ready)

        asyncio.run(scenario())

    def test_abnormal_close_publishes_error_then_close(self) -> None:
        async def scenario() -> None:
            events = []
            error = ConnectionClosedError(Close(1011, "internal error"), None)
            fake_ws = _FakeDeepgramSocket([], error=error)
            upstream = DeepgramUpstream(events.append, api_key="dg-key", url="wss://dg/listen")

            with patch(
                "hepnovate.relay.deepgram.websockets.connect",
                new=AsyncMock(return_value=fake_ws),
            ):
                await upstream.open()
            await _settle()

            self.assertEqual(
                [event.type for event in events],
                [UpstreamEventType.ERROR, UpstreamEventType.CLOSE],
            )
            self.assertIs(events[0].error, error)
            await upstream.finish()

        asyncio.run(scenario())

    def test_detached_upstream_publishes_nothing(self) -> None:
        async def scenario() -> None:
            events = []
            fake_ws = _FakeDeepgramSocket([RESULTS])
            upstream = DeepgramUpstream(events.append, api_key="dg-key", url="wss://dg/listen")
            upstream.detach()

            with patch(
                "hepnovate.relay.deepgram.websockets.connect",
                new=AsyncMock(return_value=fake_ws),
            ):
                await upstream.open()
            await _settle()
            await upstream.finish()

            self.assertEqual(events, [])

        asyncio.run(scenario())

    def test_missing_api_key(self) -> None:
        upstream = DeepgramUpstream(lambda event: None, api_key=None, url="wss://dg/listen")
        with self.assertRaises(RuntimeError):
            asyncio.run(upstream.open())
        self.assertFalse(upstream.ready)


if __name__ == "__main__":
    unittest.main()
