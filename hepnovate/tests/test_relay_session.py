import asyncio
import unittest

from hepnovate.relay.base import UpstreamConnection, UpstreamEvent, UpstreamEventType
from hepnovate.relay.session import RelaySession, RelayState


class _FakeClientSocket:
    def __init__(self) -> None:
        self.accepted = False
        self.sent: list[str] = []
        self._incoming: asyncio.Queue[dict] = asyncio.Queue()

    async def accept(self) -> None:
        self.accepted = True

    async def receive(self) -> dict:
        return await self._incoming.get()

    async def send_text(self, text: str) -> None:
        self.sent.append(text)

    def push_audio(self, frame: bytes) -> None:
        self._incoming.put_nowait({"type": "websocket.receive", "bytes": frame})

    def push_text(self, text: str) -> None:
        self._incoming.put_nowait({"type": "websocket.receive", "text": text})

    def disconnect(self) -> None:
        self._incoming.put_nowait({"type": "websocket.disconnect", "code": 1000})


class _FakeUpstream(UpstreamConnection):
    def __init__(self, sink, *, fail_open: bool = False) -> None:
        super().__init__(sink)
        self.fail_open = fail_open
        self.is_ready = False
        self.sent: list[bytes] = []
        self.keepalives = 0
        self.finish_calls = 0

    @property
    def ready(self) -> bool:
        return self.is_ready

    async def open(self) -> None:
        if self.fail_open:
            raise ConnectionError("handshake refused")
        self.is_ready = True

    async def send(self, frame: bytes) -> None:
        self.sent.append(frame)

    async def keep_alive(self) -> None:
        self.keepalives += 1

    async def finish(self) -> None:
        self.finish_calls += 1
        self.is_ready = False

    def emit_transcript(self, text: str) -> None:
        self._publish(UpstreamEventType.TRANSCRIPT, payload=text)

    def drop(self) -> None:
        self.is_ready = False
        self._publish(UpstreamEventType.CLOSE)


class _UpstreamFactory:
    def __init__(self, fail_first: int = 0) -> None:
        self.created: list[_FakeUpstream] = []
        self._fail_first = fail_first

    def __call__(self, sink) -> _FakeUpstream:
        upstream = _FakeUpstream(sink, fail_open=len(self.created) < self._fail_first)
        self.created.append(upstream)
        return upstream


async def _settle() -> None:
    for _ in range(20):
        await asyncio.sleep(0)


def _start(factory: _UpstreamFactory, keepalive_seconds: float = 60.0):
    client = _FakeClientSocket()
    session = RelaySession(
        client,
        upstream_factory=factory,
        keepalive_seconds=keepalive_seconds,
        connect_timeout_seconds=1.0,
    )
    task = asyncio.create_task(session.run())
    return client, session, task


class RelaySessionTests(unittest.TestCase):
    def test_frames_and_transcripts_keep_order(self) -> None:
        async def scenario() -> None:
            factory = _UpstreamFactory()
            client, session, task = _start(factory)
            await _settle()
            self.assertTrue(client.accepted)
            self.assertIs(session.state, RelayState.OPEN)

            for frame in (b"f1", b"f2", b"f3"):
                client.push_audio(frame)
            await _settle()
            upstream = factory.created[0]
            for text in ('{"t": 1}', '{"t": 2}', '{"t": 3}'):
                upstream.emit_transcript(text)
            await _settle()

            self.assertEqual(upstream.sent, [b"f1", b"f2", b"f3"])
            self.assertEqual(client.sent, ['{"t": 1}', '{"t": 2}', '{"t": 3}'])

            client.disconnect()
            await task

        asyncio.run(scenario())

    def test_upstream_close_then_frame_reconnects_exactly_once(self) -> None:
        async def scenario() -> None:
            factory = _UpstreamFactory()
            client, session, task = _start(factory)
            await _settle()
            first = factory.created[0]

            first.drop()
            await _settle()
            self.assertIs(session.state, RelayState.IDLE)
            self.assertIsNone(session.upstream)
            self.assertEqual(first.finish_calls, 1)

            client.push_audio(b"after-drop")
            await _settle()

            self.assertEqual(len(factory.created), 2)
            second = factory.created[1]
            self.assertEqual(second.sent, [b"after-drop"])
            self.assertEqual(first.sent, [])
            self.assertIs(session.state, RelayState.OPEN)

            client.disconnect()
            await task
            self.assertEqual(first.finish_calls, 1)
            self.assertEqual(second.finish_calls, 1)

        asyncio.run(scenario())

    def test_stale_handle_is_released_before_replacement(self) -> None:
        async def scenario() -> None:
            factory = _UpstreamFactory()
            client, session, task = _start(factory)
            await _settle()
            first = factory.created[0]

            # Connection went away without a close event reaching the session yet.
            first.is_ready = False
            client.push_audio(b"frame")
            await _settle()

            self.assertEqual(len(factory.created), 2)
            self.assertEqual(first.finish_calls, 1)
            self.assertEqual(factory.created[1].sent, [b"frame"])

            first.emit_transcript('{"late": true}')
            await session._handle_event(
                UpstreamEvent(first, UpstreamEventType.TRANSCRIPT, '{"late": true}')
            )
            await session._handle_event(UpstreamEvent(first, UpstreamEventType.CLOSE))
            self.assertEqual(client.sent, [])
            self.assertIs(session.state, RelayState.OPEN)

            client.disconnect()
            await task

        asyncio.run(scenario())

    def test_disconnect_finishes_upstream_once_and_stops_keepalive(self) -> None:
        async def scenario() -> None:
            factory = _UpstreamFactory()
            client, session, task = _start(factory, keepalive_seconds=0.01)
            await asyncio.sleep(0.05)
            upstream = factory.created[0]
            self.assertGreaterEqual(upstream.keepalives, 1)

            client.disconnect()
            await task
            pings = upstream.keepalives
            await asyncio.sleep(0.05)

            self.assertIs(session.state, RelayState.CLOSED)
            self.assertEqual(upstream.finish_calls, 1)
            self.assertEqual(upstream.keepalives, pings)
            self.assertTrue(session._keepalive_task.done())

            await session.close()
            self.assertEqual(upstream.finish_calls, 1)

        asyncio.run(scenario())

    def test_failed_handshake_returns_to_idle_and_next_frame_retries(self) -> None:
        async def scenario() -> None:
            factory = _UpstreamFactory(fail_first=1)
            client, session, task = _start(factory)
            await _settle()

            self.assertIs(session.state, RelayState.IDLE)
            self.assertIsNone(session.upstream)

            client.push_audio(b"retry")
            await _settle()

            self.assertEqual(len(factory.created), 2)
            self.assertEqual(factory.created[1].sent, [b"retry"])

            client.disconnect()
            await task

        asyncio.run(scenario())

    def test_frame_is_dropped_when_reconnect_fails(self) -> None:
        async def scenario() -> None:
            factory = _UpstreamFactory(fail_first=2)
            client, session, task = _start(factory)
            await _settle()

            client.push_audio(b"lost")
            await _settle()

            self.assertEqual(len(factory.created), 2)
            self.assertTrue(all(not upstream.sent for upstream in factory.created))
            self.assertIs(session.state, RelayState.IDLE)

            client.disconnect()
            await task
            self.assertIs(session.state, RelayState.CLOSED)

        asyncio.run(scenario())

    def test_text_frames_are_ignored(self) -> None:
        async def scenario() -> None:
            factory = _UpstreamFactory()
            client, _, task = _start(factory)
            client.push_text('{"action": "noop"}')
            await _settle()

            self.assertEqual(factory.created[0].sent, [])
            self.assertEqual(len(factory.created), 1)

            client.disconnect()
            await task

        asyncio.run(scenario())


if __name__ == "__main__":
    unittest.main()
