"""Upstream streaming-transcription contract used by relay sessions."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable


class UpstreamEventType(str, Enum):
    TRANSCRIPT = "transcript"
    CLOSE = "close"
    ERROR = "error"


@dataclass(frozen=True)
class UpstreamEvent:
    source: "UpstreamConnection"
    type: UpstreamEventType
    payload: str | None = None
    error: BaseException | None = None


EventSink = Callable[[UpstreamEvent], None]


class UpstreamConnection(ABC):
    """One streaming-transcription connection.

    Lifecycle events are delivered as ``UpstreamEvent`` messages to the sink
    given at construction, until ``detach`` is called.
    """

    def __init__(self, sink: EventSink) -> None:
        self._sink: EventSink | None = sink

    @property
    @abstractmethod
    def ready(self) -> bool:
        """True while the connection is open and accepts audio."""

    @abstractmethod
    async def open(self) -> None:
        """Complete the handshake; raises on failure."""

    @abstractmethod
    async def send(self, frame: bytes) -> None: ...

    @abstractmethod
    async def keep_alive(self) -> None: ...

    @abstractmethod
    async def finish(self) -> None:
        """Signal end of stream and close. Safe to call more than once."""

    def detach(self) -> None:
        self._sink = None

    def _publish(
        self,
        event_type: UpstreamEventType,
        payload: str | None = None,
        error: BaseException | None = None,
    ) -> None:
        if self._sink is not None:
            self._sink(UpstreamEvent(self, event_type, payload, error))


UpstreamFactory = Callable[[EventSink], UpstreamConnection]
