import asyncio
import enum
import logging
from typing import AsyncIterator, Awaitable, Callable, Mapping, Optional

from starlette.responses import StreamingResponse

from .exceptions import NotSubscribed
from .models import Broker, Subscriber
from .utilities import HEARTBEAT_INTERVAL, make_comment, make_init, make_published

logger = logging.getLogger(__name__)

DisconnectProbe = Callable[[], Awaitable[bool]]


class SessionState(str, enum.Enum):
    CONNECTING = "connecting"
    STREAMING = "streaming"
    CLOSED = "closed"


# returned by _next() when a heartbeat interval passes with no message
IDLE = object()


async def _never_disconnected() -> bool:
    return False


class StreamSession:
    """
    Drives the server-sent-events protocol for one connection.

    open() registers the client with the broker; events() then yields the
    ``init`` frame followed by one ``published`` frame per fanned-out message
    until the channel is closed or the client goes away. Whatever ends the
    stream, close() releases the subscription exactly once.
    """

    def __init__(self, broker: Broker, client_id: str,
                 is_disconnected: Optional[DisconnectProbe] = None,
                 heartbeat_interval: Optional[float] = HEARTBEAT_INTERVAL):
        self.broker = broker
        self.client_id = client_id
        self.is_disconnected = is_disconnected or _never_disconnected
        self.heartbeat_interval = heartbeat_interval
        self.state = SessionState.CONNECTING
        self.subscriber: Optional[Subscriber] = None
        # receive() carried over from a heartbeat that timed out
        self._pending: Optional["asyncio.Task[Optional[str]]"] = None
        self._release: Optional[asyncio.Future] = None

    async def open(self) -> "StreamSession":
        if self.state is not SessionState.CONNECTING:
            raise RuntimeError(f"session for client[{self.client_id}] is {self.state.value}")
        # AlreadySubscribed propagates before any byte is streamed
        self.subscriber = await self.broker.subscribe(self.client_id)
        self.state = SessionState.STREAMING
        return self

    async def close(self):
        # every caller waits on the same release, which a cancelled caller cannot interrupt
        if self._release is None:
            self._release = asyncio.ensure_future(self._unsubscribe())
        await asyncio.shield(self._release)

    async def _unsubscribe(self):
        previous, self.state = self.state, SessionState.CLOSED
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        if previous is not SessionState.STREAMING or self.subscriber is None:
            return
        try:
            await self.broker.unsubscribe(self.client_id, self.subscriber)
        except NotSubscribed:
            # already released by the broker (shutdown)
            logger.debug("client[%s] was already unsubscribed", self.client_id)

    async def _next(self):
        if self.heartbeat_interval is None:
            return await self.subscriber.receive()
        # the same receive() stays pending across heartbeats, a timeout never discards a message
        if self._pending is None:
            self._pending = asyncio.ensure_future(self.subscriber.receive())
        done, _ = await asyncio.wait((self._pending,), timeout=self.heartbeat_interval)
        if not done:
            return IDLE
        task, self._pending = self._pending, None
        return task.result()

    async def events(self) -> AsyncIterator[str]:
        if self.state is SessionState.CONNECTING:
            await self.open()
        if self.state is not SessionState.STREAMING:
            return
        try:
            yield make_init(self.client_id, self.subscriber.history)
            while True:
                data = await self._next()
                if data is IDLE:
                    if await self.is_disconnected():
                        break
                    yield make_comment()
                    continue
                if data is None:
                    break
                yield make_published(data)
        except asyncio.CancelledError:
            # Graceful cancellation, client went away
            logger.debug("stream for client[%s] cancelled", self.client_id)
            raise
        finally:
            await self.close()


class EventStreamResponse(StreamingResponse):
    '''StreamingResponse over a session that releases it even if streaming never began.'''

    media_type = "text/event-stream"

    def __init__(self, session: StreamSession, headers: Optional[Mapping[str, str]] = None):
        super().__init__(session.events(), headers=headers)
        self.session = session

    async def __call__(self, scope, receive, send):
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.session.close()
