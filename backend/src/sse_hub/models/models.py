import asyncio
import logging
from collections import deque
from typing import Callable, Deque, Dict, Iterator, List, Optional

from pydantic_core import PydanticSerializationError

from ..exceptions import AlreadySubscribed, NotSubscribed, SerializationFailure
from ..schemas import Message
from ..utilities import HISTORY_SIZE, SUBSCRIBER_QUEUE_SIZE

logger = logging.getLogger(__name__)


def serialize_message(msg: Message) -> str:
    return msg.model_dump_json(by_alias=True)


# ------------ In-memory structures ------------
class HistoryRing:
    '''Fixed-capacity FIFO of recent messages. Not locked; the Broker guards it.'''

    def __init__(self, capacity: int = HISTORY_SIZE):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._items: Deque[Message] = deque(maxlen=capacity)

    def append(self, msg: Message):
        # deque(maxlen) evicts from the left
        self._items.append(msg)

    def snapshot(self) -> List[Message]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.snapshot())


class Subscriber:
    ''' Delivery channel for one connected client.'''

    def __init__(self, client_id: str, queue_size: int = SUBSCRIBER_QUEUE_SIZE):
        self.client_id = client_id

        # serialized messages waiting for this client's stream; deliver()
        # evicts the oldest entry when full, and close() always makes room
        # for the trailing None that ends the stream
        self.queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue(maxsize=queue_size)

        # history as of registration, filled in by Broker.subscribe
        self.history: List[Message] = []
        self.connected = True
        self.dropped = 0

    def _make_room(self) -> bool:
        if not self.queue.full():
            return False
        try:
            self.queue.get_nowait()
        except asyncio.QueueEmpty:
            return False
        return True

    def deliver(self, data: str) -> bool:
        if not self.connected:
            return False
        if self._make_room():
            self.dropped += 1
            logger.warning("client[%s] is a slow consumer, dropped oldest message (%d dropped so far)",
                           self.client_id, self.dropped)
        self.queue.put_nowait(data)
        return True

    def close(self):
        if not self.connected:
            return
        self.connected = False
        # the close marker must always fit, pending data is abandoned if needed
        self._make_room()
        self.queue.put_nowait(None)

    async def receive(self) -> Optional[str]:
        '''Next serialized message, or None once the channel is closed.'''
        if not self.connected and self.queue.empty():
            return None
        return await self.queue.get()


class Broker:
    '''Subscriber registry plus message history, behind one lock.

    Every registry read or write, every history read or write and the
    fan-out loop of publish() happen while holding ``lock``, so a client
    registering concurrently with a publish either gets the message live or
    finds it in its history snapshot, never both and never neither.
    '''

    def __init__(self, history_size: int = HISTORY_SIZE,
                 queue_size: int = SUBSCRIBER_QUEUE_SIZE,
                 serializer: Callable[[Message], str] = serialize_message):
        self.subscribers: Dict[str, Subscriber] = {}
        self.history = HistoryRing(history_size)
        self.queue_size = queue_size
        self.serializer = serializer
        self.lock = asyncio.Lock()
        # stats
        self.messages_published = 0

    async def is_connected(self, client_id: str) -> bool:
        async with self.lock:
            return client_id in self.subscribers

    async def subscribe(self, client_id: str, subscriber: Optional[Subscriber] = None) -> Subscriber:
        if subscriber is None:
            subscriber = Subscriber(client_id, self.queue_size)
        async with self.lock:
            if client_id in self.subscribers:
                raise AlreadySubscribed(client_id)
            subscriber.history = self.history.snapshot()
            self.subscribers[client_id] = subscriber
        logger.info("client[%s] connected -- welcome!", client_id)
        return subscriber

    async def unsubscribe(self, client_id: str, subscriber: Optional[Subscriber] = None):
        '''Remove ``client_id`` and close its channel.

        When ``subscriber`` is given, only that exact channel is removed; a
        newer registration under the same id is left alone.
        '''
        async with self.lock:
            current = self.subscribers.get(client_id)
            if current is None or (subscriber is not None and current is not subscriber):
                raise NotSubscribed(client_id)
            del self.subscribers[client_id]
            current.close()
        logger.info("client[%s] disconnected -- goodbye!", client_id)

    async def publish(self, msg: Message) -> int:
        '''Record ``msg`` in history and fan it out. Returns the number of receivers.'''
        async with self.lock:
            self.history.append(msg)
            self.messages_published += 1
            try:
                data = self.serializer(msg)
            except (PydanticSerializationError, TypeError, ValueError) as exc:
                logger.error("failed serializing message %s from client[%s]: %s",
                             msg.id, msg.client_id, exc)
                raise SerializationFailure(str(exc)) from exc

            # fan-out never awaits, a full queue drops its oldest entry
            delivered = 0
            for sub in self.subscribers.values():
                if sub.deliver(data):
                    delivered += 1
        logger.debug("message %s from client[%s] delivered to %d subscribers",
                     msg.id, msg.client_id, delivered)
        return delivered

    async def recent(self) -> List[Message]:
        async with self.lock:
            return self.history.snapshot()

    async def close_all(self) -> int:
        async with self.lock:
            subscribers = list(self.subscribers.values())
            self.subscribers.clear()
            for sub in subscribers:
                sub.close()
        if subscribers:
            logger.info("closed %d remaining subscribers", len(subscribers))
        return len(subscribers)

    async def stats(self) -> dict:
        async with self.lock:
            return {
                "subscribers": len(self.subscribers),
                "history": len(self.history),
                "messages_published": self.messages_published,
                "dropped": sum(s.dropped for s in self.subscribers.values()),
            }
