import asyncio
import logging
from typing import Optional

import uvicorn

from .models import Broker

logger = logging.getLogger(__name__)


class HubServer(uvicorn.Server):
    '''uvicorn server that ends open event streams as soon as shutdown begins.

    uvicorn only runs lifespan shutdown once every connection has closed, and
    an event stream never closes by itself, so the broker's channels are
    closed from the exit signal instead.
    '''

    def __init__(self, config: uvicorn.Config, broker: Broker):
        super().__init__(config)
        self.broker = broker
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.closing: Optional[asyncio.Future] = None

    async def serve(self, sockets=None):
        self.loop = asyncio.get_running_loop()
        await super().serve(sockets=sockets)

    def handle_exit(self, sig, frame):
        super().handle_exit(sig, frame)
        loop = self.loop
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                return
        # signal handlers may run outside the loop's callback cycle
        loop.call_soon_threadsafe(self._close_streams)

    def _close_streams(self):
        if self.closing is None:
            logger.info("shutting down, closing open event streams")
            self.closing = asyncio.ensure_future(self.broker.close_all())
