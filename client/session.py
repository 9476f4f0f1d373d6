"""
Client side of the room event channel.

`ClientSession` is the one place that owns the transport lifecycle. Components
that need to emit or receive events are handed the session explicitly.
"""

import asyncio
import inspect
import json
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed

from logging_config import get_logger

logger = get_logger(__name__)

EventHandler = Callable[[Any], Union[Awaitable[None], None]]


class ClientSession:
    def __init__(self, url: str, connect_timeout: float = 10.0):
        self.url = url
        self.connect_timeout = connect_timeout
        self.connection_id: Optional[str] = None
        self._websocket = None
        self._reader_task: Optional[asyncio.Task] = None
        self._handlers: Dict[str, EventHandler] = {}
        self._connected: Optional[asyncio.Future] = None

    @property
    def connected(self) -> bool:
        return self._websocket is not None and self.connection_id is not None

    async def connect(self) -> str:
        """Open the channel and wait for the server to assign our connection id."""
        if self.connected:
            return self.connection_id
        logger.info(f"Connecting to room server at {self.url}")
        self._connected = asyncio.get_running_loop().create_future()
        self._websocket = await websockets.connect(self.url)
        self._reader_task = asyncio.create_task(self._reader_loop())
        try:
            self.connection_id = await asyncio.wait_for(self._connected, self.connect_timeout)
        except asyncio.TimeoutError:
            await self.close()
            raise
        logger.info(f"Connected as {self.connection_id}")
        return self.connection_id

    def on(self, event: str, handler: EventHandler):
        self._handlers[event] = handler

    def off(self, event: str):
        self._handlers.pop(event, None)

    async def emit(self, event: str, data: Any = None):
        if self._websocket is None:
            logger.warning(f"Cannot emit {event}: not connected")
            return
        try:
            await self._websocket.send(json.dumps({"event": event, "data": data}))
        except ConnectionClosed as e:
            logger.warning(f"Cannot emit {event}: connection closed ({e})")

    async def _dispatch(self, event: str, data: Any):
        if event == "connected":
            if self._connected and not self._connected.done():
                self._connected.set_result(data["connectionId"])
            return
        handler = self._handlers.get(event)
        if handler is None:
            logger.debug(f"No handler for {event}")
            return
        try:
            result = handler(data)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Handler for {event} failed: {e}", exc_info=True)

    async def _reader_loop(self):
        try:
            async for raw in self._websocket:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(f"Ignoring non-JSON frame: {raw!r:.80}")
                    continue
                await self._dispatch(message.get("event"), message.get("data"))
        except ConnectionClosed:
            logger.info("Room server closed the connection")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Reader loop failed: {e}", exc_info=True)
        finally:
            self.connection_id = None

    async def close(self):
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None
        if self._websocket is not None:
            await self._websocket.close()
            self._websocket = None
        self.connection_id = None
        logger.debug("Session closed")
