"""Server-sent events channel announcing the tool catalog."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable

from starlette.requests import Request
from starlette.responses import StreamingResponse

from .constants import SSE_KEEPALIVE_SECONDS
from .tools import ToolRegistry

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_event(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


class SseAnnouncer:
    """Announce tools once per connection, then emit keep-alive pings.

    Each connection owns exactly one keep-alive task. The task is cancelled
    in the stream's ``finally`` block, which runs on client disconnect,
    generator close and errors alike.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        interval_seconds: float = SSE_KEEPALIVE_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        self.registry = registry
        self.interval_seconds = interval_seconds
        self._sleep = sleep or asyncio.sleep
        self._keepalives: set[asyncio.Task[None]] = set()

    @property
    def open_connections(self) -> int:
        return len(self._keepalives)

    async def stream(self) -> AsyncIterator[str]:
        queue: asyncio.Queue[str] = asyncio.Queue()
        keepalive = asyncio.create_task(self._keepalive(queue))
        self._keepalives.add(keepalive)
        logger.debug("SSE connection opened (%d open).", self.open_connections)
        try:
            yield format_event("tools", {"tools": self.registry.announcements()})
            while True:
                yield await queue.get()
        finally:
            keepalive.cancel()
            self._keepalives.discard(keepalive)
            logger.debug("SSE connection closed (%d open).", self.open_connections)

    async def _keepalive(self, queue: asyncio.Queue[str]) -> None:
        while True:
            await self._sleep(self.interval_seconds)
            queue.put_nowait(format_event("ping", {}))

    async def endpoint(self, request: Request) -> StreamingResponse:
        # Inbound bodies on this channel are not read.
        return StreamingResponse(
            self.stream(),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )
