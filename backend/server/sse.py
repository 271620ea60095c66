"""
Server-Sent Events (SSE) wire format and per-stream queues.

One SSEChannel backs one open ``/api/tables/{name}/events`` response.
The event bridge fills it from the stream's own event loop.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any, AsyncIterator, Optional

from pydantic import BaseModel

EVT_MODEL_CHANGED = "model_changed"


class SSEEvent(BaseModel):
    """A single SSE message."""
    event: str
    data: Any = None
    id: Optional[str] = None

    def format(self) -> str:
        """``id`` / ``event`` / ``data`` lines, JSON payload, blank-line terminated."""
        lines: list[str] = []
        if self.id:
            lines.append(f"id: {self.id}")
        lines.append(f"event: {self.event}")
        payload = "{}" if self.data is None else json.dumps(self.data, default=str)
        lines.extend(f"data: {line}" for line in payload.split("\n"))
        return "\n".join(lines) + "\n\n"


class SSEChannel:
    """Queue of table events for one SSE response.

    Not thread-safe: other threads hand events over with
    ``loop.call_soon_threadsafe(channel.emit_nowait, event, data)``.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Optional[SSEEvent]] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def emit_nowait(self, event: str, data: Any = None) -> None:
        """Queue an event; ignored once the channel is closed."""
        if self._closed:
            return
        self._queue.put_nowait(SSEEvent(event=event, data=data, id=uuid.uuid4().hex[:8]))

    def close(self) -> None:
        """Drop later events and end iteration after those already queued."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    async def __aiter__(self) -> AsyncIterator[str]:
        while True:
            event = await self._queue.get()
            if event is None:
                break
            yield event.format()
