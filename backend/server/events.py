"""
Bridge from Table slicer observers to SSE channels.

Each stored table gets one observer; every open SSE stream for that
(session, table) receives the table's slicer events. Observers may fire
on any thread, so events are handed to each channel's own event loop.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple

from core.table import Table
from server.sse import EVT_MODEL_CHANGED, SSEChannel

logger = logging.getLogger("uvicorn.error")

Key = Tuple[str, str]


class TableEventBridge:
    def __init__(self) -> None:
        self._channels: Dict[Key, List[Tuple[asyncio.AbstractEventLoop, SSEChannel]]] = {}
        self._detach: Dict[Key, Callable[[], None]] = {}
        self._lock = threading.Lock()

    def attach(self, session_id: str, name: str, table: Table) -> None:
        """Observe *table* for (session_id, name), replacing any previous table."""
        key = (session_id, name)

        def on_change(source: Table, event: str, subscriber_id: Optional[Hashable]) -> None:
            self.publish(key, event, {
                "table": name,
                "subscriber_id": None if subscriber_id is None else str(subscriber_id),
                "active_slicers": [str(s) for s in source.slicers],
            })

        unsubscribe = table.observe(on_change)
        with self._lock:
            previous = self._detach.pop(key, None)
            self._detach[key] = unsubscribe
        if previous is not None:
            previous()
            self.publish(key, EVT_MODEL_CHANGED, {"table": name, "fields": table.model()})

    def subscribe(self, session_id: str, name: str) -> SSEChannel:
        """New channel for the current event loop."""
        channel = SSEChannel()
        loop = asyncio.get_running_loop()
        with self._lock:
            self._channels.setdefault((session_id, name), []).append((loop, channel))
        return channel

    def unsubscribe(self, session_id: str, name: str, channel: SSEChannel) -> None:
        """Detach and close *channel*; call from the channel's own loop."""
        key = (session_id, name)
        with self._lock:
            entries = self._channels.get(key, [])
            self._channels[key] = [(lp, ch) for lp, ch in entries if ch is not channel]
            if not self._channels[key]:
                del self._channels[key]
        channel.close()

    def publish(self, key: Key, event: str, data: Any) -> None:
        with self._lock:
            targets = list(self._channels.get(key, []))
        for loop, channel in targets:
            if loop.is_closed():
                logger.warning("Dropping %s event for closed stream on %s", event, key)
                continue
            loop.call_soon_threadsafe(channel.emit_nowait, event, data)


bridge = TableEventBridge()
