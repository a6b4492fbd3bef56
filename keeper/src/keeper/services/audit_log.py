"""Append-only audit log of keeper decisions in JSON Lines format.

Each call to ``record`` appends one line containing the event type, a
unix timestamp and the payload.  File writes are performed via
``asyncio.to_thread`` to avoid blocking the event loop, and serialised
with an asyncio lock so concurrent per-position tasks never interleave
partial lines.

Enable it by setting ``EVENT_STORE_PATH`` to a writable file path.
"""

from __future__ import annotations

import asyncio
import json
import os
import time
from typing import Any, Dict, List


class AuditLog:
    """Append-only JSON Lines event logger."""

    def __init__(self, path: str) -> None:
        self.path = os.path.abspath(path)
        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        self._lock = asyncio.Lock()

    async def record(self, event_type: str, data: Dict[str, Any]) -> None:
        """Append an event.  ``data`` must be JSON serialisable."""
        line = json.dumps(
            {"type": event_type, "ts": time.time(), "data": data}, ensure_ascii=False
        ) + "\n"
        async with self._lock:
            await asyncio.to_thread(self._append_to_file, line)

    def _append_to_file(self, line: str) -> None:
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line)

    def read_events(self) -> List[Dict[str, Any]]:
        """Load every recorded event; an absent file yields an empty list."""
        if not os.path.exists(self.path):
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]
