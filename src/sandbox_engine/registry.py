# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

import asyncio
import threading
import time
from dataclasses import dataclass, field

from loguru import logger

from sandbox_engine.runtime import UnitHandle


@dataclass
class ActiveExecution:
    request_id: str
    handle: UnitHandle
    created_at: float = field(default_factory=time.time)
    cancelled: bool = False


class ExecutionRegistry:
    """Tracks live execution units by request id.

    An entry exists only while its unit is live. Removing an entry (`release`) is
    the only way to obtain the right to tear its unit down, so a unit is torn down
    exactly once even when `cancel()` races the owning call's own cleanup.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, ActiveExecution] = {}

    def register(self, request_id: str, handle: UnitHandle) -> ActiveExecution:
        """Track a freshly provisioned unit.

        Raises:
            ValueError: If the request id already owns a live unit.
        """
        with self._lock:
            if request_id in self._entries:
                raise ValueError(f"Request {request_id} already owns a live unit")
            entry = ActiveExecution(request_id=request_id, handle=handle)
            self._entries[request_id] = entry
        return entry

    def release(self, request_id: str) -> ActiveExecution | None:
        """Remove and return the entry. The caller must tear its unit down."""
        with self._lock:
            return self._entries.pop(request_id, None)

    def get(self, request_id: str) -> ActiveExecution | None:
        with self._lock:
            return self._entries.get(request_id)

    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def __contains__(self, request_id: object) -> bool:
        with self._lock:
            return request_id in self._entries

    async def cancel(self, request_id: str) -> bool:
        """Stop and remove the unit of an in-flight request.

        Returns:
            bool: True if a live unit was found, False otherwise (nothing is touched).
        """
        with self._lock:
            entry = self._entries.pop(request_id, None)
            if entry is not None:
                entry.cancelled = True

        if entry is None:
            return False

        logger.info(f"Cancelling execution {request_id} (unit {entry.handle.unit_id})")
        await entry.handle.teardown()
        return True

    async def cleanup(self) -> None:
        """Tear down every tracked unit. Used at shutdown."""
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()

        if not entries:
            return

        logger.info(f"Cleaning up {len(entries)} active execution units")
        await asyncio.gather(*(entry.handle.teardown() for entry in entries), return_exceptions=True)
