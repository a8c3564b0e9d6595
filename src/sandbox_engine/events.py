# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

from collections.abc import Callable
from threading import RLock
from typing import Any

from loguru import logger

from sandbox_engine.models import SandboxEvent, SandboxEventType

SandboxEventListener = Callable[[SandboxEvent], None]


class EventEmitter:
    """In-process pub/sub for lifecycle events.

    Listeners are called synchronously in registration order. A failing listener is
    logged and skipped; it never affects the execution that emitted the event.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._listeners: dict[SandboxEventType, list[SandboxEventListener]] = {}

    def on(self, event_type: SandboxEventType | str, listener: SandboxEventListener) -> None:
        key = SandboxEventType(event_type)
        with self._lock:
            listeners = self._listeners.setdefault(key, [])
            if listener not in listeners:
                listeners.append(listener)

    def off(self, event_type: SandboxEventType | str, listener: SandboxEventListener) -> None:
        key = SandboxEventType(event_type)
        with self._lock:
            self._listeners[key] = [item for item in self._listeners.get(key, []) if item != listener]

    def emit(
        self,
        event_type: SandboxEventType,
        *,
        request_id: str | None = None,
        container_id: str | None = None,
        data: Any = None,
    ) -> SandboxEvent:
        event = SandboxEvent(type=event_type, request_id=request_id, container_id=container_id, data=data)
        with self._lock:
            listeners = list(self._listeners.get(event_type, []))

        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Event listener for {event_type.value} failed: {e}")
        return event
