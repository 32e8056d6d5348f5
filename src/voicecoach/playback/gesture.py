"""User-gesture hooks that unlock a suspended audio context."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Callable, Optional

from .context import AudioContext

logger = logging.getLogger(__name__)

UNLOCK_EVENTS = ("touchstart", "touchend", "click")

Listener = Callable[[], None]


class GestureTarget:
    """Minimal event target where UI input reports gestures.

    A terminal front end dispatches ``"click"`` on each keypress; a GUI can
    forward touch events the same way.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def add_event_listener(self, event: str, listener: Listener) -> None:
        if listener not in self._listeners[event]:
            self._listeners[event].append(listener)

    def remove_event_listener(self, event: str, listener: Listener) -> None:
        try:
            self._listeners[event].remove(listener)
        except ValueError:
            pass

    def dispatch_event(self, event: str) -> None:
        for listener in list(self._listeners.get(event, ())):
            listener()

    def listener_count(self, event: Optional[str] = None) -> int:
        if event is not None:
            return len(self._listeners.get(event, ()))
        return sum(len(items) for items in self._listeners.values())


class AudioUnlocker:
    """Resume ``context`` on the first gesture, then detach."""

    def __init__(self, target: GestureTarget, context: AudioContext):
        self._target = target
        self._context = context
        self._registered = False
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def registered(self) -> bool:
        return self._registered

    def register(self) -> None:
        if self._registered:
            return
        for event in UNLOCK_EVENTS:
            self._target.add_event_listener(event, self._on_gesture)
        self._registered = True

    def unregister(self) -> None:
        if not self._registered:
            return
        for event in UNLOCK_EVENTS:
            self._target.remove_event_listener(event, self._on_gesture)
        self._registered = False

    def _on_gesture(self) -> None:
        self.unregister()
        if self._context.state != "suspended":
            return
        task = asyncio.get_running_loop().create_task(self._resume())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _resume(self) -> None:
        try:
            await self._context.resume()
            logger.debug("Audio context unlocked by user gesture")
        except RuntimeError as exc:
            logger.warning("Audio unlock failed: %s", exc)


__all__ = ["AudioUnlocker", "GestureTarget", "UNLOCK_EVENTS"]
