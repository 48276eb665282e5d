"""
Signals — Observer registration for caption events.

Handlers run synchronously, in registration order. An exception in one
handler is logged and does not stop delivery to the handlers after it.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]


@dataclass(frozen=True)
class SubtitleChangeEvent:
    """A cue became visible ("enter") or hidden ("exit")."""
    cue: Optional[Any]              # current subtitle after the transition, or None
    changed: Any                    # the cue that entered or exited
    timestamp: float                # playback time that caused the transition
    direction: str                  # "enter" | "exit"
    active: Tuple[Any, ...] = ()
    language: Optional[str] = None


@dataclass(frozen=True)
class LanguageChangeEvent:
    previous: Optional[str]
    current: str
    reason: str
    position: float = 0.0


@dataclass(frozen=True)
class CacheUpdateEvent:
    key: str
    language: str
    cached: bool
    size_bytes: int = 0


@dataclass(frozen=True)
class ErrorEvent:
    operation: str
    error: BaseException
    language: Optional[str] = None
    details: dict = field(default_factory=dict)


class Registration:
    """Token returned by Signal.register(); unregister() is idempotent."""

    def __init__(self, signal: "Signal", handler: Handler):
        self._signal = signal
        self.handler = handler
        self.active = True

    def unregister(self):
        if self.active:
            self.active = False
            self._signal._remove(self)


class Signal:
    """A named list of handlers."""

    def __init__(self, name: str):
        self.name = name
        self._registrations: List[Registration] = []
        self._lock = threading.Lock()

    def register(self, handler: Handler) -> Registration:
        registration = Registration(self, handler)
        with self._lock:
            self._registrations.append(registration)
        return registration

    def _remove(self, registration: Registration):
        with self._lock:
            if registration in self._registrations:
                self._registrations.remove(registration)

    def emit(self, payload: Any) -> int:
        """
        Deliver a payload to every handler.

        Returns:
            Number of handlers that completed without raising.
        """
        with self._lock:
            registrations = list(self._registrations)

        delivered = 0
        for registration in registrations:
            if not registration.active:
                continue
            try:
                registration.handler(payload)
                delivered += 1
            except Exception as e:
                logger.error(f"Handler for '{self.name}' failed: {e}", exc_info=True)
        return delivered

    def clear(self):
        with self._lock:
            for registration in self._registrations:
                registration.active = False
            self._registrations.clear()

    def __len__(self) -> int:
        return len(self._registrations)
