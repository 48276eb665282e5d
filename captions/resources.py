"""
Resource Handles — Releasable references to in-memory caption content.

A handle is owned by the registry that created it. Consumers (such as
synchronizers) attach to it and detach when they are done; the handle is
released when the last consumer detaches, when it leaves a ``with`` block,
or when the registry tears everything down. Release never depends on
garbage collection, and release failures are logged, never raised.
"""

import itertools
import logging
import threading
from typing import Callable, Dict, List, Optional

from .errors import ResourceReleasedError

logger = logging.getLogger(__name__)

ReleaseHook = Optional[Callable[["ResourceHandle"], None]]


class ResourceHandle:
    """Opaque, reference-counted reference to caption content."""

    def __init__(self, handle_id: str, content: str, label: str,
                 registry: "HandleRegistry"):
        self.handle_id = handle_id
        self.label = label
        self._content: Optional[str] = content
        self._registry = registry
        self._consumers = 0
        self._released = False
        self._lock = threading.Lock()

    @property
    def released(self) -> bool:
        return self._released

    @property
    def consumers(self) -> int:
        return self._consumers

    @property
    def size_bytes(self) -> int:
        return len(self._content.encode("utf-8")) if self._content else 0

    def read(self) -> str:
        """Return the content. Raises ResourceReleasedError after release."""
        content = self._content
        if self._released or content is None:
            raise ResourceReleasedError(f"Handle {self.handle_id} was already released")
        return content

    def attach(self) -> "ResourceHandle":
        """Register one more consumer."""
        with self._lock:
            if self._released:
                raise ResourceReleasedError(f"Handle {self.handle_id} was already released")
            self._consumers += 1
        return self

    def detach(self):
        """Drop one consumer; releases the handle when the last one leaves."""
        with self._lock:
            if self._released:
                return
            self._consumers = max(0, self._consumers - 1)
            last = self._consumers == 0
        if last:
            self._registry.release(self)

    def _mark_released(self) -> bool:
        with self._lock:
            if self._released:
                return False
            self._released = True
            self._content = None
            return True

    def __enter__(self) -> "ResourceHandle":
        return self

    def __exit__(self, exc_type, exc, tb):
        self._registry.release(self)
        return False

    def __repr__(self):
        state = "released" if self._released else f"{self._consumers} consumers"
        return f"ResourceHandle({self.handle_id}, {self.label!r}, {state})"


class HandleRegistry:
    """
    Tracks every live handle so they can be released deterministically.

    release_all() is idempotent and safe on an empty registry.
    """

    def __init__(self, on_release: ReleaseHook = None):
        self._handles: Dict[str, ResourceHandle] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._on_release = on_release
        self.created = 0
        self.released = 0
        self.release_failures = 0

    def create(self, content: str, label: str = "") -> ResourceHandle:
        """Create and track a handle for a piece of content."""
        with self._lock:
            handle_id = f"caption-handle-{next(self._ids)}"
            handle = ResourceHandle(handle_id, content, label, self)
            self._handles[handle_id] = handle
            self.created += 1
        logger.debug(f"Created {handle_id} for {label or 'content'} ({handle.size_bytes} bytes)")
        return handle

    def release(self, handle: ResourceHandle) -> bool:
        """
        Release one handle. Safe to call repeatedly.

        Returns:
            True if this call released it.
        """
        with self._lock:
            tracked = self._handles.pop(handle.handle_id, None)
        if tracked is None or not handle._mark_released():
            return False

        self.released += 1
        if self._on_release is not None:
            try:
                self._on_release(handle)
            except Exception as e:
                self.release_failures += 1
                logger.warning(f"Failed to release {handle.handle_id}: {e}")
        logger.debug(f"Released {handle.handle_id} ({handle.label})")
        return True

    def release_all(self) -> int:
        """Release every live handle. Returns how many were released."""
        with self._lock:
            handles: List[ResourceHandle] = list(self._handles.values())
        if handles:
            logger.info(f"Cleaning up {len(handles)} caption handles")
        return sum(1 for h in handles if self.release(h))

    @property
    def live_count(self) -> int:
        return len(self._handles)

    def __iter__(self):
        with self._lock:
            return iter(list(self._handles.values()))

    def __len__(self) -> int:
        return len(self._handles)

    def stats(self) -> dict:
        return {
            "handles_created": self.created,
            "handles_released": self.released,
            "handles_live": self.live_count,
            "release_failures": self.release_failures,
        }
