"""Domain event constants and publisher.

Ordering operations publish one event after their transaction commits.
Events are logged and kept in a bounded in-memory buffer; once the buffer is
full the oldest events are dropped. ``events.buffer_size`` sets the bound.
"""

from __future__ import annotations

from collections import deque
from typing import Any, Deque, Dict, List
import logging
import threading

logger = logging.getLogger(__name__)

PRODUCT_CREATED = "product.created"
PRODUCT_UPDATED = "product.updated"
PRODUCT_MOVED = "product.moved"
PRODUCT_REORDERED = "product.reordered"
PRODUCT_DELETED = "product.deleted"

DEFAULT_BUFFER_SIZE = 1000

_BUFFER_LOCK = threading.Lock()
_buffer: Deque[Dict[str, Any]] = deque(maxlen=DEFAULT_BUFFER_SIZE)


def set_buffer_size(size: int) -> None:
    """Rebound the buffer, keeping the most recent events that still fit."""
    global _buffer
    if size < 1:
        raise ValueError("event buffer size must be at least 1")
    with _BUFFER_LOCK:
        _buffer = deque(_buffer, maxlen=size)


def buffer_size() -> int:
    with _BUFFER_LOCK:
        return int(_buffer.maxlen or 0)


def publish(event_type: str, payload: Dict[str, Any]) -> None:
    """Publish a domain event (log line plus bounded in-memory buffer)."""
    logger.info("event_publish type=%s payload=%s", event_type, payload)
    with _BUFFER_LOCK:
        _buffer.append({"type": event_type, "payload": payload})


def get_buffered_events(clear: bool = True) -> List[Dict[str, Any]]:
    """Return buffered domain events, oldest first; optionally clear the buffer."""
    with _BUFFER_LOCK:
        events = list(_buffer)
        if clear:
            _buffer.clear()
    return events


__all__ = [
    "PRODUCT_CREATED",
    "PRODUCT_UPDATED",
    "PRODUCT_MOVED",
    "PRODUCT_REORDERED",
    "PRODUCT_DELETED",
    "DEFAULT_BUFFER_SIZE",
    "publish",
    "get_buffered_events",
    "set_buffer_size",
    "buffer_size",
]
