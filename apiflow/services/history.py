"""
Request history - bounded, newest first
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

logger = logging.getLogger(__name__)


@dataclass
class HistoryEntry:
    request: Dict[str, Any]
    response: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    id: str = field(default_factory=lambda: uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'timestamp': self.timestamp.isoformat(),
            'request': self.request,
            'response': self.response,
            'error': self.error,
        }


class RequestHistory:
    """Keeps the last `max_entries` request/response pairs."""

    def __init__(self, max_entries: int = 50):
        self._entries = deque(maxlen=max(1, max_entries))
        self._lock = threading.Lock()

    def record(self, request: Any, response: Any = None, error: Any = None) -> HistoryEntry:
        """
        Store a request with its response or error.

        Request/response objects are stored through their `to_dict()` when
        they have one.
        """
        entry = HistoryEntry(
            request=_as_dict(request),
            response=_as_dict(response) if response is not None else None,
            error=str(error) if error is not None else None,
        )
        with self._lock:
            self._entries.appendleft(entry)
        return entry

    def entries(self) -> List[HistoryEntry]:
        with self._lock:
            return list(self._entries)

    def clear(self):
        with self._lock:
            self._entries.clear()
        logger.info("Request history cleared")

    def __len__(self):
        with self._lock:
            return len(self._entries)


def _as_dict(value: Any) -> Dict[str, Any]:
    if hasattr(value, 'to_dict'):
        return value.to_dict()
    if isinstance(value, dict):
        return dict(value)
    return {'value': value}
