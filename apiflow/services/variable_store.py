"""
In-memory variable store shared by every run of one app instance
"""

import copy
import logging
import threading
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class VariableStore:
    """
    Name -> value bindings.

    `snapshot()` returns a deep copy, so a run sees the bindings as they were
    when it asked and later `set` calls never leak into that view.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._values: Dict[str, Any] = dict(initial or {})
        self._lock = threading.Lock()

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._values)

    def get(self, name: str, default: Any = None) -> Any:
        with self._lock:
            return self._values.get(name, default)

    def set(self, name: str, value: Any):
        if not name:
            raise ValueError("Variable name must not be empty")
        with self._lock:
            self._values[name] = value
        logger.debug(f"Variable set: {name}")

    def update(self, values: Dict[str, Any]):
        for name, value in values.items():
            self.set(name, value)

    def delete(self, name: str) -> bool:
        with self._lock:
            if name not in self._values:
                return False
            del self._values[name]
            return True

    def clear(self):
        with self._lock:
            self._values.clear()

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._values
