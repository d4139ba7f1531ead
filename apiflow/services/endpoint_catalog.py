"""
In-memory endpoint catalog

Request steps may reference a saved endpoint by id instead of carrying their
own method/url. Catalog entries use the same camelCase JSON as the UI.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class Endpoint:
    id: str
    method: str = 'GET'
    path: str = ''
    name: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Endpoint':
        if not data.get('id'):
            raise ValueError("Endpoint needs an 'id'")
        return cls(
            id=str(data['id']),
            method=str(data.get('method') or 'GET').upper(),
            path=data.get('path') or data.get('url') or '',
            name=data.get('name'),
            headers=dict(data.get('headers') or {}),
            body=data.get('body'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'method': self.method,
            'path': self.path,
            'headers': dict(self.headers),
            'body': self.body,
        }


class EndpointCatalog:

    def __init__(self, endpoints: Optional[List[Endpoint]] = None):
        self._endpoints: Dict[str, Endpoint] = {e.id: e for e in endpoints or []}
        self._lock = threading.Lock()

    def resolve(self, endpoint_id: str) -> Optional[Endpoint]:
        """Endpoint for the id, or None when not found."""
        with self._lock:
            return self._endpoints.get(endpoint_id)

    def add(self, endpoint: Endpoint) -> Endpoint:
        with self._lock:
            self._endpoints[endpoint.id] = endpoint
        logger.debug(f"Endpoint registered: {endpoint.id} ({endpoint.method} {endpoint.path})")
        return endpoint

    def remove(self, endpoint_id: str) -> bool:
        with self._lock:
            return self._endpoints.pop(endpoint_id, None) is not None

    def list(self) -> List[Endpoint]:
        with self._lock:
            return list(self._endpoints.values())
