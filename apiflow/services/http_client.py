"""
HTTP Client - Sends flow requests with httpx

One AsyncClient per request, so the client is safe to use from any event loop
(the Flask views drive each run with asyncio.run).
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass
class HttpRequest:
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    body: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'method': self.method,
            'url': self.url,
            'headers': dict(self.headers),
            'params': dict(self.params),
            'body': self.body,
        }


@dataclass
class HttpResponse:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    duration_ms: float = 0.0
    status_text: str = ''

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'status_text': self.status_text,
            'headers': dict(self.headers),
            'body': self.body,
            'duration_ms': self.duration_ms,
        }


class NetworkError(Exception):
    """Transport failure: DNS, connection refused, timeout, invalid URL"""

    def __init__(self, message: str, request: Optional[HttpRequest] = None, cause: Optional[BaseException] = None):
        self.message = message
        self.request = request
        self.cause = cause
        super().__init__(self.message)


class HttpStatusError(Exception):
    """Non-2xx response while fail_on_error_status is enabled"""

    def __init__(self, request: HttpRequest, response: HttpResponse):
        self.request = request
        self.response = response
        self.message = f"HTTP {response.status} {response.status_text}".strip()
        super().__init__(self.message)


def _decode_body(response: httpx.Response) -> Any:
    """JSON when the payload parses as JSON, text otherwise, None when empty."""
    if not response.content:
        return None
    content_type = response.headers.get('content-type', '')
    text = response.text
    if 'json' in content_type or text.lstrip()[:1] in ('{', '['):
        try:
            return json.loads(text)
        except ValueError:
            logger.debug(f"Response declared as JSON but did not parse ({content_type})")
    return text


class HttpClient:
    """
    Executes HttpRequest objects.

    Usage:
        client = HttpClient(base_url='https://api.example.com', timeout=10)
        response = await client.execute(HttpRequest('GET', '/users/1'))
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        fail_on_error_status: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: Prefix for relative request URLs
            timeout: Seconds before a request fails with NetworkError
            fail_on_error_status: Raise HttpStatusError for non-2xx responses
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip('/') if base_url else None
        self.timeout = timeout
        self.fail_on_error_status = fail_on_error_status
        self.transport = transport

    def build_url(self, url: str) -> str:
        if self.base_url and not url.lower().startswith(('http://', 'https://')):
            return f"{self.base_url}/{url.lstrip('/')}"
        return url

    async def execute(self, request: HttpRequest) -> HttpResponse:
        """
        Send a request.

        Returns:
            HttpResponse with decoded body

        Raises:
            NetworkError: On transport failure or timeout
            HttpStatusError: On non-2xx status (when fail_on_error_status)
        """
        method = (request.method or 'GET').upper()
        url = self.build_url(request.url)

        kwargs: Dict[str, Any] = {'headers': request.headers or None, 'params': request.params or None}
        if request.body is not None and method in ('GET', 'HEAD'):
            logger.debug(f"Dropping body on {method} request to {url}")
        elif isinstance(request.body, (str, bytes)):
            kwargs['content'] = request.body
        elif request.body is not None:
            kwargs['json'] = request.body

        logger.info(f"HTTP {method} {url}")
        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                raw = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request timed out after {self.timeout}s: {method} {url}", request, e)
        except (httpx.RequestError, httpx.InvalidURL) as e:
            raise NetworkError(f"Network error: {e}", request, e)

        response = HttpResponse(
            status=raw.status_code,
            headers=dict(raw.headers),
            body=_decode_body(raw),
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            status_text=raw.reason_phrase,
        )
        logger.debug(f"HTTP {method} {url} -> {response.status} in {response.duration_ms}ms")

        if self.fail_on_error_status and not response.ok:
            raise HttpStatusError(request, response)
        return response
