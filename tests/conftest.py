"""
Pytest fixtures for flow engine tests
"""

import json

import httpx
import pytest
from unittest.mock import AsyncMock

from apiflow.flow_engine import EventRecorder, FlowRunner
from apiflow.services import (
    Endpoint,
    EndpointCatalog,
    HttpResponse,
    RequestHistory,
    VariableStore,
)


@pytest.fixture
def variable_store():
    """Empty in-memory variable store"""
    return VariableStore()


@pytest.fixture
def endpoint_catalog():
    """Catalog with a couple of saved endpoints"""
    return EndpointCatalog([
        Endpoint(id='users.me', method='GET', path='/users/me',
                 headers={'Accept': 'application/json', 'X-Client': 'catalog'}),
        Endpoint(id='auth.login', method='POST', path='/auth/login',
                 body={'email': '${email}', 'password': '${password}'}),
    ])


@pytest.fixture
def history():
    return RequestHistory(max_entries=10)


@pytest.fixture
def http_client():
    """HTTP client mock answering 200 {"status": "up"} to everything"""
    client = AsyncMock()
    client.execute.return_value = HttpResponse(status=200, body={'status': 'up'}, duration_ms=1.0)
    return client


@pytest.fixture
def log_sink():
    """Collects (level, message) pairs written by log steps"""
    messages = []

    def sink(level, message):
        messages.append((level, message))

    sink.messages = messages
    return sink


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def runner(variable_store, http_client, endpoint_catalog, history, log_sink, recorder):
    """Runner wired to mocks, with an event recorder subscribed"""
    runner = FlowRunner(
        variable_store=variable_store,
        http_client=http_client,
        endpoint_catalog=endpoint_catalog,
        history=history,
        log_sink=log_sink,
        default_delay_ms=0,
    )
    runner.subscribe(recorder)
    return runner


def _json_transport(routes):
    """
    httpx.MockTransport answering from a {(method, path): (status, body)} map.

    Unknown routes answer 404.
    """
    def handler(request: httpx.Request):
        status, body = routes.get((request.method, request.url.path), (404, {'error': 'not found'}))
        if isinstance(body, (dict, list)):
            return httpx.Response(status, content=json.dumps(body),
                                  headers={'content-type': 'application/json'})
        return httpx.Response(status, text=body or '')

    return httpx.MockTransport(handler)


@pytest.fixture
def json_transport():
    """Factory for JSON-answering mock transports"""
    return _json_transport
