from apiflow.services.endpoint_catalog import Endpoint, EndpointCatalog
from apiflow.services.history import HistoryEntry, RequestHistory
from apiflow.services.http_client import HttpClient, HttpRequest, HttpResponse, HttpStatusError, NetworkError
from apiflow.services.variable_store import VariableStore

__all__ = [
    'Endpoint',
    'EndpointCatalog',
    'HistoryEntry',
    'RequestHistory',
    'HttpClient',
    'HttpRequest',
    'HttpResponse',
    'HttpStatusError',
    'NetworkError',
    'VariableStore',
]
