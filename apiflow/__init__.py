import logging
import os
from dataclasses import dataclass

from flask import Flask
from flask_cors import CORS

from apiflow.config import Config
from apiflow.flow_engine import FlowRunner
from apiflow.services import EndpointCatalog, HttpClient, RequestHistory, VariableStore


@dataclass
class FlowServices:
    """Collaborators shared by the views of one app instance"""
    runner: FlowRunner
    variable_store: VariableStore
    endpoint_catalog: EndpointCatalog
    history: RequestHistory
    http_client: HttpClient


def configure_logging(level_name):
    level = getattr(logging, str(level_name).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    )
    logging.getLogger('apiflow').setLevel(level)


def build_services(config, http_client=None):
    """Create the default in-memory collaborators and the runner."""
    variable_store = VariableStore()
    endpoint_catalog = EndpointCatalog()
    history = RequestHistory(max_entries=config['HISTORY_MAX_ENTRIES'])
    http_client = http_client or HttpClient(
        base_url=config['API_BASE_URL'] or None,
        timeout=config['HTTP_TIMEOUT_SECONDS'],
        fail_on_error_status=config['HTTP_FAIL_ON_ERROR_STATUS'],
    )
    runner = FlowRunner(
        variable_store=variable_store,
        http_client=http_client,
        endpoint_catalog=endpoint_catalog,
        history=history,
        default_delay_ms=config['DEFAULT_DELAY_MS'],
    )
    return FlowServices(
        runner=runner,
        variable_store=variable_store,
        endpoint_catalog=endpoint_catalog,
        history=history,
        http_client=http_client,
    )


def create_app(config_class=Config, http_client=None):
    app = Flask(__name__)
    app.config.from_object(config_class)

    configure_logging(app.config['LOG_LEVEL'])

    # Local frontends plus anything in CORS_ORIGINS
    allowed_origins = [
        'http://localhost:5173',  # Vite dev server
        'http://localhost:3000',
    ]
    env_origins = app.config.get('CORS_ORIGINS') or os.getenv('CORS_ORIGINS', '')
    if env_origins:
        allowed_origins.extend([origin.strip() for origin in env_origins.split(',') if origin.strip()])

    CORS(app,
         resources={r"/api/*": {"origins": allowed_origins}},
         supports_credentials=False,
         allow_headers=["Content-Type", "Authorization"],
         methods=["GET", "POST", "DELETE", "OPTIONS"])

    app.extensions['apiflow'] = build_services(app.config, http_client=http_client)

    from apiflow.routes import flows
    app.register_blueprint(flows.flows_bp)

    from apiflow.routes import health
    app.register_blueprint(health.bp)

    return app
