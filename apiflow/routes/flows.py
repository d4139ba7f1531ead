"""
Flows API - Run and stop flows, inspect statuses, variables and history

Endpoints:
- POST   /api/v1/flows/run        - Run a flow (body: flow JSON or {flow, variables})
- POST   /api/v1/flows/stop       - Request a cooperative stop
- GET    /api/v1/flows/statuses   - Step statuses of the current or last run
- GET    /api/v1/flows/variables  - Variable snapshot
- POST   /api/v1/flows/variables  - Set variables (body: {name: value})
- GET    /api/v1/flows/endpoints  - List catalog endpoints
- POST   /api/v1/flows/endpoints  - Register a catalog endpoint
- GET    /api/v1/flows/history    - Request history, newest first
- DELETE /api/v1/flows/history    - Clear request history
"""

import asyncio
import logging

from flask import Blueprint, current_app, jsonify, request

from apiflow.flow_engine import EventRecorder, Flow
from apiflow.flow_engine.errors import EngineError, FlowAlreadyRunningError
from apiflow.services.endpoint_catalog import Endpoint

logger = logging.getLogger(__name__)

flows_bp = Blueprint('flows', __name__, url_prefix='/api/v1/flows')


def _services():
    return current_app.extensions['apiflow']


@flows_bp.route('/run', methods=['POST'])
def run_flow():
    """
    Run a flow to completion and return its result.

    Body:
        Either the flow definition itself, or
        {"flow": {...}, "variables": {"name": "value"}}

    Returns:
        200 with result, statuses and emitted events (also for failed runs)
        400 if the flow definition is invalid
        409 if another flow is running
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'error': 'Request body must be a JSON object'}), 400

    flow_data = data.get('flow', data)
    variables = data.get('variables') if 'flow' in data else None
    if variables is not None and not isinstance(variables, dict):
        return jsonify({'error': 'variables must be an object'}), 400

    try:
        flow = Flow.from_dict(flow_data)
    except EngineError as e:
        logger.warning(f"Invalid flow definition: {e}")
        return jsonify({'error': str(e), 'details': e.to_dict()}), 400

    services = _services()
    # Checked before touching variables; the runner still guards the race
    if services.runner.is_running:
        active = services.runner.active_flow
        error = FlowAlreadyRunningError(flow.id, active.id if active else None)
        return jsonify({'error': str(error)}), 409

    if variables:
        services.variable_store.update(variables)

    recorder = EventRecorder()
    unsubscribe = services.runner.subscribe(recorder)
    try:
        result = asyncio.run(services.runner.run(flow))
    except FlowAlreadyRunningError as e:
        return jsonify({'error': str(e)}), 409
    finally:
        unsubscribe()

    return jsonify({
        'result': result.to_dict(),
        'events': [event.to_dict() for event in recorder.events],
    }), 200


@flows_bp.route('/stop', methods=['POST'])
def stop_flow():
    """Request a stop; the step in flight finishes first."""
    stopped = _services().runner.stop()
    return jsonify({'stopped': stopped}), 200


@flows_bp.route('/statuses', methods=['GET'])
def get_statuses():
    runner = _services().runner
    active = runner.active_flow
    return jsonify({
        'running': runner.is_running,
        'flow_id': active.id if active else None,
        'statuses': {step_id: status.value for step_id, status in runner.get_statuses().items()},
    }), 200


@flows_bp.route('/variables', methods=['GET'])
def get_variables():
    return jsonify({'variables': _services().variable_store.snapshot()}), 200


@flows_bp.route('/variables', methods=['POST'])
def set_variables():
    """Set (or overwrite) variables from a JSON object."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'error': 'Request body must be a JSON object'}), 400

    store = _services().variable_store
    try:
        store.update(data)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify({'variables': store.snapshot()}), 200


@flows_bp.route('/endpoints', methods=['GET'])
def list_endpoints():
    return jsonify({'endpoints': [e.to_dict() for e in _services().endpoint_catalog.list()]}), 200


@flows_bp.route('/endpoints', methods=['POST'])
def add_endpoint():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'error': 'Request body must be a JSON object'}), 400

    try:
        endpoint = Endpoint.from_dict(data)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    _services().endpoint_catalog.add(endpoint)
    return jsonify(endpoint.to_dict()), 201


@flows_bp.route('/history', methods=['GET'])
def get_history():
    limit = request.args.get('limit', type=int)
    entries = _services().history.entries()
    if limit is not None:
        entries = entries[:max(0, limit)]
    return jsonify({'history': [e.to_dict() for e in entries], 'count': len(entries)}), 200


@flows_bp.route('/history', methods=['DELETE'])
def clear_history():
    _services().history.clear()
    return jsonify({'message': 'History cleared'}), 200
