"""
Health check endpoint
"""
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify

bp = Blueprint('health', __name__, url_prefix='/api')


@bp.route('/health', methods=['GET'])
def health_check():
    """Report that the API is up and whether a flow is currently running"""
    services = current_app.extensions['apiflow']
    return jsonify({
        'status': 'healthy',
        'message': 'API is online',
        'flow_running': services.runner.is_running,
        'timestamp': datetime.now(timezone.utc).isoformat()
    }), 200
