"""
Dashboard routes — health check, the stats API and manual breaker reset.
"""
import logging
from flask import Blueprint, jsonify

from leadqueue.services.circuit_breaker import get_all_breakers
from leadqueue.services.queue_projection import queue_stats

logger = logging.getLogger('routes.dashboard')

bp = Blueprint('dashboard', __name__)


@bp.route('/health')
def health_check():
    """Health check endpoint."""
    return jsonify({"status": "healthy"}), 200


@bp.route('/api/stats')
def get_stats():
    """Queue stats plus dependency health, computed on demand."""
    try:
        stats = queue_stats()
        stats['dependencies'] = {name: cb.get_health() for name, cb in get_all_breakers().items()}
        return jsonify(stats)
    except Exception as e:
        logger.error("Stats failed: %s", e, exc_info=True)
        return jsonify({'error': str(e)}), 500


@bp.route('/api/breakers/<name>/reset', methods=['POST'])
def reset_breaker(name):
    """Close a tripped breaker by hand once the dependency is back."""
    breaker = get_all_breakers().get(name)
    if breaker is None:
        return jsonify({'error': f"Unknown breaker '{name}'"}), 404
    breaker.reset()
    return jsonify(breaker.get_health())
