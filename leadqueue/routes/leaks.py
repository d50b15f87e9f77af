"""
Leak routes — conversion leak scans, the periodic monitor and the review list.
"""
from flask import Blueprint, current_app, request, jsonify

from leadqueue.config import LEAK_SCAN_MINUTES
from leadqueue.services.leak_detector import scan_for_leaks, get_health_metrics, list_manual_review

bp = Blueprint('leaks', __name__)


def _monitor():
    return current_app.extensions['leak_monitor']


@bp.route('/api/leaks/scan', methods=['POST'])
def run_scan():
    """Run one scan synchronously."""
    try:
        data = request.json or {}
        minutes_back = int(data.get('minutes_back', LEAK_SCAN_MINUTES))
        return jsonify(scan_for_leaks(minutes_back=minutes_back))
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@bp.route('/api/leaks/monitor/start', methods=['POST'])
def start_monitor():
    try:
        return jsonify(_monitor().start())
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@bp.route('/api/leaks/monitor/stop', methods=['POST'])
def stop_monitor():
    try:
        return jsonify(_monitor().stop())
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@bp.route('/api/leaks/monitor')
def monitor_status():
    try:
        return jsonify(_monitor().status())
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@bp.route('/api/leaks/health')
def leak_health():
    try:
        hours_back = request.args.get('hours_back', 24, type=int)
        return jsonify(get_health_metrics(hours_back=hours_back))
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@bp.route('/api/leaks/review')
def manual_review():
    try:
        return jsonify(list_manual_review(limit=request.args.get('limit', 100, type=int)))
    except Exception as e:
        return jsonify({'error': str(e)}), 500
