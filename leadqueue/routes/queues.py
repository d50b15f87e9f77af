"""
Queue routes — read-only queue projection and conversion history.
"""
from flask import Blueprint, request, jsonify

from leadqueue.models.enums import Category, ConversionType
from leadqueue.services.conversions import list_conversions
from leadqueue.services.queue_projection import list_queue, queue_stats

bp = Blueprint('queues', __name__)


@bp.route('/api/queues/stats')
def get_queue_stats():
    try:
        return jsonify(queue_stats())
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@bp.route('/api/queues/<category>')
def get_queue(category):
    """One page of a category queue, best candidate first."""
    if category not in {c.value for c in Category}:
        return jsonify({'error': f'Unknown category: {category}'}), 404
    try:
        page = request.args.get('page', 1, type=int)
        per_page = request.args.get('per_page', 50, type=int)
        return jsonify(list_queue(Category(category), page=page, per_page=per_page))
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@bp.route('/api/conversions')
def get_conversions():
    conversion_type = request.args.get('type')
    if conversion_type and conversion_type not in {t.value for t in ConversionType}:
        return jsonify({'error': f'Unknown conversion type: {conversion_type}'}), 400
    try:
        return jsonify(list_conversions(
            page=request.args.get('page', 1, type=int),
            per_page=request.args.get('per_page', 50, type=int),
            person_id=request.args.get('person_id', type=int),
            conversion_type=ConversionType(conversion_type) if conversion_type else None,
        ))
    except Exception as e:
        return jsonify({'error': str(e)}), 500
