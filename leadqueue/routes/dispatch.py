"""
Dispatch routes — the claim engine's HTTP surface for the telephony layer.

Lost claims are not errors: /next answers 204 when nothing could be claimed,
/claim answers 409 when someone else holds the item.
"""
import logging
from datetime import datetime, timezone

from flask import Blueprint, request, jsonify

from leadqueue.errors import InboundQueueFullError
from leadqueue.models.enums import AgentStatus, CallOutcome, Category, WorkItemKind
from leadqueue.services import agents, callbacks, dispatch, inbound_queue

logger = logging.getLogger('routes.dispatch')

bp = Blueprint('dispatch', __name__)


def _parse_time(value):
    """ISO-8601 string to naive UTC; None passes through."""
    if not value:
        return None
    dt = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _require(data, *fields):
    missing = [f for f in fields if data.get(f) in (None, '')]
    if missing:
        raise ValueError(f"Missing field(s): {', '.join(missing)}")


@bp.route('/api/dispatch/next', methods=['POST'])
def next_item():
    """Claim the best item for an agent."""
    data = request.json or {}
    try:
        _require(data, 'agent_id')
        item = dispatch.claim_next(data['agent_id'], lane=data.get('lane', 'any'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error("claim_next failed: %s", e, exc_info=True)
        return jsonify({'error': str(e)}), 500
    if item is None:
        return '', 204
    return jsonify(item.to_dict())


@bp.route('/api/dispatch/claim', methods=['POST'])
def claim_item():
    data = request.json or {}
    try:
        _require(data, 'agent_id', 'kind', 'id')
        won = dispatch.claim(WorkItemKind(data['kind']), int(data['id']), data['agent_id'])
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error("claim failed: %s", e, exc_info=True)
        return jsonify({'error': str(e)}), 500
    if not won:
        return jsonify({'claimed': False}), 409
    return jsonify({'claimed': True})


@bp.route('/api/dispatch/complete', methods=['POST'])
def complete_item():
    data = request.json or {}
    try:
        _require(data, 'agent_id', 'kind', 'id', 'outcome')
        result = dispatch.complete(
            WorkItemKind(data['kind']),
            int(data['id']),
            CallOutcome(data['outcome']),
            data['agent_id'],
            reschedule_at=_parse_time(data.get('reschedule_at')),
            talk_time_seconds=int(data.get('talk_time_seconds') or 0),
            category=Category(data['category']) if data.get('category') else None,
        )
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error("complete failed: %s", e, exc_info=True)
        return jsonify({'error': str(e)}), 500
    return jsonify(result)


@bp.route('/api/dispatch/sweep', methods=['POST'])
def sweep():
    try:
        return jsonify(dispatch.sweep_expired_leases())
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@bp.route('/api/callbacks', methods=['POST'])
def create_callback():
    data = request.json or {}
    try:
        _require(data, 'person_id', 'scheduled_for')
        cb = callbacks.schedule_callback(
            int(data['person_id']),
            _parse_time(data['scheduled_for']),
            category=Category(data['category']) if data.get('category') else None,
            preferred_agent_id=data.get('preferred_agent_id'),
            reason=data.get('reason', ''),
        )
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error("schedule_callback failed: %s", e, exc_info=True)
        return jsonify({'error': str(e)}), 500
    return jsonify(cb.to_dict()), 201


@bp.route('/api/inbound', methods=['POST'])
def enqueue_inbound():
    data = request.json or {}
    try:
        _require(data, 'call_sid')
        entry = inbound_queue.enqueue_call(
            data['call_sid'],
            phone_number=data.get('phone_number', ''),
            person_id=int(data['person_id']) if data.get('person_id') is not None else None,
        )
    except InboundQueueFullError as e:
        return jsonify({'error': str(e)}), 503
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error("enqueue_call failed: %s", e, exc_info=True)
        return jsonify({'error': str(e)}), 500
    return jsonify(entry.to_dict()), 201


@bp.route('/api/agents/heartbeat', methods=['POST'])
def agent_heartbeat():
    data = request.json or {}
    try:
        _require(data, 'agent_id')
        return jsonify(agents.heartbeat(data['agent_id'], AgentStatus(data.get('status', 'available'))))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        return jsonify({'error': str(e)}), 500
