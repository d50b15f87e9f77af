"""
Inbound call queue — live callers waiting for an agent.

Ordering is priority desc, entered_at asc. Assignment gives the agent a short
grace period to pick up; if it lapses the call goes back to waiting and the
same agent is not offered it again straight away.

Timeouts only apply while someone could actually answer: with zero available
agents a caller waits indefinitely rather than being abandoned.
"""
import logging
from datetime import timedelta
from typing import List, Optional

from sqlalchemy import or_, and_

from leadqueue.config import (
    INBOUND_MAX_QUEUE_SIZE, INBOUND_DEFAULT_WAIT_ESTIMATE,
    INBOUND_MIN_WAIT_ESTIMATE, INBOUND_MAX_WAIT_ESTIMATE,
    INBOUND_KNOWN_CALLER_PRIORITY, INBOUND_UNKNOWN_CALLER_PRIORITY,
    INBOUND_PROCESS_LIMIT, INBOUND_RETENTION_MINUTES, MAX_QUEUE_WAIT_SECONDS,
)
from leadqueue.database import session_scope, utcnow
from leadqueue.errors import InboundQueueFullError
from leadqueue.models.enums import InboundStatus
from leadqueue.models.inbound_call import InboundCallQueueEntry
from leadqueue.services import agents
from leadqueue.services.callbacks import schedule_callback
from leadqueue.services.leases import INBOUND_GRACE, claim_row, conditional_update, lease_expired

logger = logging.getLogger('services.inbound_queue')

Entry = InboundCallQueueEntry

# Terminal states are kept around for reporting until cleanup
_FINISHED = (InboundStatus.COMPLETED, InboundStatus.ABANDONED)


def estimate_wait(position: int, available: int) -> int:
    """Seconds a caller at `position` should expect to wait."""
    if available <= 0:
        return INBOUND_DEFAULT_WAIT_ESTIMATE * 2
    seconds = position * INBOUND_DEFAULT_WAIT_ESTIMATE / available
    return int(max(INBOUND_MIN_WAIT_ESTIMATE, min(INBOUND_MAX_WAIT_ESTIMATE, seconds)))


def _position_of(session, priority: int, entered_at) -> int:
    ahead = (
        session.query(Entry)
        .filter(
            Entry.status == InboundStatus.WAITING,
            or_(
                Entry.priority > priority,
                and_(Entry.priority == priority, Entry.entered_at < entered_at),
            ),
        )
        .count()
    )
    return ahead + 1


def enqueue_call(call_sid: str, phone_number: str = '', person_id: Optional[int] = None,
                 now=None, session=None) -> Entry:
    """
    Put an inbound call in the queue.

    Idempotent on call_sid: telephony webhooks retry, and a repeat returns the
    existing entry. Raises InboundQueueFullError at capacity.
    """
    now = now or utcnow()
    with session_scope(session) as s:
        existing = s.query(Entry).filter_by(call_sid=call_sid).first()
        if existing is not None:
            return existing

        waiting = s.query(Entry).filter(Entry.status == InboundStatus.WAITING).count()
        if waiting >= INBOUND_MAX_QUEUE_SIZE:
            logger.warning("Inbound queue full (%d waiting), rejecting %s", waiting, call_sid)
            raise InboundQueueFullError(f"Inbound queue is full ({waiting} waiting)")

        priority = INBOUND_KNOWN_CALLER_PRIORITY if person_id is not None else INBOUND_UNKNOWN_CALLER_PRIORITY
        position = _position_of(s, priority, now)
        entry = Entry(
            call_sid=call_sid,
            phone_number=phone_number or '',
            person_id=person_id,
            priority=priority,
            queue_position=position,
            status=InboundStatus.WAITING,
            entered_at=now,
            attempts_count=0,
            max_wait_reached=False,
            estimated_wait_seconds=estimate_wait(position, agents.available_agent_count(now=now, session=s)),
        )
        s.add(entry)
        s.flush()

    logger.info("Inbound call %s queued at position %d (priority %d)", call_sid, position, priority)
    return entry


def waiting_calls(limit: Optional[int] = None, session=None) -> List[Entry]:
    with session_scope(session) as s:
        q = (
            s.query(Entry)
            .filter(Entry.status == InboundStatus.WAITING)
            .order_by(Entry.priority.desc(), Entry.entered_at, Entry.id)
        )
        if limit:
            q = q.limit(limit)
        return q.all()


def _open_for_claim(now):
    """Waiting, or assigned with a grace period that already lapsed."""
    return or_(
        Entry.status == InboundStatus.WAITING,
        and_(Entry.status == InboundStatus.ASSIGNED, lease_expired(Entry.lease_expires_at, now)),
    )


def next_waiting_call(agent_id: Optional[str] = None, now=None, session=None) -> Optional[Entry]:
    """Head of the queue, skipping a call this agent just let lapse."""
    now = now or utcnow()
    with session_scope(session) as s:
        q = s.query(Entry).filter(_open_for_claim(now))
        if agent_id is not None:
            q = q.filter(or_(Entry.last_attempted_agent_id.is_(None), Entry.last_attempted_agent_id != agent_id))
        return q.order_by(Entry.priority.desc(), Entry.entered_at, Entry.id).first()


def claim_call(entry_id: int, agent_id: str, now=None, session=None) -> bool:
    """Assign a waiting call to an agent with a short grace period."""
    now = now or utcnow()
    with session_scope(session) as s:
        won = claim_row(s, Entry, entry_id, [_open_for_claim(now)], {
            'status': InboundStatus.ASSIGNED,
            'assigned_to_agent_id': agent_id,
            'assigned_at': now,
            'lease_expires_at': INBOUND_GRACE.expires_at(now),
            'last_attempted_agent_id': agent_id,
            'attempts_count': Entry.attempts_count + 1,
        })
    if won:
        logger.info("Inbound call %s assigned to %s", entry_id, agent_id)
    return won


def mark_connecting(entry_id: int, agent_id: str, session=None) -> bool:
    """Agent picked up inside the grace period."""
    with session_scope(session) as s:
        return conditional_update(
            s, Entry,
            [Entry.id == entry_id, Entry.status == InboundStatus.ASSIGNED, Entry.assigned_to_agent_id == agent_id],
            {'status': InboundStatus.CONNECTING, 'lease_expires_at': None},
        ) == 1


def mark_completed(entry_id: int, now=None, session=None) -> bool:
    now = now or utcnow()
    with session_scope(session) as s:
        return conditional_update(
            s, Entry,
            [Entry.id == entry_id, Entry.status.notin_(_FINISHED)],
            {'status': InboundStatus.COMPLETED, 'completed_at': now, 'lease_expires_at': None},
        ) == 1


def mark_abandoned(entry_id: int, reason: str = 'caller_hangup', offer_callback: bool = False,
                   now=None, session=None) -> dict:
    """
    Close out a call that never reached an agent.

    With offer_callback a known caller gets a callback scheduled for now, so
    the callback lane picks them up next.
    """
    now = now or utcnow()
    callback_id = None
    with session_scope(session) as s:
        updated = conditional_update(
            s, Entry,
            [Entry.id == entry_id, Entry.status.notin_(_FINISHED)],
            {'status': InboundStatus.ABANDONED, 'abandon_reason': reason,
             'completed_at': now, 'lease_expires_at': None},
        )
        if updated and offer_callback:
            entry = s.get(Entry, entry_id)
            if entry is not None and entry.person_id is not None:
                callback = schedule_callback(entry.person_id, now, reason=f"Abandoned inbound call ({reason})",
                                             session=s)
                callback_id = callback.id

    if updated:
        logger.info("Inbound call %s abandoned: %s%s", entry_id, reason,
                    f" (callback {callback_id})" if callback_id else '')
    return {'abandoned': bool(updated), 'callback_id': callback_id}


def overdue_calls(now, unflagged_only: bool = False, limit: int = INBOUND_PROCESS_LIMIT,
                  session=None) -> List[Entry]:
    """Waiting calls past MAX_QUEUE_WAIT, oldest first, whatever their priority."""
    cutoff = now - timedelta(seconds=MAX_QUEUE_WAIT_SECONDS)
    with session_scope(session) as s:
        q = s.query(Entry).filter(Entry.status == InboundStatus.WAITING, Entry.entered_at <= cutoff)
        if unflagged_only:
            q = q.filter(Entry.max_wait_reached.is_(False))
        return q.order_by(Entry.entered_at, Entry.id).limit(limit).all()


def release_expired_assignments(now=None, session=None) -> int:
    """Assignments whose grace period lapsed go back to waiting."""
    now = now or utcnow()
    with session_scope(session) as s:
        released = conditional_update(
            s, Entry,
            [Entry.status == InboundStatus.ASSIGNED, lease_expired(Entry.lease_expires_at, now)],
            {'status': InboundStatus.WAITING, 'assigned_to_agent_id': None,
             'assigned_at': None, 'lease_expires_at': None},
        )
    if released:
        logger.info("Returned %d lapsed inbound assignment(s) to waiting", released)
    return released


def process_inbound_queue(now=None, available_agents: Optional[int] = None, offer_callback: bool = True) -> dict:
    """
    One pass of the inbound processor.

    Releases lapsed assignments, then walks overdue calls oldest first. Calls
    waiting past MAX_QUEUE_WAIT are abandoned only when at least one agent is
    available; otherwise they are flagged max_wait_reached and keep waiting.
    Known callers that time out are offered a callback.
    """
    now = now or utcnow()
    stats = {'released': 0, 'timed_out': 0, 'held': 0, 'checked': 0, 'callbacks_offered': 0}

    with session_scope() as s:
        stats['released'] = release_expired_assignments(now=now, session=s)
        if available_agents is None:
            available_agents = agents.available_agent_count(now=now, session=s)

        for entry in overdue_calls(now, unflagged_only=available_agents <= 0, session=s):
            stats['checked'] += 1
            if available_agents > 0:
                entry.status = InboundStatus.ABANDONED
                entry.abandon_reason = 'max_wait_exceeded'
                entry.completed_at = now
                entry.max_wait_reached = True
                stats['timed_out'] += 1
                if offer_callback and entry.person_id is not None:
                    schedule_callback(entry.person_id, now, reason='Inbound call timed out', session=s)
                    stats['callbacks_offered'] += 1
            elif not entry.max_wait_reached:
                entry.max_wait_reached = True
                stats['held'] += 1

    if stats['timed_out'] or stats['held']:
        logger.info("Inbound processor: %d timed out, %d held (agents available=%d)",
                    stats['timed_out'], stats['held'], available_agents)
    stats['available_agents'] = available_agents
    stats['reordered'] = reorder_positions(now=now)
    return stats


def reorder_positions(now=None, session=None) -> int:
    """Rewrite queue_position and the wait estimate for every waiting call."""
    now = now or utcnow()
    with session_scope(session) as s:
        available = agents.available_agent_count(now=now, session=s)
        entries = waiting_calls(session=s)
        for index, entry in enumerate(entries, start=1):
            entry.queue_position = index
            entry.estimated_wait_seconds = estimate_wait(index, available)
    return len(entries)


def cleanup_old_entries(now=None, session=None) -> int:
    """Delete finished entries older than the retention window."""
    now = now or utcnow()
    cutoff = now - timedelta(minutes=INBOUND_RETENTION_MINUTES)
    with session_scope(session) as s:
        deleted = (
            s.query(Entry)
            .filter(Entry.status.in_(_FINISHED), Entry.completed_at < cutoff)
            .delete(synchronize_session=False)
        )
    if deleted:
        logger.info("Cleaned up %d finished inbound entries", deleted)
    return deleted


def inbound_stats(session=None) -> dict:
    with session_scope(session) as s:
        counts = {status.value: s.query(Entry).filter(Entry.status == status).count() for status in InboundStatus}
        oldest = (
            s.query(Entry.entered_at)
            .filter(Entry.status == InboundStatus.WAITING)
            .order_by(Entry.entered_at)
            .first()
        )
    counts['oldest_waiting_at'] = oldest[0].isoformat() if oldest else None
    return counts
