"""
Callback lane — scheduled, agent-preferential contact requests.

Claiming is a compare-and-swap on the callbacks row with a 5 minute lease,
taken together with the lease on the person's lead row when one exists.
A callback that keeps failing is not dropped: once retries are exhausted the
person is handed back to the ordinary category queue.
"""
import logging
from datetime import timedelta
from typing import List, Optional

from sqlalchemy import or_, and_, case, exists

from leadqueue.config import CALLBACK_RETRY_DELAY_MINUTES, CALLBACK_MAX_RETRIES
from leadqueue.database import session_scope, utcnow
from leadqueue.models.callback import Callback
from leadqueue.models.enums import CallbackStatus, CallOutcome, Category, FAILED_OUTCOMES
from leadqueue.models.lead_record import LeadRecord
from leadqueue.services.leases import CALLBACK_LEASE, claim_row, conditional_update, lease_free, lease_expired

logger = logging.getLogger('services.callbacks')


def _retry_delay():
    return timedelta(minutes=CALLBACK_RETRY_DELAY_MINUTES)


def claimable(now):
    """Pending and unheld, or assigned with a lapsed lease (lazy override)."""
    return or_(
        and_(
            Callback.status == CallbackStatus.PENDING,
            lease_free(Callback.assigned_to_agent_id, Callback.lease_expires_at, now),
        ),
        and_(
            Callback.status == CallbackStatus.ASSIGNED,
            lease_expired(Callback.lease_expires_at, now),
        ),
    )


def _lead_held_elsewhere(now):
    """The same person is currently leased out of the ordinary queue."""
    return exists().where(
        LeadRecord.person_id == Callback.person_id,
        LeadRecord.claimed_by_agent_id.isnot(None),
        LeadRecord.lease_expires_at >= now,
    )


def schedule_callback(person_id: int, scheduled_for, category: Optional[Category] = None,
                      preferred_agent_id: Optional[str] = None, max_retries: int = CALLBACK_MAX_RETRIES,
                      reason: str = '', session=None) -> Callback:
    """Create a pending callback. Category defaults to the lead's current queue."""
    with session_scope(session) as s:
        if category is None:
            lead = s.query(LeadRecord).filter_by(person_id=person_id).first()
            category = lead.category if lead is not None else None
        callback = Callback(
            person_id=person_id,
            category=category,
            scheduled_for=scheduled_for,
            preferred_agent_id=preferred_agent_id,
            status=CallbackStatus.PENDING,
            max_retries=max_retries,
            reason=reason,
        )
        s.add(callback)
        s.flush()
    logger.info("Callback %s scheduled for person %s at %s (preferred agent=%s)",
                callback.id, person_id, scheduled_for.isoformat(), preferred_agent_id or '-')
    return callback


def due_callbacks(agent_id: Optional[str] = None, now=None, limit: int = 10, session=None) -> List[Callback]:
    """
    Callbacks this agent may claim right now, best first.

    A callback preferring this agent outranks plain FIFO by scheduled_for.
    The agent who last failed a callback is skipped for it.
    """
    now = now or utcnow()
    with session_scope(session) as s:
        q = s.query(Callback).filter(
            Callback.scheduled_for <= now,
            claimable(now),
            ~_lead_held_elsewhere(now),
        )
        if agent_id is not None:
            q = q.filter(or_(Callback.last_failed_agent_id.is_(None), Callback.last_failed_agent_id != agent_id))
            preferred = case((Callback.preferred_agent_id == agent_id, 0), else_=1)
            q = q.order_by(preferred, Callback.scheduled_for, Callback.id)
        else:
            q = q.order_by(Callback.scheduled_for, Callback.id)
        return q.limit(limit).all()


def find_next_due(agent_id: Optional[str] = None, now=None, session=None) -> Optional[Callback]:
    found = due_callbacks(agent_id, now=now, limit=1, session=session)
    return found[0] if found else None


def _hold_person_lead(session, person_id: int, agent_id: str, expires_at, now) -> Optional[bool]:
    """
    Lease the person's lead row alongside the callback.

    Both lanes then compare-and-swap the same lead_records row, so a lead
    claim and a callback claim for one person cannot both win. Returns None
    when the person has no lead row, otherwise whether the lease was taken.
    """
    taken = conditional_update(
        session, LeadRecord,
        [LeadRecord.person_id == person_id,
         lease_free(LeadRecord.claimed_by_agent_id, LeadRecord.lease_expires_at, now)],
        {'claimed_by_agent_id': agent_id, 'lease_expires_at': expires_at},
    )
    if taken:
        return True
    if session.query(LeadRecord.id).filter(LeadRecord.person_id == person_id).first() is None:
        return None
    return False


def _release_person_lead(session, person_id: int, agent_id: Optional[str]) -> int:
    if agent_id is None:
        return 0
    return conditional_update(
        session, LeadRecord,
        [LeadRecord.person_id == person_id, LeadRecord.claimed_by_agent_id == agent_id],
        {'claimed_by_agent_id': None, 'lease_expires_at': None},
    )


def claim_callback(callback_id: int, agent_id: str, now=None, session=None) -> bool:
    """Atomically take the callback. False = another agent won the race."""
    now = now or utcnow()
    expires_at = CALLBACK_LEASE.expires_at(now)
    with session_scope(session) as s:
        person_id = s.query(Callback.person_id).filter(Callback.id == callback_id).scalar()
        if person_id is None:
            return False
        lead_held = _hold_person_lead(s, person_id, agent_id, expires_at, now)
        if lead_held is False:
            logger.debug("Callback %s claim by %s lost: person %s is leased from the queue",
                         callback_id, agent_id, person_id)
            return False
        won = claim_row(s, Callback, callback_id, [claimable(now)], {
            'status': CallbackStatus.ASSIGNED,
            'assigned_to_agent_id': agent_id,
            'assigned_at': now,
            'lease_expires_at': expires_at,
        })
        if not won and lead_held:
            conditional_update(
                s, LeadRecord,
                [LeadRecord.person_id == person_id, LeadRecord.claimed_by_agent_id == agent_id,
                 LeadRecord.lease_expires_at == expires_at],
                {'claimed_by_agent_id': None, 'lease_expires_at': None},
            )
    if won:
        logger.info("Callback %s claimed by %s", callback_id, agent_id)
    else:
        logger.debug("Callback %s claim by %s lost (contended)", callback_id, agent_id)
    return won


def _release_values():
    return {'assigned_to_agent_id': None, 'assigned_at': None, 'lease_expires_at': None}


def return_to_ordinary_queue(session, callback: Callback) -> bool:
    """
    Hand a spent callback's person back to the normal category queue.

    An active lead keeps its score (normal priority). A person with no lead
    record gets one at score 0. Inactive (converted) leads are left alone.
    """
    lead = session.query(LeadRecord).filter_by(person_id=callback.person_id).first()
    if lead is None:
        if callback.category is None:
            logger.warning("Callback %s exhausted with no category; person %s not re-queued",
                           callback.id, callback.person_id)
            return False
        session.add(LeadRecord(
            person_id=callback.person_id,
            category=callback.category,
            score=0,
            active=True,
            reason='Returned from callback lane',
        ))
        return True
    if not lead.active:
        return False
    lead.claimed_by_agent_id = None
    lead.lease_expires_at = None
    return True


def complete_callback(callback_id: int, outcome: CallOutcome, agent_id: Optional[str] = None,
                      reschedule_at=None, now=None, session=None) -> dict:
    """
    Apply a call outcome to a callback.

    - answered / any conversation outcome → completed, lease cleared
    - reschedule (or callback_requested with a time) → pending at that time
    - no_answer / busy / failed → retry_count += 1; within max_retries the
      callback comes back in 15 minutes, otherwise it is completed as
      retries_exhausted and the person returns to the ordinary queue
    """
    outcome = CallOutcome(outcome)
    now = now or utcnow()

    with session_scope(session) as s:
        callback = s.get(Callback, callback_id)
        if callback is None:
            raise ValueError(f"Callback {callback_id} not found")
        if callback.status == CallbackStatus.COMPLETED:
            raise ValueError(f"Callback {callback_id} is already completed")

        _release_person_lead(s, callback.person_id, callback.assigned_to_agent_id)
        returned = False
        if outcome == CallOutcome.RESCHEDULE or (outcome == CallOutcome.CALLBACK_REQUESTED and reschedule_at):
            if reschedule_at is None or reschedule_at <= now:
                raise ValueError("reschedule requires a future reschedule_at")
            callback.status = CallbackStatus.PENDING
            callback.scheduled_for = reschedule_at
            _apply(callback, _release_values())
            state = 'rescheduled'
        elif outcome in FAILED_OUTCOMES:
            callback.retry_count = (callback.retry_count or 0) + 1
            _apply(callback, _release_values())
            callback.last_failed_agent_id = agent_id
            if callback.retry_count <= callback.max_retries:
                callback.status = CallbackStatus.PENDING
                callback.scheduled_for = now + _retry_delay()
                state = 'retry_scheduled'
            else:
                callback.status = CallbackStatus.COMPLETED
                callback.completion_reason = 'retries_exhausted'
                callback.completed_at = now
                returned = return_to_ordinary_queue(s, callback)
                state = 'retries_exhausted'
        else:
            callback.status = CallbackStatus.COMPLETED
            callback.completion_reason = outcome.value
            callback.completed_at = now
            _apply(callback, _release_values())
            state = 'completed'

        result = {
            'callback_id': callback.id,
            'person_id': callback.person_id,
            'state': state,
            'status': callback.status.value,
            'retry_count': callback.retry_count,
            'scheduled_for': callback.scheduled_for.isoformat() if callback.scheduled_for else None,
            'returned_to_queue': returned,
        }

    logger.info("Callback %s outcome=%s -> %s (retry %d)", callback_id, outcome.value, state, result['retry_count'])
    return result


def _apply(callback, values):
    for key, value in values.items():
        setattr(callback, key, value)


def skip_callback(callback_id: int, now=None, session=None) -> bool:
    """Agent passes on a callback; it comes back in 15 minutes."""
    now = now or utcnow()
    with session_scope(session) as s:
        held = (
            s.query(Callback.person_id, Callback.assigned_to_agent_id)
            .filter(Callback.id == callback_id)
            .first()
        )
        updated = conditional_update(
            s, Callback,
            [Callback.id == callback_id, Callback.status != CallbackStatus.COMPLETED],
            {'status': CallbackStatus.PENDING, 'scheduled_for': now + _retry_delay(), **_release_values()},
        )
        if updated and held is not None:
            _release_person_lead(s, held.person_id, held.assigned_to_agent_id)
    return updated == 1


def release_expired_callbacks(now=None, session=None) -> int:
    """Sweep: assigned callbacks whose lease lapsed go back to pending."""
    now = now or utcnow()
    with session_scope(session) as s:
        released = conditional_update(
            s, Callback,
            [Callback.status == CallbackStatus.ASSIGNED, lease_expired(Callback.lease_expires_at, now)],
            {'status': CallbackStatus.PENDING, **_release_values()},
        )
    if released:
        logger.info("Released %d expired callback lease(s)", released)
    return released


def callback_stats(now=None, session=None) -> dict:
    now = now or utcnow()
    with session_scope(session) as s:
        pending = s.query(Callback).filter(Callback.status == CallbackStatus.PENDING).count()
        due = s.query(Callback).filter(Callback.status == CallbackStatus.PENDING, Callback.scheduled_for <= now).count()
        assigned = s.query(Callback).filter(Callback.status == CallbackStatus.ASSIGNED).count()
    return {'pending': pending, 'due': due, 'assigned': assigned}
