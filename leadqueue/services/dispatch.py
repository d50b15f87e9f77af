"""
Dispatch — the contract the telephony layer talks to.

An agent asks for work, gets a WorkItem, claims it, and later completes it
with a call outcome. Candidates are re-derived from the live tables on every
request; the claim itself is the only thing that has to be atomic. Losing a
claim just means trying the next candidate.

Lane order for "any": due callbacks first, then ordinary leads by score.
A person is never handed out twice at once: a leased callback hides the
person's lead and a leased lead hides the person's callbacks.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, exists

from leadqueue.config import CLAIM_NEXT_MAX_ATTEMPTS
from leadqueue.database import session_scope, utcnow
from leadqueue.models.callback import Callback
from leadqueue.models.enums import CallbackStatus, CallOutcome, Category, WorkItemKind
from leadqueue.models.inbound_call import InboundCallQueueEntry
from leadqueue.models.lead_record import LeadRecord
from leadqueue.services import callbacks, inbound_queue
from leadqueue.services.leases import LEAD_LEASE, claim_row, conditional_update, lease_free, lease_expired
from leadqueue.services.scoring import record_call

logger = logging.getLogger('services.dispatch')

LANES = ('any', 'callback', 'inbound') + tuple(c.value for c in Category)


@dataclass
class WorkItem:
    kind: WorkItemKind
    id: int
    person_id: Optional[int]
    category: Optional[Category] = None
    score: Optional[int] = None
    reason: str = ''
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self):
        return {
            'kind': self.kind.value,
            'id': self.id,
            'person_id': self.person_id,
            'category': self.category.value if self.category else None,
            'score': self.score,
            'reason': self.reason,
            **self.extra,
        }

    @classmethod
    def from_callback(cls, cb: Callback):
        return cls(
            kind=WorkItemKind.CALLBACK, id=cb.id, person_id=cb.person_id, category=cb.category,
            reason=cb.reason or 'Scheduled callback',
            extra={'scheduled_for': cb.scheduled_for.isoformat(), 'preferred_agent_id': cb.preferred_agent_id},
        )

    @classmethod
    def from_lead(cls, lead: LeadRecord):
        return cls(
            kind=WorkItemKind.LEAD, id=lead.id, person_id=lead.person_id, category=lead.category,
            score=lead.score, reason=lead.reason or '',
        )

    @classmethod
    def from_inbound(cls, entry: InboundCallQueueEntry):
        return cls(
            kind=WorkItemKind.INBOUND, id=entry.id, person_id=entry.person_id,
            reason='Inbound call', extra={'call_sid': entry.call_sid, 'priority': entry.priority},
        )


def _callback_held(now):
    """Some callback for this lead's person is under a live lease."""
    return exists().where(
        Callback.person_id == LeadRecord.person_id,
        Callback.status == CallbackStatus.ASSIGNED,
        Callback.lease_expires_at >= now,
    )


def _lead_claimable(now):
    return [
        LeadRecord.active.is_(True),
        LeadRecord.category.isnot(None),
        lease_free(LeadRecord.claimed_by_agent_id, LeadRecord.lease_expires_at, now),
        ~_callback_held(now),
    ]


def _check_lane(lane):
    if lane not in LANES:
        raise ValueError(f"Unknown lane '{lane}' (expected one of {', '.join(LANES)})")


def _lead_candidates(session, agent_id, lane, now, limit) -> List[LeadRecord]:
    q = session.query(LeadRecord).filter(*_lead_claimable(now))
    if lane not in ('any', 'callback', 'inbound'):
        q = q.filter(LeadRecord.category == Category(lane))
    if agent_id is not None:
        q = q.filter(or_(LeadRecord.last_failed_agent_id.is_(None), LeadRecord.last_failed_agent_id != agent_id))
    return q.order_by(LeadRecord.score, LeadRecord.created_at, LeadRecord.person_id).limit(limit).all()


def candidates(agent_id: Optional[str] = None, lane: str = 'any', now=None,
               limit: int = CLAIM_NEXT_MAX_ATTEMPTS, session=None) -> List[WorkItem]:
    """Best-first list of items this agent could claim right now."""
    _check_lane(lane)
    now = now or utcnow()
    with session_scope(session) as s:
        if lane == 'inbound':
            entry = inbound_queue.next_waiting_call(agent_id, now=now, session=s)
            return [WorkItem.from_inbound(entry)] if entry else []

        items = []
        if lane in ('any', 'callback'):
            items.extend(WorkItem.from_callback(cb) for cb in callbacks.due_callbacks(agent_id, now=now, limit=limit, session=s))
        if lane != 'callback' and len(items) < limit:
            items.extend(WorkItem.from_lead(lead) for lead in _lead_candidates(s, agent_id, lane, now, limit - len(items)))
        return items


def get_next_claimable(agent_id: Optional[str] = None, lane: str = 'any', now=None) -> Optional[WorkItem]:
    """Peek at the next item without claiming it."""
    found = candidates(agent_id, lane, now=now, limit=1)
    return found[0] if found else None


def claim_lead(lead_id: int, agent_id: str, now=None, session=None) -> bool:
    now = now or utcnow()
    with session_scope(session) as s:
        return claim_row(s, LeadRecord, lead_id, _lead_claimable(now), {
            'claimed_by_agent_id': agent_id,
            'lease_expires_at': LEAD_LEASE.expires_at(now),
            'claimed_category': LeadRecord.category,
        })


def claim(kind: WorkItemKind, item_id: int, agent_id: str, now=None, session=None) -> bool:
    """Atomically claim one item. False means someone else has it."""
    kind = WorkItemKind(kind)
    if kind == WorkItemKind.CALLBACK:
        return callbacks.claim_callback(item_id, agent_id, now=now, session=session)
    if kind == WorkItemKind.INBOUND:
        return inbound_queue.claim_call(item_id, agent_id, now=now, session=session)
    return claim_lead(item_id, agent_id, now=now, session=session)


def _clear_cooldowns(session, agent_id):
    conditional_update(session, LeadRecord, [LeadRecord.last_failed_agent_id == agent_id],
                       {'last_failed_agent_id': None})
    conditional_update(session, Callback,
                       [Callback.last_failed_agent_id == agent_id, Callback.status != CallbackStatus.COMPLETED],
                       {'last_failed_agent_id': None})


def claim_next(agent_id: str, lane: str = 'any', now=None) -> Optional[WorkItem]:
    """
    Claim the best available item for this agent.

    Walks the candidate list and falls through to the next one whenever a
    claim is lost, up to CLAIM_NEXT_MAX_ATTEMPTS. A successful pick ends the
    agent's one-pick cool-down on people they just failed to reach.
    """
    now = now or utcnow()
    attempts = 0
    for item in candidates(agent_id, lane, now=now, limit=CLAIM_NEXT_MAX_ATTEMPTS):
        attempts += 1
        with session_scope() as s:
            if claim(item.kind, item.id, agent_id, now=now, session=s):
                _clear_cooldowns(s, agent_id)
                logger.info("Agent %s claimed %s %s (person %s) after %d attempt(s)",
                            agent_id, item.kind.value, item.id, item.person_id, attempts,
                            extra={'agent_id': agent_id, 'person_id': item.person_id})
                return item
        logger.debug("Agent %s lost %s %s, trying next", agent_id, item.kind.value, item.id)

    if attempts:
        logger.info("Agent %s found nothing claimable in lane %s after %d contended attempt(s)",
                    agent_id, lane, attempts)
    return None


def complete(kind: WorkItemKind, item_id: int, outcome: CallOutcome, agent_id: str,
             reschedule_at=None, talk_time_seconds: int = 0, category: Optional[Category] = None,
             now=None) -> dict:
    """
    Record the result of working an item.

    Every completion writes contact history and updates the lead's counters
    and score. Callbacks additionally run their retry rules. A lead whose
    outcome asks for a follow-up gets a callback preferring the same agent.
    """
    kind = WorkItemKind(kind)
    outcome = CallOutcome(outcome)
    now = now or utcnow()

    with session_scope() as s:
        if kind == WorkItemKind.CALLBACK:
            cb = s.get(Callback, item_id)
            if cb is None:
                raise ValueError(f"Callback {item_id} not found")
            call = record_call(cb.person_id, agent_id, outcome, category=category or cb.category,
                               talk_time_seconds=talk_time_seconds, started_at=now, session=s)
            result = callbacks.complete_callback(item_id, outcome, agent_id=agent_id,
                                                 reschedule_at=reschedule_at, now=now, session=s)

        elif kind == WorkItemKind.INBOUND:
            entry = s.get(InboundCallQueueEntry, item_id)
            if entry is None:
                raise ValueError(f"Inbound call {item_id} not found")
            call = None
            if entry.person_id is not None:
                call = record_call(entry.person_id, agent_id, outcome, category=category,
                                   talk_time_seconds=talk_time_seconds, started_at=now, session=s)
            result = {'completed': inbound_queue.mark_completed(item_id, now=now, session=s)}

        else:
            lead = s.get(LeadRecord, item_id)
            if lead is None:
                raise ValueError(f"Lead {item_id} not found")
            # The penalty is judged against the queue the agent claimed from, not wherever the lead is now
            call = record_call(lead.person_id, agent_id, outcome,
                               category=category or lead.claimed_category or lead.category,
                               talk_time_seconds=talk_time_seconds, started_at=now, session=s)
            result = {}
            if outcome in (CallOutcome.RESCHEDULE, CallOutcome.CALLBACK_REQUESTED) and reschedule_at is not None:
                cb = callbacks.schedule_callback(lead.person_id, reschedule_at, category=lead.category,
                                                 preferred_agent_id=agent_id,
                                                 reason=f"Requested on call ({outcome.value})", session=s)
                result['callback_id'] = cb.id

    return {'kind': kind.value, 'id': item_id, 'outcome': outcome.value, 'call': call, **result}


def sweep_expired_leases(now=None) -> dict:
    """Eager release of every lapsed lease. Claims also override lapsed leases lazily."""
    now = now or utcnow()
    with session_scope() as s:
        released_callbacks = callbacks.release_expired_callbacks(now=now, session=s)
        released_leads = conditional_update(
            s, LeadRecord,
            [LeadRecord.claimed_by_agent_id.isnot(None), lease_expired(LeadRecord.lease_expires_at, now)],
            {'claimed_by_agent_id': None, 'lease_expires_at': None},
        )
        released_inbound = inbound_queue.release_expired_assignments(now=now, session=s)

    result = {'callbacks': released_callbacks, 'leads': released_leads, 'inbound': released_inbound}
    if any(result.values()):
        logger.info("Lease sweep released %s", result)
    return result
