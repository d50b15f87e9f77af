"""
Score arithmetic and call-outcome bookkeeping.

Scores run 0..200, lower = call sooner. Aging adds +1 per day, category
changes reset to 0, and call outcomes add non-negative penalties. Since every
adjustment is a clamped non-negative addition, aging and outcome penalties
landing on the same day give the same result in either order.
"""
import logging
from typing import Optional

from sqlalchemy import case

from leadqueue.config import SCORE_MIN, SCORE_MAX
from leadqueue.database import session_scope, utcnow
from leadqueue.models.call_contact import CallContact
from leadqueue.models.enums import CallOutcome, Category, FAILED_OUTCOMES, SUCCESSFUL_OUTCOMES
from leadqueue.models.lead_record import LeadRecord
from leadqueue.services.leases import conditional_update

logger = logging.getLogger('services.scoring')


# Penalty per outcome; anything not listed leaves the score alone.
OUTCOME_SCORE_ADJUSTMENTS = {
    CallOutcome.NO_ANSWER: 5,
    CallOutcome.BUSY: 3,
    CallOutcome.WRONG_NUMBER: 15,
    CallOutcome.NOT_INTERESTED: 20,
    CallOutcome.DO_NOT_CONTACT: SCORE_MAX,
}


def clamp_score(score: int) -> int:
    return max(SCORE_MIN, min(SCORE_MAX, score))


def outcome_adjustment(outcome: CallOutcome) -> int:
    return OUTCOME_SCORE_ADJUSTMENTS.get(outcome, 0)


def adjust_for_outcome(score: int, outcome: CallOutcome) -> int:
    """Pure form of the outcome rule, used by tests and previews."""
    return clamp_score(score + outcome_adjustment(outcome))


def _clamped_increment(column, amount):
    return case((column + amount > SCORE_MAX, SCORE_MAX), else_=column + amount)


def record_call(person_id: int, agent_id: str, outcome: CallOutcome,
                category: Optional[Category] = None, talk_time_seconds: int = 0,
                started_at=None, session=None) -> dict:
    """
    Record one contact attempt and fold it into the lead's scheduling state.

    - Writes a CallContact row (attribution evidence).
    - Bumps total_attempts, and successful_calls for real conversations.
    - Applies the outcome penalty, but only while the lead is still in the
      category the call was made for. A lead that changed category in the
      meantime was reset to 0 and that reset wins.
    - Failed attempts mark the agent for a one-pick cool-down on this person.
    - Releases the agent's lease on the lead.
    """
    outcome = CallOutcome(outcome)
    now = utcnow()
    adjustment = outcome_adjustment(outcome)

    with session_scope(session) as s:
        s.add(CallContact(
            person_id=person_id,
            agent_id=agent_id,
            category=category,
            outcome=outcome,
            talk_time_seconds=talk_time_seconds or 0,
            started_at=started_at or now,
        ))

        values = {
            'total_attempts': LeadRecord.total_attempts + 1,
            'last_contacted_at': now,
            'last_outcome': outcome,
            'last_failed_agent_id': agent_id if outcome in FAILED_OUTCOMES else None,
            'claimed_category': None,
        }
        if outcome in SUCCESSFUL_OUTCOMES:
            values['successful_calls'] = LeadRecord.successful_calls + 1
        if adjustment:
            if category is None:
                values['score'] = _clamped_increment(LeadRecord.score, adjustment)
            else:
                values['score'] = case(
                    (LeadRecord.category == category, _clamped_increment(LeadRecord.score, adjustment)),
                    else_=LeadRecord.score,
                )

        updated = conditional_update(s, LeadRecord, [LeadRecord.person_id == person_id], values)
        released = conditional_update(
            s, LeadRecord,
            [LeadRecord.person_id == person_id, LeadRecord.claimed_by_agent_id == agent_id],
            {'claimed_by_agent_id': None, 'lease_expires_at': None},
        )

    if not updated:
        logger.info("Call for person %s recorded without a lead record (outcome=%s)", person_id, outcome.value)
    else:
        logger.info("Call recorded: person=%s agent=%s outcome=%s adj=+%d",
                    person_id, agent_id, outcome.value, adjustment)

    return {
        'person_id': person_id,
        'outcome': outcome.value,
        'lead_found': bool(updated),
        'score_adjustment': adjustment,
        'lease_released': bool(released),
    }
