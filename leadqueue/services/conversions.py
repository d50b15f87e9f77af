"""
Conversion ledger — deduplicated, append-only record of category exits.

Every writer (discovery sweep, manual transitions, leak recovery) goes through
record_conversion(), which guarantees at most one ConversionRecord per person
inside the dedup window even with concurrent writers: the guard is a
conditional UPDATE on lead_records.last_converted_at, so only one transaction
can stamp a given window.
"""
import logging
import time
from datetime import timedelta
from typing import List, Optional, Tuple

from sqlalchemy import or_

from leadqueue.config import (
    CONVERSION_DEDUP_MINUTES, SCORE_MAX,
    ATTRIBUTION_MIN_TALK_SECONDS, ATTRIBUTION_LOOKBACK_DAYS,
    ATTRIBUTION_BACKFILL_HOURS, ATTRIBUTION_BATCH_SIZE, ATTRIBUTION_TIME_BUDGET_SECONDS,
)
from leadqueue.database import session_scope, utcnow
from leadqueue.models.call_contact import CallContact
from leadqueue.models.conversion_record import ConversionRecord
from leadqueue.models.enums import Category, ConversionType, TransitionSource
from leadqueue.models.lead_record import LeadRecord
from leadqueue.models.lead_transition import LeadTransition
from leadqueue.pipeline.base import JobResult
from leadqueue.services.leases import conditional_update

logger = logging.getLogger('services.conversions')


def dedup_window() -> timedelta:
    return timedelta(minutes=CONVERSION_DEDUP_MINUTES)


def find_recent_conversion(session, person_id: int, around, window: Optional[timedelta] = None):
    """Return a ConversionRecord for person within ±window of `around`, if any."""
    window = window or dedup_window()
    return (
        session.query(ConversionRecord)
        .filter(
            ConversionRecord.person_id == person_id,
            ConversionRecord.converted_at >= around - window,
            ConversionRecord.converted_at <= around + window,
        )
        .order_by(ConversionRecord.converted_at.desc())
        .first()
    )


def attribute_agents(session, person_id: int, converted_at) -> Tuple[Optional[str], List[str]]:
    """
    Work out who most likely converted this person.

    Qualifying contacts: talk time above the minimum, inside the lookback
    window ending at the conversion. Most recent agent is primary; every other
    distinct agent (most recent first) is contributing.
    """
    contacts = (
        session.query(CallContact.agent_id)
        .filter(
            CallContact.person_id == person_id,
            CallContact.talk_time_seconds > ATTRIBUTION_MIN_TALK_SECONDS,
            CallContact.started_at >= converted_at - timedelta(days=ATTRIBUTION_LOOKBACK_DAYS),
            CallContact.started_at <= converted_at,
        )
        .order_by(CallContact.started_at.desc(), CallContact.id.desc())
        .all()
    )
    agents = []
    for (agent_id,) in contacts:
        if agent_id not in agents:
            agents.append(agent_id)
    if not agents:
        return None, []
    return agents[0], agents[1:]


def infer_conversion_type(from_category: Optional[Category], status, score: Optional[int] = None) -> Optional[ConversionType]:
    """
    Best explanation for why a person left their queue, from a fresh source
    check. None means the exit cannot be explained (still eligible, or no
    evidence either way).
    """
    if score is not None and score >= SCORE_MAX:
        return ConversionType.SCORED_OUT
    if status is None:
        return None
    if status.category is not None:
        return None
    if not status.enabled:
        return ConversionType.NO_LONGER_ELIGIBLE
    if from_category == Category.UNSIGNED and status.has_signature:
        return ConversionType.SIGNATURE_OBTAINED
    if from_category == Category.OUTSTANDING_REQUIREMENTS and status.has_signature and status.pending_count == 0:
        return ConversionType.REQUIREMENTS_COMPLETED
    return None


def _claim_dedup_window(session, person_id, converted_at, window) -> bool:
    """Stamp lead_records.last_converted_at unless a stamp already covers this window."""
    return conditional_update(
        session, LeadRecord,
        [
            LeadRecord.person_id == person_id,
            or_(
                LeadRecord.last_converted_at.is_(None),
                LeadRecord.last_converted_at < converted_at - window,
                LeadRecord.last_converted_at > converted_at + window,
            ),
        ],
        {'last_converted_at': converted_at},
    ) == 1


def record_conversion(person_id: int, conversion_type: ConversionType,
                      previous_category: Optional[Category] = None, reason: str = '',
                      converted_at=None, source: str = '', final_score: Optional[int] = None,
                      total_attempts: Optional[int] = None, session=None) -> Tuple[ConversionRecord, bool]:
    """
    Write a ConversionRecord unless one already exists in the dedup window.

    Returns (record, created). When created is False, record is the existing
    row that made this write a duplicate.
    """
    conversion_type = ConversionType(conversion_type)
    converted_at = converted_at or utcnow()
    window = dedup_window()

    with session_scope(session) as s:
        lead = s.query(LeadRecord).filter_by(person_id=person_id).first()

        if lead is not None:
            won = _claim_dedup_window(s, person_id, converted_at, window)
            existing = None if won else find_recent_conversion(s, person_id, converted_at, window)
            if not won and existing is None and lead.last_converted_at is not None:
                existing = find_recent_conversion(s, person_id, lead.last_converted_at, window)
            if not won:
                logger.info("Conversion for person %s deduplicated (window=%s)", person_id, window)
                return existing, False
        else:
            existing = find_recent_conversion(s, person_id, converted_at, window)
            if existing is not None:
                logger.info("Conversion for person %s deduplicated (no lead record)", person_id)
                return existing, False

        primary, contributing = attribute_agents(s, person_id, converted_at)
        record = ConversionRecord(
            person_id=person_id,
            previous_category=previous_category if previous_category is not None else (lead.category if lead else None),
            conversion_type=conversion_type,
            reason=reason,
            final_score=final_score if final_score is not None else (lead.score if lead else 0),
            total_attempts=total_attempts if total_attempts is not None else (lead.total_attempts if lead else 0),
            converted_at=converted_at,
            primary_agent_id=primary,
            contributing_agents=contributing,
            attribution_method='inline' if primary else None,
            attributed_at=utcnow() if primary else None,
            source=source,
        )
        s.add(record)
        s.flush()

    logger.info("Conversion logged: person=%s type=%s primary_agent=%s source=%s",
                person_id, conversion_type.value, primary or '-', source or '-')
    return record, True


def write_transition(session, person_id: int, from_category: Optional[Category],
                     to_category: Optional[Category], reason: str, source: TransitionSource,
                     agent_id: Optional[str] = None, conversion: Optional[ConversionRecord] = None,
                     details: Optional[dict] = None) -> LeadTransition:
    """Append one audit row. Caller owns the transaction."""
    row = LeadTransition(
        person_id=person_id,
        from_category=from_category,
        to_category=to_category,
        reason=reason,
        source=TransitionSource(source),
        agent_id=agent_id,
        conversion_id=conversion.id if conversion is not None else None,
        conversion_logged=conversion is not None,
        occurred_at=utcnow(),
        details=details,
    )
    session.add(row)
    return row


def transition_lead(person_id: int, to_category: Optional[Category], reason: str = '',
                    source: TransitionSource = TransitionSource.MANUAL, agent_id: Optional[str] = None,
                    conversion_type: Optional[ConversionType] = None, session=None) -> dict:
    """
    Move a lead between categories outside of discovery.

    Exits log the conversion first, then update the lead, then write the
    audit row; a crash between steps leaves an exit the leak detector can
    still reconcile. Entering or switching a category resets the score to 0.
    """
    now = utcnow()
    with session_scope(session) as s:
        lead = s.query(LeadRecord).filter_by(person_id=person_id).first()
        if lead is None:
            raise ValueError(f"No lead record for person {person_id}")

        from_category = lead.category if lead.active else None
        if from_category == to_category:
            return {'person_id': person_id, 'changed': False, 'category': to_category.value if to_category else None}

        conversion = None
        if to_category is None:
            conversion, _ = record_conversion(
                person_id,
                conversion_type or ConversionType.NO_LONGER_ELIGIBLE,
                previous_category=from_category,
                reason=reason,
                converted_at=now,
                source='transition',
                session=s,
            )
            lead.active = False
            lead.category = None
        else:
            lead.category = to_category
            lead.active = True
            lead.score = 0
            lead.last_reset_at = now
        lead.claimed_by_agent_id = None
        lead.lease_expires_at = None

        write_transition(s, person_id, from_category, to_category, reason, source,
                         agent_id=agent_id, conversion=conversion)

    logger.info("Lead %s moved %s -> %s (%s)", person_id,
                from_category.value if from_category else None,
                to_category.value if to_category else None, reason or source)
    return {
        'person_id': person_id,
        'changed': True,
        'category': to_category.value if to_category else None,
        'conversion_id': conversion.id if conversion is not None else None,
    }


def backfill_attribution(hours_back: int = ATTRIBUTION_BACKFILL_HOURS, now=None,
                         time_budget: float = ATTRIBUTION_TIME_BUDGET_SECONDS) -> JobResult:
    """
    Attribute recent conversions that had no qualifying contact when written.

    Contacts can land after the conversion row (late call webhooks), so this
    re-checks unattributed rows from the last `hours_back` hours in batches.
    """
    now = now or utcnow()
    cutoff = now - timedelta(hours=hours_back)
    result = JobResult()
    started = time.monotonic()
    last_id = 0

    while True:
        if time.monotonic() - started > time_budget:
            result.can_resume = True
            result.next_offset = last_id
            logger.warning("Attribution backfill stopped at budget, next id > %s", last_id)
            break

        with session_scope() as s:
            batch = (
                s.query(ConversionRecord)
                .filter(
                    ConversionRecord.id > last_id,
                    ConversionRecord.primary_agent_id.is_(None),
                    ConversionRecord.attributed_at.is_(None),
                    ConversionRecord.converted_at >= cutoff,
                )
                .order_by(ConversionRecord.id)
                .limit(ATTRIBUTION_BATCH_SIZE)
                .all()
            )
            if not batch:
                break
            for record in batch:
                last_id = record.id
                result.processed += 1
                primary, contributing = attribute_agents(s, record.person_id, now)
                if primary is None:
                    result.skipped += 1
                    continue
                record.primary_agent_id = primary
                record.contributing_agents = contributing
                record.attribution_method = 'backfill'
                record.attributed_at = now
                result.bump('attributed')

    logger.info("Attribution backfill: processed=%d attributed=%d",
                result.processed, result.stats.get('attributed', 0))
    return result


def list_conversions(page: int = 1, per_page: int = 50, person_id: Optional[int] = None,
                     conversion_type: Optional[ConversionType] = None) -> dict:
    """Paginated conversion history, newest first. Read-only."""
    page = max(1, int(page))
    per_page = max(1, min(200, int(per_page)))
    with session_scope() as s:
        q = s.query(ConversionRecord)
        if person_id is not None:
            q = q.filter(ConversionRecord.person_id == person_id)
        if conversion_type is not None:
            q = q.filter(ConversionRecord.conversion_type == ConversionType(conversion_type))
        total = q.count()
        rows = (
            q.order_by(ConversionRecord.converted_at.desc(), ConversionRecord.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
            .all()
        )
        items = [r.to_dict() for r in rows]
    return {
        'items': items,
        'page': page,
        'per_page': per_page,
        'total': total,
        'pages': (total + per_page - 1) // per_page,
    }
