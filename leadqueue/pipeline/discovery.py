"""
Discovery — keeps lead_records in step with the eligibility source.

Two passes, both paginated by person_id with a cursor persisted in
job_cursors:

  discover_new_leads(category)  pull eligible people in, reset movers
  detect_conversions()          re-check active leads, retire the ones
                                that left (the authoritative reconciler)

Each page is written in one transaction together with its cursor advance, so
a run killed at any point resumes without skipping or repeating a page.
Both stop early when their wall-clock budget is spent and report
can_resume / next_offset.
"""
import logging
import time
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from leadqueue.config import DISCOVERY_BATCH_SIZE, DISCOVERY_TIME_BUDGET_SECONDS, SCORE_MAX
from leadqueue.database import session_scope, utcnow
from leadqueue.errors import SourceUnavailableError
from leadqueue.models.enums import Category, ConversionType, TransitionSource
from leadqueue.models.job_cursor import JobCursor
from leadqueue.models.lead_record import LeadRecord
from leadqueue.pipeline.base import EligibilitySource, EligibleLead, JobResult, describe_reason
from leadqueue.pipeline.sources import default_source
from leadqueue.services.conversions import infer_conversion_type, record_conversion, write_transition

logger = logging.getLogger('pipeline.discovery')

CONVERSION_CURSOR_KEY = 'conversions:active'


def cursor_key(category: Category) -> str:
    return f'discovery:{Category(category).value}'


# ── Cursor store ──────────────────────────────────────────────────────────────

def load_cursor(key: str) -> Optional[int]:
    with session_scope() as s:
        row = s.get(JobCursor, key)
        return row.position if row is not None else None


def save_cursor(session, key: str, position: Optional[int]):
    """Stage the cursor in the caller's transaction."""
    row = session.get(JobCursor, key)
    if row is None:
        row = JobCursor(key=key)
        session.add(row)
    row.position = position
    row.updated_at = utcnow()


def reset_cursor(key: str):
    with session_scope() as s:
        save_cursor(s, key, None)


# ── Discovery ─────────────────────────────────────────────────────────────────

def _upsert(session, item: EligibleLead, now, result: JobResult):
    lead = session.query(LeadRecord).filter_by(person_id=item.person_id).first()

    if lead is None:
        session.add(LeadRecord(
            person_id=item.person_id,
            score=0,
            category=item.category,
            active=True,
            reason=item.reason,
            pending_count=item.pending_count,
            last_checked_at=now,
        ))
        write_transition(session, item.person_id, None, item.category, item.reason, TransitionSource.DISCOVERY)
        result.bump('created')

    elif not lead.active or lead.category != item.category:
        from_category = lead.category if lead.active else None
        lead.category = item.category
        lead.active = True
        lead.score = 0
        lead.last_reset_at = now
        lead.reason = item.reason
        lead.pending_count = item.pending_count
        lead.last_checked_at = now
        write_transition(session, item.person_id, from_category, item.category, item.reason,
                         TransitionSource.DISCOVERY)
        result.bump('reset')

    else:
        lead.reason = item.reason
        lead.pending_count = item.pending_count
        lead.last_checked_at = now
        lead.updated_at = now
        result.bump('unchanged')

    result.processed += 1


def discover_new_leads(category: Category, source: Optional[EligibilitySource] = None,
                       batch_size: int = DISCOVERY_BATCH_SIZE,
                       time_budget: float = DISCOVERY_TIME_BUDGET_SECONDS,
                       restart: bool = False) -> JobResult:
    """
    Pull eligible people for one category into the lead store.

    New people start at score 0. People whose category changed (or who come
    back after leaving) are reset to 0 in their new category; everyone else
    only gets their snapshot refreshed.
    """
    category = Category(category)
    source = source or default_source()
    key = cursor_key(category)
    result = JobResult()
    started = time.monotonic()

    position = None if restart else load_cursor(key)
    if position is not None:
        logger.info("Discovery %s resuming after person %s", category.value, position)

    while True:
        if time.monotonic() - started > time_budget:
            result.can_resume = True
            result.next_offset = position
            logger.warning("Discovery %s stopped at time budget, resume after %s", category.value, position)
            break

        try:
            page = source.list_eligible(category, position, batch_size)
        except SourceUnavailableError as e:
            result.failed += 1
            result.errors.append(f"source unavailable: {e}")
            result.can_resume = True
            result.next_offset = position
            logger.error("Discovery %s aborted batch after %s: %s", category.value, position, e)
            break

        now = utcnow()
        try:
            with session_scope() as s:
                for item in page.items:
                    _upsert(s, item, now, result)
                save_cursor(s, key, page.next_cursor)
        except SQLAlchemyError as e:
            result.failed += len(page.items)
            result.errors.append(f"batch after {position}: {e}")
            result.can_resume = True
            result.next_offset = position
            logger.error("Discovery %s batch after %s rolled back", category.value, position, exc_info=True)
            break

        result.bump('batches')
        position = page.next_cursor
        if position is None:
            break

    logger.info("Discovery %s: processed=%d created=%d reset=%d resumable=%s",
                category.value, result.processed, result.stats.get('created', 0),
                result.stats.get('reset', 0), result.can_resume)
    return result


# ── Conversion detection ──────────────────────────────────────────────────────

def _retire(session, lead: LeadRecord, conversion_type: ConversionType, reason: str, now, result: JobResult):
    from_category = lead.category
    conversion, created = record_conversion(
        lead.person_id,
        conversion_type,
        previous_category=from_category,
        reason=reason,
        converted_at=now,
        source='conversion_sweep',
        final_score=lead.score,
        total_attempts=lead.total_attempts,
        session=session,
    )
    lead.active = False
    lead.category = None
    lead.claimed_by_agent_id = None
    lead.lease_expires_at = None
    lead.last_checked_at = now
    write_transition(session, lead.person_id, from_category, None, reason,
                     TransitionSource.CONVERSION_SWEEP, conversion=conversion,
                     details={'conversion_type': conversion_type.value, 'deduplicated': not created})
    result.bump('converted')
    result.bump(conversion_type.value)


def detect_conversions(source: Optional[EligibilitySource] = None,
                       batch_size: int = DISCOVERY_BATCH_SIZE,
                       time_budget: float = DISCOVERY_TIME_BUDGET_SECONDS,
                       restart: bool = False) -> JobResult:
    """
    Re-check every active lead against the source.

    Leads at the score ceiling are retired as scored_out. Leads no longer
    eligible anywhere are retired with the most specific conversion type the
    source supports. Leads that moved category are reset in place.
    """
    source = source or default_source()
    result = JobResult()
    started = time.monotonic()
    position = None if restart else load_cursor(CONVERSION_CURSOR_KEY)

    while True:
        if time.monotonic() - started > time_budget:
            result.can_resume = True
            result.next_offset = position
            logger.warning("Conversion sweep stopped at time budget, resume after %s", position)
            break

        with session_scope() as s:
            q = s.query(LeadRecord.person_id).filter(LeadRecord.active.is_(True))
            if position is not None:
                q = q.filter(LeadRecord.person_id > position)
            ids = [pid for (pid,) in q.order_by(LeadRecord.person_id).limit(batch_size).all()]

        if not ids:
            reset_cursor(CONVERSION_CURSOR_KEY)
            break

        try:
            statuses = source.check_people(ids)
        except SourceUnavailableError as e:
            result.failed += 1
            result.errors.append(f"source unavailable: {e}")
            result.can_resume = True
            result.next_offset = position
            logger.error("Conversion sweep aborted batch after %s: %s", position, e)
            break

        now = utcnow()
        next_position = ids[-1] if len(ids) == batch_size else None
        try:
            with session_scope() as s:
                leads = (
                    s.query(LeadRecord)
                    .filter(LeadRecord.person_id.in_(ids), LeadRecord.active.is_(True))
                    .order_by(LeadRecord.person_id)
                    .all()
                )
                for lead in leads:
                    status = statuses.get(lead.person_id)
                    result.processed += 1
                    if lead.score >= SCORE_MAX:
                        _retire(s, lead, ConversionType.SCORED_OUT, 'Score reached ceiling', now, result)
                    elif status is None or status.category is None:
                        conversion_type = (infer_conversion_type(lead.category, status)
                                           or ConversionType.NO_LONGER_ELIGIBLE)
                        _retire(s, lead, conversion_type, 'No longer eligible', now, result)
                    elif status.category != lead.category:
                        from_category = lead.category
                        reason = describe_reason(status.category, status.pending_count)
                        lead.category = status.category
                        lead.score = 0
                        lead.last_reset_at = now
                        lead.reason = reason
                        lead.pending_count = status.pending_count
                        lead.last_checked_at = now
                        write_transition(s, lead.person_id, from_category, status.category, reason,
                                         TransitionSource.CONVERSION_SWEEP)
                        result.bump('switched')
                    else:
                        lead.pending_count = status.pending_count
                        lead.last_checked_at = now
                        result.bump('still_eligible')
                save_cursor(s, CONVERSION_CURSOR_KEY, next_position)
        except SQLAlchemyError as e:
            result.failed += len(ids)
            result.errors.append(f"batch after {position}: {e}")
            result.can_resume = True
            result.next_offset = position
            logger.error("Conversion sweep batch after %s rolled back", position, exc_info=True)
            break

        position = next_position
        if position is None:
            break

    logger.info("Conversion sweep: processed=%d converted=%d switched=%d",
                result.processed, result.stats.get('converted', 0), result.stats.get('switched', 0))
    return result


def run_discovery_cycle(source: Optional[EligibilitySource] = None) -> JobResult:
    """Discovery for every category, then the conversion sweep."""
    source = source or default_source()
    combined = JobResult()
    parts = [(category.value, lambda c=category: discover_new_leads(c, source=source)) for category in Category]
    parts.append(('conversions', lambda: detect_conversions(source=source)))

    for name, run in parts:
        part = run()
        combined.processed += part.processed
        combined.failed += part.failed
        combined.skipped += part.skipped
        combined.errors.extend(f"{name}: {err}" for err in part.errors)
        combined.stats[name] = part.to_dict()
        combined.can_resume = combined.can_resume or part.can_resume
    return combined
