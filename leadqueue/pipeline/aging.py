"""
Daily score aging.

Every active lead below the ceiling gains one point per day, except on the
rest weekday. last_aged_on makes the job idempotent: a second run on the same
day finds nothing to do, and a missed day is simply skipped rather than
caught up.
"""
import logging
from datetime import date
from typing import Optional

from sqlalchemy import or_

from leadqueue.config import AGING_REST_WEEKDAY, AGING_BATCH_SIZE, SCORE_MAX
from leadqueue.database import session_scope, utcnow
from leadqueue.errors import DataIntegrityError
from leadqueue.models.lead_record import LeadRecord
from leadqueue.pipeline.base import JobResult
from leadqueue.services.leases import conditional_update

logger = logging.getLogger('pipeline.aging')


def is_rest_day(day: date) -> bool:
    return day.weekday() == AGING_REST_WEEKDAY


def _due_for_aging(today):
    return [
        LeadRecord.active.is_(True),
        LeadRecord.score < SCORE_MAX,
        or_(LeadRecord.last_aged_on.is_(None), LeadRecord.last_aged_on < today),
    ]


def _age_batch(person_ids, today):
    """Age exactly these people or roll back. Raises DataIntegrityError on a count mismatch."""
    with session_scope() as s:
        affected = conditional_update(
            s, LeadRecord,
            [LeadRecord.person_id.in_(person_ids), *_due_for_aging(today)],
            {'score': LeadRecord.score + 1, 'last_aged_on': today},
        )
        if affected != len(person_ids):
            raise DataIntegrityError('daily_aging', len(person_ids), affected)
    return affected


def apply_daily_aging(today: Optional[date] = None, batch_size: int = AGING_BATCH_SIZE) -> JobResult:
    """Add one point to every lead that has not been aged today."""
    today = today or utcnow().date()
    result = JobResult()

    if is_rest_day(today):
        result.stats['rest_day'] = True
        logger.info("Aging skipped: %s is the rest day", today.isoformat())
        return result

    last_person = None
    while True:
        with session_scope() as s:
            q = s.query(LeadRecord.person_id).filter(*_due_for_aging(today))
            if last_person is not None:
                q = q.filter(LeadRecord.person_id > last_person)
            ids = [pid for (pid,) in q.order_by(LeadRecord.person_id).limit(batch_size).all()]
        if not ids:
            break
        last_person = ids[-1]

        try:
            result.processed += _age_batch(ids, today)
            result.bump('batches')
        except DataIntegrityError as e:
            result.failed += len(ids)
            result.errors.append(str(e))
            logger.error("Aging batch ending at person %s rolled back: %s", last_person, e)

    logger.info("Aging for %s: aged=%d failed=%d", today.isoformat(), result.processed, result.failed)
    return result
