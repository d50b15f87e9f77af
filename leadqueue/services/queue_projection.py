"""
Queue projection — the ordered, read-only view agents and dashboards see.

Nothing here is stored: positions are derived from lead_records on every
read, so the view is always consistent with the latest scores.
"""
import logging
from typing import Optional

from sqlalchemy import func

from leadqueue.config import QUEUE_LOW_WATERMARK, SCORE_MAX
from leadqueue.database import session_scope, utcnow
from leadqueue.models.enums import Category
from leadqueue.models.lead_record import LeadRecord
from leadqueue.services.callbacks import callback_stats
from leadqueue.services.inbound_queue import inbound_stats
from leadqueue.services.notifications import notify_queue_low

logger = logging.getLogger('services.queue_projection')

# (upper bound inclusive, label); anything above the last bound is terminal
SCORE_BANDS = [
    (10, 'immediate'),
    (50, 'warm'),
    (100, 'lukewarm'),
    (SCORE_MAX - 1, 'cold'),
]
TERMINAL_BAND = 'converted/terminal'


def score_band(score: int) -> str:
    for upper, label in SCORE_BANDS:
        if score <= upper:
            return label
    return TERMINAL_BAND


def _active(category: Category):
    return [LeadRecord.active.is_(True), LeadRecord.category == category]


def list_queue(category: Category, page: int = 1, per_page: int = 50, session=None) -> dict:
    """One page of a category queue, best candidate first."""
    category = Category(category)
    page = max(1, int(page))
    per_page = max(1, min(200, int(per_page)))
    offset = (page - 1) * per_page

    with session_scope(session) as s:
        q = s.query(LeadRecord).filter(*_active(category))
        total = q.count()
        rows = (
            q.order_by(LeadRecord.score, LeadRecord.created_at, LeadRecord.person_id)
            .offset(offset)
            .limit(per_page)
            .all()
        )
        entries = []
        for index, lead in enumerate(rows, start=offset + 1):
            entry = lead.to_dict()
            entry['position'] = index
            entry['band'] = score_band(lead.score)
            entries.append(entry)

    return {
        'category': category.value,
        'entries': entries,
        'page': page,
        'per_page': per_page,
        'total': total,
        'pages': (total + per_page - 1) // per_page,
    }


def queue_stats(now=None) -> dict:
    """Counts, average wait and band distribution per category, computed on demand."""
    now = now or utcnow()
    stats = {'categories': {}}
    with session_scope() as s:
        for category in Category:
            rows = (
                s.query(LeadRecord.score, LeadRecord.created_at, LeadRecord.last_reset_at)
                .filter(*_active(category))
                .all()
            )
            bands = {label: 0 for _, label in SCORE_BANDS}
            bands[TERMINAL_BAND] = 0
            wait_hours = 0.0
            for score, created_at, reset_at in rows:
                bands[score_band(score)] += 1
                since = max(created_at, reset_at) if reset_at else created_at
                wait_hours += (now - since).total_seconds() / 3600
            avg_score = (
                s.query(func.avg(LeadRecord.score)).filter(*_active(category)).scalar()
            )
            stats['categories'][category.value] = {
                'count': len(rows),
                'average_wait_hours': round(wait_hours / len(rows), 2) if rows else 0.0,
                'average_score': round(float(avg_score), 1) if avg_score is not None else None,
                'bands': bands,
            }
        stats['callbacks'] = callback_stats(now=now, session=s)
        stats['inbound'] = inbound_stats(session=s)
    return stats


def check_queue_levels(threshold: Optional[int] = None) -> dict:
    """Warn operators when a category queue drops below the watermark."""
    threshold = QUEUE_LOW_WATERMARK if threshold is None else threshold
    levels = {}
    with session_scope() as s:
        for category in Category:
            levels[category.value] = s.query(LeadRecord).filter(*_active(category)).count()

    low = [name for name, count in levels.items() if count < threshold]
    for name in low:
        logger.warning("Queue %s is low: %d active lead(s) (threshold %d)", name, levels[name], threshold)
        notify_queue_low(name, levels[name], threshold)
    return {'levels': levels, 'low': low, 'threshold': threshold}
