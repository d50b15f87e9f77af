"""
Conversion leak detector.

A "leak" is a queue exit (LeadTransition with no to_category) that never got
its ConversionRecord, e.g. a writer crashed between updating the lead and
logging the conversion. The detector scans recent exits, recovers what it can
through the normal ledger (so dedup still holds), and parks the rest for a
human.

LeakMonitor drives the scan on a fixed interval through RQ. Its on/off flag
and overlap lock live in Redis so any process can start, stop or inspect it.
"""
import json
import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, List, Optional

from sqlalchemy import or_, and_

from leadqueue.config import LEAK_SCAN_MINUTES, LEAK_MONITOR_INTERVAL_SECONDS, LEAK_ALERT_THRESHOLD
from leadqueue.database import session_scope, utcnow
from leadqueue.errors import SourceUnavailableError
from leadqueue.models.enums import Category, RecoveryStatus
from leadqueue.models.lead_record import LeadRecord
from leadqueue.models.lead_transition import LeadTransition
from leadqueue.models.leak_scan_metric import LeakScanMetric
from leadqueue.pipeline.sources import default_source
from leadqueue.services.conversions import find_recent_conversion, infer_conversion_type, record_conversion
from leadqueue.services.notifications import notify_conversion_leaks

logger = logging.getLogger('services.leak_detector')


@dataclass
class PotentialLeak:
    transition_id: int
    person_id: int
    from_category: Optional[Category]
    occurred_at: object
    reason: str = ''


def _exit_filter(since):
    """Unlogged exits inside the window, plus earlier recoveries that failed."""
    return [
        LeadTransition.to_category.is_(None),
        LeadTransition.from_category.isnot(None),
        LeadTransition.conversion_logged.is_(False),
        or_(
            and_(LeadTransition.occurred_at >= since, LeadTransition.recovery_status.is_(None)),
            LeadTransition.recovery_status == RecoveryStatus.RECOVERY_FAILED,
        ),
    ]


def _mark(session, transition_id, status, conversion_id=None):
    row = session.get(LeadTransition, transition_id)
    row.recovery_status = status
    if conversion_id is not None:
        row.conversion_id = conversion_id
        row.conversion_logged = True


def recover_leak(leak: PotentialLeak, person_status=None, source_error: Optional[str] = None) -> RecoveryStatus:
    """
    Try to write the missing ConversionRecord for one exit.

    person_status is the fresh source check for this person (None when the
    source could not be reached). Each leak commits on its own so one bad row
    cannot roll back the others.
    """
    with session_scope() as s:
        if source_error is not None:
            _mark(s, leak.transition_id, RecoveryStatus.RECOVERY_FAILED)
            logger.warning("Leak %s (person %s) not recovered, source unavailable: %s",
                           leak.transition_id, leak.person_id, source_error)
            return RecoveryStatus.RECOVERY_FAILED

        lead = s.query(LeadRecord).filter_by(person_id=leak.person_id).first()
        conversion_type = infer_conversion_type(leak.from_category, person_status,
                                                lead.score if lead is not None else None)
        if conversion_type is None:
            _mark(s, leak.transition_id, RecoveryStatus.MANUAL_REVIEW)
            logger.warning("Leak %s (person %s) needs manual review", leak.transition_id, leak.person_id,
                           extra={'person_id': leak.person_id})
            return RecoveryStatus.MANUAL_REVIEW

        record, created = record_conversion(
            leak.person_id,
            conversion_type,
            previous_category=leak.from_category,
            reason=f"Recovered by leak detector: {leak.reason}" if leak.reason else "Recovered by leak detector",
            converted_at=leak.occurred_at,
            source='leak_recovery',
            session=s,
        )
        if record is None:
            _mark(s, leak.transition_id, RecoveryStatus.MANUAL_REVIEW)
            return RecoveryStatus.MANUAL_REVIEW

        status = RecoveryStatus.RECOVERED if created else RecoveryStatus.ALREADY_LOGGED
        _mark(s, leak.transition_id, status, conversion_id=record.id)

    logger.info("Leak %s (person %s) -> %s", leak.transition_id, leak.person_id, status.value,
                extra={'person_id': leak.person_id})
    return status


def scan_for_leaks(minutes_back: int = LEAK_SCAN_MINUTES, source=None, now=None) -> dict:
    """
    One leak scan.

    Exits that already have a conversion nearby are linked and closed as
    already_logged. The rest are potential leaks: re-checked against the
    eligibility source in one call, then recovered one by one.
    """
    started = time.monotonic()
    now = now or utcnow()
    since = now - timedelta(minutes=minutes_back)

    leaks: List[PotentialLeak] = []
    with session_scope() as s:
        exits = (
            s.query(LeadTransition)
            .filter(*_exit_filter(since))
            .order_by(LeadTransition.occurred_at, LeadTransition.id)
            .all()
        )
        checked = len(exits)
        for row in exits:
            existing = find_recent_conversion(s, row.person_id, row.occurred_at)
            if existing is not None:
                row.recovery_status = RecoveryStatus.ALREADY_LOGGED
                row.conversion_id = existing.id
                row.conversion_logged = True
                continue
            leaks.append(PotentialLeak(row.id, row.person_id, row.from_category, row.occurred_at, row.reason or ''))

    statuses: Dict[int, object] = {}
    source_error = None
    if leaks:
        try:
            source = source or default_source()
            statuses = source.check_people({leak.person_id for leak in leaks})
        except SourceUnavailableError as e:
            source_error = str(e)

    counts = {status: 0 for status in RecoveryStatus}
    unrecovered_people = []
    for leak in leaks:
        outcome = recover_leak(leak, statuses.get(leak.person_id), source_error=source_error)
        counts[outcome] += 1
        if outcome in (RecoveryStatus.MANUAL_REVIEW, RecoveryStatus.RECOVERY_FAILED):
            unrecovered_people.append(leak.person_id)

    result = {
        'window_minutes': minutes_back,
        'exits_checked': checked,
        'potential_leaks': len(leaks),
        'recovered': counts[RecoveryStatus.RECOVERED] + counts[RecoveryStatus.ALREADY_LOGGED],
        'unrecovered': len(unrecovered_people),
        'manual_review': counts[RecoveryStatus.MANUAL_REVIEW],
        'recovery_failed': counts[RecoveryStatus.RECOVERY_FAILED],
        'unrecovered_person_ids': unrecovered_people,
        'duration_ms': int((time.monotonic() - started) * 1000),
    }

    with session_scope() as s:
        s.add(LeakScanMetric(
            scanned_at=now,
            window_minutes=minutes_back,
            exits_checked=checked,
            potential_leaks=result['potential_leaks'],
            recovered=result['recovered'],
            unrecovered=result['unrecovered'],
            duration_ms=result['duration_ms'],
        ))

    if result['potential_leaks']:
        logger.warning("Leak scan: %d potential, %d recovered, %d unrecovered",
                       result['potential_leaks'], result['recovered'], result['unrecovered'])
    else:
        logger.debug("Leak scan: %d exits checked, no leaks", checked)

    if result['unrecovered'] >= LEAK_ALERT_THRESHOLD:
        notify_conversion_leaks(result)
    return result


def list_manual_review(limit: int = 100) -> List[dict]:
    """Exits parked for a human, newest first."""
    with session_scope() as s:
        rows = (
            s.query(LeadTransition)
            .filter(LeadTransition.recovery_status == RecoveryStatus.MANUAL_REVIEW)
            .order_by(LeadTransition.occurred_at.desc())
            .limit(limit)
            .all()
        )
        return [row.to_dict() for row in rows]


def get_health_metrics(hours_back: int = 24, now=None) -> dict:
    """Aggregate scan metrics over a window, with the recovery rate."""
    now = now or utcnow()
    since = now - timedelta(hours=hours_back)
    with session_scope() as s:
        rows = s.query(LeakScanMetric).filter(LeakScanMetric.scanned_at >= since).all()
        manual = (
            s.query(LeadTransition)
            .filter(LeadTransition.recovery_status == RecoveryStatus.MANUAL_REVIEW)
            .count()
        )
        last = max((r.scanned_at for r in rows), default=None)

    potential = sum(r.potential_leaks or 0 for r in rows)
    recovered = sum(r.recovered or 0 for r in rows)
    return {
        'hours_back': hours_back,
        'scans': len(rows),
        'exits_checked': sum(r.exits_checked or 0 for r in rows),
        'potential_leaks': potential,
        'recovered': recovered,
        'unrecovered': sum(r.unrecovered or 0 for r in rows),
        'recovery_rate': round(recovered / potential, 4) if potential else 1.0,
        'average_duration_ms': int(sum(r.duration_ms or 0 for r in rows) / len(rows)) if rows else 0,
        'manual_review_open': manual,
        'last_scan_at': last.isoformat() if last else None,
    }


# ── Monitor ──────────────────────────────────────────────────────────────────

class LeakMonitor:
    """
    Periodic leak scanning driven by a self-rescheduling RQ job.

    Usage:
        monitor = LeakMonitor(redis_client, queue)
        monitor.start()     # arms the first tick
        monitor.status()
        monitor.stop()      # the chain ends at the next tick
    """

    KEY_RUNNING = 'leak_monitor:running'
    KEY_LOCK = 'leak_monitor:lock'
    KEY_LAST = 'leak_monitor:last'
    KEY_HEARTBEAT = 'leak_monitor:heartbeat'

    def __init__(self, redis_client, queue=None, interval_seconds=LEAK_MONITOR_INTERVAL_SECONDS):
        self.redis = redis_client
        self.queue = queue
        self.interval_seconds = interval_seconds

    @property
    def running(self):
        return bool(self.redis.exists(self.KEY_RUNNING))

    @property
    def chain_alive(self):
        """A tick ran or was armed recently. Outlives the scan lock."""
        return bool(self.redis.exists(self.KEY_HEARTBEAT))

    def _beat(self):
        self.redis.set(self.KEY_HEARTBEAT, str(time.time()), ex=self.interval_seconds * 6)

    def start(self):
        if self.running and self.chain_alive:
            logger.info("Leak monitor already running")
            return self.status()
        if self.running:
            logger.warning("Leak monitor marked running but no tick is armed, re-arming")
        self.redis.set(self.KEY_RUNNING, str(time.time()))
        self._beat()
        if self.queue is not None:
            self.queue.enqueue(run_leak_monitor_tick)
        logger.info("Leak monitor started (every %ds)", self.interval_seconds)
        return self.status()

    def stop(self):
        self.redis.delete(self.KEY_RUNNING, self.KEY_HEARTBEAT)
        logger.info("Leak monitor stopped")
        return self.status()

    def status(self):
        last = self.redis.get(self.KEY_LAST)
        return {
            'running': self.running,
            'chain_alive': self.chain_alive,
            'scanning': bool(self.redis.exists(self.KEY_LOCK)),
            'interval_seconds': self.interval_seconds,
            'last_scan': json.loads(last) if last else None,
        }

    def run_once(self, minutes_back=LEAK_SCAN_MINUTES):
        result = scan_for_leaks(minutes_back=minutes_back)
        self.redis.set(self.KEY_LAST, json.dumps({**result, 'finished_at': utcnow().isoformat()}))
        return result

    def _arm_next(self):
        if self.running and self.queue is not None:
            self._beat()
            self.queue.enqueue_in(timedelta(seconds=self.interval_seconds), run_leak_monitor_tick)

    def tick(self):
        """
        One scheduled pass. Ignored once the monitor is stopped. Otherwise
        scans (or skips while a previous scan holds the lock) and always arms
        the next tick, so a skipped pass never ends the chain.
        """
        if not self.running:
            logger.debug("Leak monitor stopped, tick ignored")
            return None
        self._beat()

        if not self.redis.set(self.KEY_LOCK, '1', nx=True, ex=self.interval_seconds * 5):
            logger.info("Leak scan still in progress, skipping tick")
            self._arm_next()
            return {'skipped': True}

        try:
            result = self.run_once()
        except Exception:
            logger.error("Leak monitor scan failed", exc_info=True)
            result = {'error': True}
        finally:
            self.redis.delete(self.KEY_LOCK)

        self._arm_next()
        return result


def run_leak_monitor_tick():
    """RQ entry point for one monitor tick."""
    from leadqueue.extensions import redis_client
    from leadqueue.pipeline.manager import _get_queue

    return LeakMonitor(redis_client, _get_queue()).tick()
