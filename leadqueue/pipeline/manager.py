"""
Job Manager — launches and records batch jobs.

Every job (discovery, aging, sweeps, backfills) is a plain function in
JOB_REGISTRY returning a JobResult. launch_job() persists a JobRun and hands
it to RQ; run_job() executes it inside the worker and stores the outcome.
Jobs never raise past run_job: failures become a failed JobRun plus a Slack
alert.
"""
import logging
import time
import uuid
from datetime import date
from typing import Callable, Dict, Optional

from leadqueue.database import session_scope, utcnow
from leadqueue.models.enums import Category
from leadqueue.models.job_run import JobRun
from leadqueue.pipeline.aging import apply_daily_aging
from leadqueue.pipeline.base import JobResult
from leadqueue.pipeline.discovery import discover_new_leads, detect_conversions, run_discovery_cycle
from leadqueue.services.agents import expire_stale_sessions
from leadqueue.services.conversions import backfill_attribution
from leadqueue.services.dispatch import sweep_expired_leases
from leadqueue.services.inbound_queue import process_inbound_queue, cleanup_old_entries
from leadqueue.services.leak_detector import scan_for_leaks
from leadqueue.services.notifications import notify_job_failed
from leadqueue.services.queue_projection import check_queue_levels

logger = logging.getLogger('pipeline.manager')


# ── Lazy RQ queue (avoids import-time Redis connection in tests) ──────────────

_queue = None

def _get_queue():
    global _queue
    if _queue is None:
        from leadqueue.extensions import redis_client
        from rq import Queue
        _queue = Queue(connection=redis_client)
    return _queue


# ── Job registry ──────────────────────────────────────────────────────────────

def _as_result(stats: dict, processed_key: Optional[str] = None) -> JobResult:
    """Wrap a service's stats dict in the uniform job shape."""
    result = JobResult(stats=dict(stats))
    if processed_key:
        result.processed = int(stats.get(processed_key) or 0)
    return result


def _discover_leads(category, restart=False):
    return discover_new_leads(Category(category), restart=restart)


def _daily_aging(today=None):
    return apply_daily_aging(date.fromisoformat(today) if today else None)


def _lease_sweep():
    released = sweep_expired_leases()
    return JobResult(processed=sum(released.values()), stats=released)


def _leak_scan(minutes_back=None):
    scan = scan_for_leaks(minutes_back=int(minutes_back)) if minutes_back else scan_for_leaks()
    result = _as_result(scan, 'potential_leaks')
    result.failed = scan['unrecovered']
    return result


JOB_REGISTRY: Dict[str, Callable[..., JobResult]] = {
    'discovery_cycle': lambda: run_discovery_cycle(),
    'discover_leads': _discover_leads,
    'detect_conversions': lambda restart=False: detect_conversions(restart=restart),
    'daily_aging': _daily_aging,
    'attribution_backfill': lambda hours_back=6: backfill_attribution(hours_back=int(hours_back)),
    'lease_sweep': _lease_sweep,
    'inbound_processor': lambda: _as_result(process_inbound_queue(), 'checked'),
    'inbound_cleanup': lambda: JobResult(processed=cleanup_old_entries()),
    'agent_cleanup': lambda: JobResult(processed=expire_stale_sessions()),
    'queue_levels': lambda: _as_result(check_queue_levels()),
    'leak_scan': _leak_scan,
}


def _final_status(result: JobResult) -> str:
    if result.failed and not result.processed:
        return 'failed'
    if result.failed or result.can_resume:
        return 'partial'
    return 'completed'


# ── Public API ────────────────────────────────────────────────────────────────

def create_job_run(job: str, params: Optional[dict] = None) -> JobRun:
    if job not in JOB_REGISTRY:
        raise ValueError(f"Unknown job: {job}. Available: {sorted(JOB_REGISTRY)}")
    with session_scope() as s:
        run = JobRun(id=str(uuid.uuid4()), job=job, status='queued', params=params or {})
        s.add(run)
    return run


def launch_job(job: str, params: Optional[dict] = None) -> JobRun:
    """Persist a JobRun and enqueue it on RQ."""
    run = create_job_run(job, params)
    _get_queue().enqueue(run_job, run.id, job_timeout=900)
    logger.info("Job %s (%s) queued", run.id[:8], job, extra={'job_id': run.id, 'job_name': job})
    return run


def run_job(job_id: str) -> Optional[dict]:
    """Execute a queued JobRun. Called by the RQ worker."""
    with session_scope() as s:
        run = s.get(JobRun, job_id)
        if run is None:
            logger.error("Job %s not found", job_id)
            return None
        run.status = 'running'
        run.started_at = utcnow()
        job, params = run.job, dict(run.params or {})

    log_extra = {'job_id': job_id, 'job_name': job}
    logger.info("Starting job %s (%s)", job_id[:8], job, extra=log_extra)
    started = time.monotonic()

    try:
        result = JOB_REGISTRY[job](**params)
        status = _final_status(result)
    except Exception as e:
        logger.error("Job %s (%s) FAILED: %s", job_id[:8], job, e, exc_info=True, extra=log_extra)
        result = JobResult(failed=1, errors=[f"{type(e).__name__}: {e}"])
        status = 'failed'

    with session_scope() as s:
        run = s.get(JobRun, job_id)
        run.status = status
        run.processed = result.processed
        run.failed = result.failed
        run.skipped = result.skipped
        run.stats = result.stats
        run.errors = [{'message': err} for err in result.errors[-20:]]
        run.can_resume = result.can_resume
        run.next_offset = str(result.next_offset) if result.next_offset is not None else None
        run.duration_seconds = round(time.monotonic() - started, 3)
        run.finished_at = utcnow()
        summary = run.to_dict()

    logger.info("Job %s (%s) %s — processed=%d failed=%d", job_id[:8], job, status,
                result.processed, result.failed, extra=log_extra)
    if status == 'failed':
        notify_job_failed(run)
    return summary


def execute_job(job: str, params: Optional[dict] = None) -> Optional[dict]:
    """Create and run a job inline (scheduled tasks already run inside a worker)."""
    run = create_job_run(job, params)
    return run_job(run.id)


def get_job_status(job_id: str) -> Optional[dict]:
    with session_scope() as s:
        run = s.get(JobRun, job_id)
        return run.to_dict() if run else None


def list_recent_jobs(limit: int = 50, job: Optional[str] = None) -> list:
    with session_scope() as s:
        q = s.query(JobRun)
        if job:
            q = q.filter(JobRun.job == job)
        return [r.to_dict() for r in q.order_by(JobRun.created_at.desc()).limit(limit).all()]
