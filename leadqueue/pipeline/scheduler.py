"""
Periodic scheduling on top of RQ.

Each task in schedule.yaml runs as a self-rescheduling chain: the worker
runs the job, then enqueues the next run with enqueue_in(). A Redis NX marker
per task keeps a second worker from arming a duplicate chain; the marker
outlives a few intervals so a dead chain is re-armed on the next start-up.

The schedule is read from schedule.yaml with an in-memory cache and a
hardcoded fallback if the file is missing.
"""
import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional

import yaml
from rq import Retry, get_current_job

from leadqueue.errors import JobFailedError
from leadqueue.pipeline.manager import JOB_REGISTRY, execute_job, _get_queue

logger = logging.getLogger('pipeline.scheduler')

MARKER_PREFIX = 'schedule:armed'


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 1
    backoff_seconds: List[int] = field(default_factory=list)

    def to_rq(self) -> Optional[Retry]:
        """rq.Retry for this policy; None when the job should not be retried."""
        if self.max_attempts <= 1:
            return None
        return Retry(max=self.max_attempts - 1, interval=list(self.backoff_seconds) or 0)


@dataclass(frozen=True)
class ScheduledTask:
    name: str
    job: str
    interval_seconds: int
    params: Dict = field(default_factory=dict)
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    @property
    def marker_key(self):
        return f'{MARKER_PREFIX}:{self.name}'

    @property
    def marker_ttl(self):
        return self.interval_seconds * 3


_schedule_config = None


def _default_config():
    """Hardcoded fallback if YAML is missing."""
    return {
        'version': 'default',
        'tasks': {
            'discovery_cycle': {'job': 'discovery_cycle', 'interval_seconds': 3600,
                                'retry': {'max_attempts': 2, 'backoff_seconds': [60, 300]}},
            'daily_aging': {'job': 'daily_aging', 'interval_seconds': 3600},
            'attribution_backfill': {'job': 'attribution_backfill', 'interval_seconds': 3600,
                                     'params': {'hours_back': 6}},
            'lease_sweep': {'job': 'lease_sweep', 'interval_seconds': 60},
            'inbound_processor': {'job': 'inbound_processor', 'interval_seconds': 30},
            'inbound_cleanup': {'job': 'inbound_cleanup', 'interval_seconds': 120},
            'agent_cleanup': {'job': 'agent_cleanup', 'interval_seconds': 60},
            'queue_levels': {'job': 'queue_levels', 'interval_seconds': 300},
        },
    }


def load_schedule_config() -> dict:
    """Load schedule config from YAML, with in-memory cache and hardcoded fallback."""
    global _schedule_config
    if _schedule_config is not None:
        return _schedule_config

    config_path = os.path.join(os.path.dirname(__file__), 'schedule.yaml')
    try:
        with open(config_path, 'r') as f:
            _schedule_config = yaml.safe_load(f)
        logger.info("Schedule loaded from YAML (version=%s)", _schedule_config.get('version', '?'))
    except Exception as e:
        logger.warning("Schedule YAML not found (%s), using defaults", e)
        _schedule_config = _default_config()

    return _schedule_config


def get_tasks(config: Optional[dict] = None) -> Dict[str, ScheduledTask]:
    """Parse the schedule, dropping tasks that name an unknown job."""
    config = config or load_schedule_config()
    tasks = {}
    for name, spec in (config.get('tasks') or {}).items():
        job = spec.get('job', name)
        if job not in JOB_REGISTRY:
            logger.warning("Scheduled task '%s' names unknown job '%s', skipping", name, job)
            continue
        retry = spec.get('retry') or {}
        tasks[name] = ScheduledTask(
            name=name,
            job=job,
            interval_seconds=int(spec['interval_seconds']),
            params=dict(spec.get('params') or {}),
            retry=RetryPolicy(
                max_attempts=int(retry.get('max_attempts', 1)),
                backoff_seconds=list(retry.get('backoff_seconds') or []),
            ),
        )
    return tasks


def schedule_all(queue, redis_client=None) -> List[str]:
    """Arm every task chain not already armed. Returns the names armed now."""
    redis_client = redis_client or queue.connection
    armed = []
    for task in get_tasks().values():
        if not redis_client.set(task.marker_key, '1', nx=True, ex=task.marker_ttl):
            logger.debug("Task '%s' already armed", task.name)
            continue
        queue.enqueue(run_scheduled_task, task.name, retry=task.retry.to_rq())
        armed.append(task.name)
    if armed:
        logger.info("Armed %d scheduled task(s): %s", len(armed), ', '.join(armed))
    return armed


def run_scheduled_task(name: str, queue=None, redis_client=None):
    """RQ entry point: run one task, then enqueue its next run."""
    task = get_tasks().get(name)
    if task is None:
        logger.error("Scheduled task '%s' no longer exists, chain ends", name)
        return None

    if queue is None:
        queue = _get_queue()
    redis_client = redis_client or queue.connection

    try:
        summary = execute_job(task.job, task.params)
        # run_job records failures instead of raising; surface them to RQ
        if summary is not None and summary.get('status') == 'failed':
            raise JobFailedError(task.job, summary.get('errors'))
    except Exception:
        # RQ re-runs this job while retries remain; only the last attempt re-arms
        current = get_current_job()
        if current is None or not current.retries_left:
            _arm_next(task, queue, redis_client)
        raise
    _arm_next(task, queue, redis_client)
    return summary


def _arm_next(task: ScheduledTask, queue, redis_client):
    redis_client.set(task.marker_key, '1', ex=task.marker_ttl)
    queue.enqueue_in(timedelta(seconds=task.interval_seconds), run_scheduled_task, task.name,
                     retry=task.retry.to_rq())
