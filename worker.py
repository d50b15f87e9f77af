"""
RQ worker entry point — runs batch jobs and the recurring schedule.

Arms every scheduled task (a no-op for tasks already armed by another
worker), optionally starts the leak monitor, then works the default queue.
"""
from rq import Worker

from leadqueue.config import LEAK_MONITOR_AUTOSTART
from leadqueue.extensions import redis_client
from leadqueue.logging_config import configure_logging
from leadqueue.pipeline.manager import _get_queue
from leadqueue.pipeline.scheduler import schedule_all
from leadqueue.services.leak_detector import LeakMonitor


def main():
    configure_logging()
    queue = _get_queue()
    schedule_all(queue, redis_client)
    if LEAK_MONITOR_AUTOSTART:
        LeakMonitor(redis_client, queue).start()
    Worker([queue], connection=redis_client).work(with_scheduler=True)


if __name__ == '__main__':
    main()
