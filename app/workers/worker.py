"""
Background worker using RQ (Redis Queue).

Run with `python -m app.workers.worker`; pass `--schedule` to also register
the recurring unread-message reminder job.
"""
import sys

from redis import Redis
from rq import Worker, Queue

from app.core.config import settings
from app.core.logging import setup_logging, get_logger

setup_logging()
logger = get_logger(__name__)


def run_worker(with_scheduler: bool = False):
    """Start the RQ worker."""
    redis_conn = Redis.from_url(settings.REDIS_URL)

    if with_scheduler:
        from app.workers.jobs import setup_scheduled_jobs
        setup_scheduled_jobs()

    worker = Worker(
        queues=[
            Queue("high", connection=redis_conn),
            Queue("default", connection=redis_conn),
            Queue("low", connection=redis_conn),
        ],
        connection=redis_conn,
        name="shub-worker",
    )
    logger.info("Starting S-Hub worker...")
    worker.work()


if __name__ == "__main__":
    run_worker(with_scheduler="--schedule" in sys.argv[1:])
