"""
Job Queue Management
====================

Redis Queue (RQ) integration for durable analysis jobs.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from redis import Redis
from redis.exceptions import RedisError
from rq import Queue

from ..config import get_settings

logger = logging.getLogger(__name__)


class QueueUnavailable(Exception):
    """Raised when a job cannot be handed to Redis."""


def get_redis_connection(redis_url: Optional[str] = None) -> Redis:
    """Get Redis connection"""
    return Redis.from_url(redis_url or get_settings().redis_url)


def get_queue(queue_name: Optional[str] = None, connection: Optional[Redis] = None) -> Queue:
    """Get RQ queue by name"""
    return Queue(
        queue_name or get_settings().analysis_queue_name,
        connection=connection or get_redis_connection(),
    )


def enqueue_job(
    func: Callable,
    *args,
    queue: Optional[Queue] = None,
    job_id: Optional[str] = None,
    timeout: int = 600,
    meta: Optional[Dict[str, Any]] = None,
    **kwargs
) -> Dict[str, Any]:
    """
    Enqueue a job. RQ retries are never requested.

    Args:
        func: Function to execute
        *args: Positional arguments for function
        queue: Queue to use (configured analysis queue by default)
        job_id: Optional custom job ID
        timeout: Job timeout in seconds
        meta: Custom metadata for job
        **kwargs: Keyword arguments for function

    Returns:
        Dict with job_id and status

    Raises:
        QueueUnavailable: If Redis cannot accept the job
    """
    try:
        queue = queue or get_queue()
        job = queue.enqueue(
            func,
            *args,
            job_id=job_id,
            job_timeout=timeout,
            meta=meta or {},
            **kwargs
        )
    except RedisError as e:
        raise QueueUnavailable(f"RQ enqueue failed: {e}") from e

    return {
        "job_id": job.id,
        "status": job.get_status(),
        "queue": queue.name,
        "enqueued_at": datetime.utcnow().isoformat()
    }
