import asyncio
import logging

import redis
from rq import Queue

from imagestore.config import settings
from imagestore.core.container import start, stop
from imagestore.workers.cleanup import run_image_cleanup

log = logging.getLogger("imagestore.jobs")

CLEANUP_QUEUE = "image_cleanup"


def image_cleanup():
    """RQ job: run the retention sweep in a fresh event loop."""
    async def run():
        services = await start(settings)
        try:
            result = await run_image_cleanup(services)
        finally:
            await stop(services)
        return result.model_dump()
    return asyncio.run(run())


def enqueue_image_cleanup(redis_url: str = None):
    conn = redis.from_url(redis_url or settings.REDIS_URL)
    q = Queue(CLEANUP_QUEUE, connection=conn)
    job = q.enqueue(image_cleanup, job_timeout=3600)
    log.info("Enqueued image cleanup job %s", job.get_id())
    return job.get_id()
