# betaflow/core/redis.py
import json
import logging
from typing import Any, Dict

import redis.asyncio as redis
from betaflow.core.config import settings

logger = logging.getLogger(__name__)

redis_client = redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)


def job_channel(job_id: int) -> str:
    return f"import_job:{job_id}"


async def publish_progress(job_id: int, message: Dict[str, Any]) -> None:
    # Progress is best effort; a missing Redis must not fail the import itself
    try:
        await redis_client.publish(job_channel(job_id), json.dumps(message))
    except redis.RedisError as e:
        logger.warning(f"Could not publish progress for job {job_id}: {e}")
