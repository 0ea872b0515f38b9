import logging

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from campus_eats.config import settings
from campus_eats.queue import replay_redis_dlq
from campus_eats.sqs_client import replay_dlq_to_main

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/dlq/replay")
async def dlq_replay(limit: int = Query(default=100, ge=1, le=1000)) -> JSONResponse:
    """
    Put dead-lettered order events (failed rider/vendor aggregate updates) back
    on the worker queue. Uses the SQS DLQ when SQS is configured, else the Redis DLQ list.
    """
    backend = "sqs" if settings.sqs_queue_url else "redis"
    if backend == "sqs":
        replayed = await replay_dlq_to_main(limit=limit)
    else:
        replayed = await replay_redis_dlq(limit=limit)
    logger.info("Replayed %d order event(s) from %s DLQ", replayed, backend)
    return JSONResponse(content={"status": "ok", "backend": backend, "replayed": replayed})
