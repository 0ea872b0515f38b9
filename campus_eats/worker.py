"""
Aggregates worker: consumes `delivered` / `reviewed` order events and keeps
rider delivery counts and rider/vendor ratings current in Postgres.

Redis backend: BRPOP, exponential backoff on failure, manual DLQ list.
SQS backend: failed messages stay on the queue with a growing visibility
timeout; SQS redrive moves them to the DLQ after max receives.
Worker metrics are served on :9090. SIGTERM/SIGINT drain in-flight events.

Run: python -m campus_eats.worker
"""
import asyncio
import json
import logging
import signal
import sys
import threading
import time
from typing import Coroutine

import redis.asyncio as redis
from prometheus_client import start_http_server

from campus_eats.config import settings
from campus_eats.db import PostgresOrderStore, close_pool, get_pool, init_schema
from campus_eats.metrics import messages_dlq_total, messages_failed_total, messages_processed_total
from campus_eats.queue import ORDER_EVENTS_DLQ_KEY, ORDER_EVENTS_QUEUE_KEY
from campus_eats.sqs_client import change_message_visibility, delete_message, receive_messages
from campus_eats.stats import MalformedEvent, handle_order_event
from campus_eats.store import OrderStore

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)

BRPOP_TIMEOUT = 5
SQS_BATCH_SIZE = 10
SQS_WAIT_SECONDS = 5
SQS_MAX_VISIBILITY = 900
GRACEFUL_SHUTDOWN_WAIT_SEC = 30
WORKER_METRICS_PORT = 9090


async def _retry_or_dead_letter(r: redis.Redis, data: dict, error: Exception, backoff_base: float) -> None:
    attempts = data.get("attempts", 0)
    next_attempts = attempts + 1
    if next_attempts >= settings.worker_max_retries:
        await r.lpush(ORDER_EVENTS_DLQ_KEY, json.dumps({
            **data,
            "attempts": next_attempts,
            "last_error": str(error),
            "failed_at": time.time(),
        }))
        messages_dlq_total.inc()
        logger.warning("Moved event_id=%s to DLQ after %d attempts", data.get("event_id"), next_attempts)
        return

    delay = backoff_base ** attempts
    logger.info(
        "Re-queuing event_id=%s in %ss (attempt %d/%d)",
        data.get("event_id"), delay, next_attempts, settings.worker_max_retries,
    )
    await asyncio.sleep(delay)
    await r.lpush(ORDER_EVENTS_QUEUE_KEY, json.dumps({**data, "attempts": next_attempts}))


async def process_one_redis(
    r: redis.Redis,
    store: OrderStore,
    raw: str,
    sem: asyncio.Semaphore,
    backoff_base: float = 2.0,
) -> None:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("Invalid JSON from queue: %s", e)
        return

    async with sem:
        try:
            await handle_order_event(store, data)
        except MalformedEvent as e:
            logger.warning("Skipping malformed event_id=%s: %s", data.get("event_id"), e)
            return
        except Exception as e:
            messages_failed_total.inc()
            logger.exception("Failed to process event_id=%s (attempt %d): %s",
                             data.get("event_id"), data.get("attempts", 0) + 1, e)
            await _retry_or_dead_letter(r, data, e, backoff_base)
            return
    messages_processed_total.inc()
    logger.info("Processed event_id=%s (%s)", data.get("event_id"), data.get("event_type"))


async def process_one_sqs(
    store: OrderStore,
    body: str,
    receipt_handle: str,
    receive_count: int,
    sem: asyncio.Semaphore,
) -> None:
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        logger.warning("Invalid JSON from SQS, deleting")
        await asyncio.to_thread(delete_message, receipt_handle)
        return

    async with sem:
        try:
            await handle_order_event(store, data)
        except MalformedEvent as e:
            logger.warning("Skipping malformed event_id=%s: %s", data.get("event_id"), e)
        except Exception as e:
            messages_failed_total.inc()
            logger.exception("Failed to process event_id=%s (receive #%d): %s", data.get("event_id"), receive_count, e)
            # leave it on the queue; SQS redelivers after the timeout and redrives to the DLQ at max receives
            delay = min(2 ** receive_count, SQS_MAX_VISIBILITY)
            await asyncio.to_thread(change_message_visibility, receipt_handle, delay)
            return
        else:
            messages_processed_total.inc()
            logger.info("Processed event_id=%s (%s)", data.get("event_id"), data.get("event_type"))
    await asyncio.to_thread(delete_message, receipt_handle)


class _InFlight:
    """Tracks spawned handler tasks so shutdown can wait for them."""

    def __init__(self) -> None:
        self.tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine) -> None:
        task = asyncio.create_task(coro)
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)

    async def drain(self) -> None:
        if not self.tasks:
            return
        logger.info("Graceful shutdown: waiting for %d in-flight task(s) (max %ds) ...",
                    len(self.tasks), GRACEFUL_SHUTDOWN_WAIT_SEC)
        _, pending = await asyncio.wait(self.tasks, timeout=GRACEFUL_SHUTDOWN_WAIT_SEC)
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


async def run_worker_redis(store: OrderStore, shutdown_event: asyncio.Event) -> None:
    sem = asyncio.Semaphore(settings.worker_concurrency)
    inflight = _InFlight()
    r = redis.from_url(settings.redis_url, decode_responses=True)
    logger.info("Backend=Redis. Listening on %s (concurrency=%d, max_retries=%d) ...",
                ORDER_EVENTS_QUEUE_KEY, settings.worker_concurrency, settings.worker_max_retries)
    try:
        while not shutdown_event.is_set():
            result = await r.brpop(ORDER_EVENTS_QUEUE_KEY, timeout=BRPOP_TIMEOUT)
            if result is not None:
                _key, raw = result
                inflight.spawn(process_one_redis(r, store, raw, sem))
    finally:
        await inflight.drain()
        await r.aclose()


async def run_worker_sqs(store: OrderStore, shutdown_event: asyncio.Event) -> None:
    sem = asyncio.Semaphore(settings.worker_concurrency)
    inflight = _InFlight()
    logger.info("Backend=SQS. Queue=%s (concurrency=%d) ...", settings.sqs_queue_url, settings.worker_concurrency)
    try:
        while not shutdown_event.is_set():
            batch = await asyncio.to_thread(receive_messages, SQS_BATCH_SIZE, SQS_WAIT_SECONDS)
            for msg in batch:
                receive_count = int((msg.get("Attributes") or {}).get("ApproximateReceiveCount", 1))
                inflight.spawn(process_one_sqs(
                    store, msg.get("Body") or "{}", msg.get("ReceiptHandle") or "", receive_count, sem,
                ))
    finally:
        await inflight.drain()


async def run_worker() -> None:
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, shutdown_event.set)
        except NotImplementedError:
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(shutdown_event.set))

    pool = await get_pool()
    await init_schema(pool)
    store = PostgresOrderStore(pool)
    try:
        if settings.sqs_queue_url:
            await run_worker_sqs(store, shutdown_event)
        else:
            await run_worker_redis(store, shutdown_event)
    finally:
        await close_pool()
        logger.info("Worker stopped.")


def main() -> None:
    threading.Thread(target=start_http_server, args=(WORKER_METRICS_PORT,), daemon=True).start()
    logger.info("Metrics server listening on port %s", WORKER_METRICS_PORT)
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
