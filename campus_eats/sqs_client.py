"""
AWS SQS transport for the order event queue, used when SQS_QUEUE_URL is set.
boto3 is blocking: the sync helpers run inside asyncio.to_thread at the call site.
Every helper targets the main queue unless queue_url says otherwise (the DLQ).
"""
import asyncio
import json
from typing import Any

import boto3

from campus_eats.config import settings

_sqs_client: Any = None

EVENT_FIELDS = ("event_id", "order_id", "event_type", "rider_id", "vendor_id", "occurred_at")
DEPTH_ATTRIBUTES = ["ApproximateNumberOfMessages", "ApproximateNumberOfMessagesNotVisible"]


def _get_client():
    global _sqs_client
    if _sqs_client is None:
        _sqs_client = boto3.client("sqs", region_name=settings.aws_region)
    return _sqs_client


async def send_message(body: dict, queue_url: str | None = None) -> None:
    await asyncio.to_thread(
        _get_client().send_message,
        QueueUrl=queue_url or settings.sqs_queue_url,
        MessageBody=json.dumps(body),
    )


def receive_messages(max_number: int = 10, wait_seconds: int = 5, queue_url: str | None = None) -> list[dict]:
    """Long-poll one batch. Each message carries ReceiptHandle, Body and its ApproximateReceiveCount."""
    resp = _get_client().receive_message(
        QueueUrl=queue_url or settings.sqs_queue_url,
        MaxNumberOfMessages=max_number,
        WaitTimeSeconds=wait_seconds,
        AttributeNames=["ApproximateReceiveCount"],
    )
    return resp.get("Messages") or []


def delete_message(receipt_handle: str, queue_url: str | None = None) -> None:
    _get_client().delete_message(
        QueueUrl=queue_url or settings.sqs_queue_url,
        ReceiptHandle=receipt_handle,
    )


def change_message_visibility(receipt_handle: str, visibility_timeout: int) -> None:
    """Hide a failed message for visibility_timeout seconds before SQS redelivers it."""
    _get_client().change_message_visibility(
        QueueUrl=settings.sqs_queue_url,
        ReceiptHandle=receipt_handle,
        VisibilityTimeout=visibility_timeout,
    )


async def get_queue_depth() -> tuple[int, int]:
    """(waiting, in flight) on the main queue, for the /metrics gauges."""
    if not settings.sqs_queue_url:
        return 0, 0
    resp = await asyncio.to_thread(
        _get_client().get_queue_attributes,
        QueueUrl=settings.sqs_queue_url,
        AttributeNames=DEPTH_ATTRIBUTES,
    )
    attrs = resp.get("Attributes") or {}
    waiting, in_flight = (int(attrs.get(name, 0)) for name in DEPTH_ATTRIBUTES)
    return waiting, in_flight


def _replayable(raw: str | None) -> dict | None:
    try:
        data = json.loads(raw or "{}")
    except json.JSONDecodeError:
        return None
    if not all(data.get(k) for k in ("event_id", "order_id", "event_type")):
        return None
    body = {k: data.get(k) for k in EVENT_FIELDS}
    body["attempts"] = 0
    return body


async def replay_dlq_to_main(limit: int = 100) -> int:
    """
    Move up to `limit` order events from the DLQ back onto the main queue.
    Unparseable or incomplete bodies are dropped from the DLQ without replay.
    Returns how many messages were taken off the DLQ.
    """
    if not settings.sqs_dlq_url or not settings.sqs_queue_url:
        return 0
    taken = 0
    while taken < limit:
        batch = await asyncio.to_thread(receive_messages, min(10, limit - taken), 0, settings.sqs_dlq_url)
        if not batch:
            break
        for msg in batch:
            body = _replayable(msg.get("Body"))
            if body is not None:
                await send_message(body)
            await asyncio.to_thread(delete_message, msg.get("ReceiptHandle") or "", settings.sqs_dlq_url)
            taken += 1
    return taken
