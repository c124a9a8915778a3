"""
Server-Sent Events (SSE) endpoint for recurring payment notifications.

The stream relays the user's Redis channel (see NotificationPublisher) and first
replays the latest stored event of each type, so a page opened after the daily
reminder run still shows its reminders.
"""
import asyncio
import json
import os
import logging
from typing import AsyncGenerator, Dict

import redis.asyncio as aioredis
from fastapi import APIRouter
from fastapi.responses import StreamingResponse
from app.db_helpers import get_user_id
from app.services.event_publisher import NotificationPublisher

logger = logging.getLogger(__name__)

router = APIRouter()

HEARTBEAT_INTERVAL_SECONDS = 15
POLL_TIMEOUT_SECONDS = 1.0
STORED_EVENT_ORDER = ["patterns_detected", "bill_reminder", "insufficient_funds", "payment_confirmed"]


def _sse(event_type: str, data: str) -> str:
    return f"event: {event_type}\ndata: {data}\n\n"


def _event_type(raw: str) -> str:
    try:
        return json.loads(raw).get("type", "message")
    except json.JSONDecodeError:
        logger.warning(f"[NOTIFICATIONS] Non-JSON payload on notification channel: {raw}")
        return "message"


def _replay(stored: Dict[str, str]):
    for event_type in STORED_EVENT_ORDER:
        if event_type in stored:
            yield _sse(event_type, stored[event_type])


async def notification_generator(user_id: str) -> AsyncGenerator[str, None]:
    """Yield SSE frames for one user until the client disconnects."""
    redis_client = await aioredis.from_url(
        os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        decode_responses=True,
    )
    pubsub = redis_client.pubsub()
    channel = NotificationPublisher.channel(user_id)

    try:
        await pubsub.subscribe(channel)
        logger.info(f"[NOTIFICATIONS] Stream opened for user {user_id}")
        yield _sse("connected", json.dumps({"channel": channel}))

        for frame in _replay(await redis_client.hgetall(NotificationPublisher.state_key(user_id))):
            yield frame

        loop = asyncio.get_event_loop()
        last_heartbeat = loop.time()
        while True:
            try:
                message = await asyncio.wait_for(
                    pubsub.get_message(ignore_subscribe_messages=True),
                    timeout=POLL_TIMEOUT_SECONDS,
                )
            except asyncio.TimeoutError:
                message = None

            if message and message["type"] == "message":
                yield _sse(_event_type(message["data"]), message["data"])

            if loop.time() - last_heartbeat >= HEARTBEAT_INTERVAL_SECONDS:
                last_heartbeat = loop.time()
                yield _sse("heartbeat", json.dumps({"timestamp": last_heartbeat}))

    except asyncio.CancelledError:
        logger.info(f"[NOTIFICATIONS] Stream cancelled for user {user_id}")
        raise
    except Exception as e:
        logger.error(f"[NOTIFICATIONS] Stream error for user {user_id}: {e}")
        yield _sse("error", json.dumps({"error": str(e)}))
    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.close()
        await redis_client.close()
        logger.info(f"[NOTIFICATIONS] Stream closed for user {user_id}")


@router.get("/notifications")
async def stream_notifications():
    """
    Stream recurring payment notifications.

    Event types: connected, bill_reminder, insufficient_funds, payment_confirmed,
    patterns_detected and heartbeat (every 15 seconds).
    """
    user_id = get_user_id()
    frontend_origin = os.getenv("FRONTEND_URL") or os.getenv("APP_URL", "http://localhost:3000")

    return StreamingResponse(
        notification_generator(user_id),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # nginx
            "Access-Control-Allow-Origin": frontend_origin,
            "Access-Control-Allow-Credentials": "true",
        }
    )
