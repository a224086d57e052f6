"""Best-effort pub/sub broadcast of progression events.

Published only after the transaction commits; a Redis failure is logged and
never affects the result returned to the caller.
"""

from __future__ import annotations

import json
from typing import Any

import structlog

logger = structlog.get_logger()

CHANNEL_TASK_COMPLETED = "pubsub:task_completed"
CHANNEL_TASK_UNCOMPLETED = "pubsub:task_uncompleted"
CHANNEL_LEVEL_UP = "pubsub:level_up"
CHANNEL_BADGE_EARNED = "pubsub:badge_earned"
CHANNEL_QUEST_CLAIMED = "pubsub:quest_claimed"


async def publish_event(redis: object, channel: str, payload: dict[str, Any]) -> bool:
    """Publish one JSON event. Returns False when skipped or failed."""
    if redis is None:
        return False
    try:
        await redis.publish(channel, json.dumps(payload, default=str))  # type: ignore[attr-defined]
    except Exception:
        logger.warning("event_publish_failed", channel=channel, exc_info=True)
        return False
    return True
