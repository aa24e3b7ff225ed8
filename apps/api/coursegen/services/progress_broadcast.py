# apps/api/coursegen/services/progress_broadcast.py
from __future__ import annotations

import json
import logging
from typing import Any, Optional

import redis

logger = logging.getLogger(__name__)


def progress_channel(course_id: Optional[int], session_id: Optional[str]) -> str:
    """course:<id> once a course exists, session:<id> before that."""
    if course_id is not None:
        return f"course:{course_id}"
    if session_id:
        return f"session:{session_id}"
    raise ValueError("either course_id or session_id is required")


class RedisProgressBroadcaster:
    """
    Best-effort real-time push over Redis pub/sub.
    A failed publish is logged and reported as False, never raised.
    """

    def __init__(self, client: redis.Redis):
        self.client = client

    def publish(self, channel: str, event: str, payload: dict[str, Any]) -> bool:
        message = json.dumps({"event": event, "payload": payload}, ensure_ascii=False, default=str)
        try:
            self.client.publish(channel, message)
            return True
        except (redis.RedisError, OSError) as e:
            logger.warning("progress publish to %s failed: %s", channel, e)
            return False
