# apps/api/coursegen/services/ephemeral_store.py
from __future__ import annotations

import json
from typing import Any, Optional

import redis

from coursegen.core.errors import TransientIOError


def draft_key(draft_id: str) -> str:
    return f"roadmap:{draft_id}"


class EphemeralStore:
    """TTL-bounded JSON values in Redis (roadmap drafts only)."""

    def __init__(self, client: redis.Redis):
        self.client = client

    def set_with_ttl(self, key: str, value: dict[str, Any], ttl: int) -> None:
        try:
            self.client.setex(key, int(ttl), json.dumps(value, ensure_ascii=False, default=str))
        except redis.RedisError as e:
            raise TransientIOError(f"ephemeral store write failed for {key}: {e}") from e

    def get(self, key: str) -> Optional[dict[str, Any]]:
        try:
            raw = self.client.get(key)
        except redis.RedisError as e:
            raise TransientIOError(f"ephemeral store read failed for {key}: {e}") from e
        if raw is None:
            return None
        return json.loads(raw)
