"""
Ouvidoria Dashboard — Persistent Cache (Redis)
───────────────────────────────────────────────
Second tier behind the Data Store for long-lived payloads (districts,
health units, monthly aggregates). Survives process restarts.

Redis is optional: if it cannot be reached every call degrades to a miss /
no-op and the in-memory Data Store carries on alone.
"""

import json
import logging
from typing import Any, Optional

import redis.asyncio as aioredis

log = logging.getLogger("dash.redis")

KEY_PREFIX = "dashboard_cache:"


def key_payload(signature: str) -> str:
    return f"{KEY_PREFIX}{signature}"


class PersistentCache:

    def __init__(self, url: str, client: Optional[aioredis.Redis] = None):
        self.url = url
        self._client = client

    async def get_redis(self) -> Optional[aioredis.Redis]:
        if self._client:
            try:
                await self._client.ping()
                return self._client
            except Exception:
                self._client = None
        if not self.url:
            return None
        try:
            self._client = aioredis.from_url(self.url, decode_responses=True, socket_timeout=2)
            await self._client.ping()
            log.info("Redis connected")
            return self._client
        except Exception as e:
            log.warning(f"Redis unavailable ({e}) - using in-memory cache only")
            self._client = None
            return None

    async def get(self, signature: str) -> Optional[Any]:
        r = await self.get_redis()
        if not r:
            return None
        try:
            raw = await r.get(key_payload(signature))
            return json.loads(raw) if raw else None
        except Exception as e:
            log.warning(f"Redis get failed for {signature}: {e}")
            return None

    async def set(self, signature: str, value: Any, ttl_s: int) -> bool:
        r = await self.get_redis()
        if not r:
            return False
        try:
            await r.setex(key_payload(signature), ttl_s, json.dumps(value, default=str))
            return True
        except Exception as e:
            log.warning(f"Redis set failed for {signature}: {e}")
            return False

    async def delete(self, signature: str):
        r = await self.get_redis()
        if r:
            try:
                await r.delete(key_payload(signature))
            except Exception as e:
                log.warning(f"Redis delete failed for {signature}: {e}")

    async def aclose(self):
        if self._client:
            await self._client.aclose()
            self._client = None
