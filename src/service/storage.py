from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any

try:
    import redis.asyncio as redis
except ModuleNotFoundError:  # pragma: no cover
    redis = None

logger = logging.getLogger(__name__)


class AnalysisCache:
    """
    TTL cache for serialized market analyses.

    Uses Redis when it answers a ping at connect time and falls back to an
    in-process dictionary with per-key expiry otherwise.
    """

    def __init__(self, redis_url: str, namespace: str = "market_value") -> None:
        self.redis_url = redis_url
        self.namespace = namespace
        self._client: Any = None
        self._mem: dict[str, str] = {}
        self._expiry: dict[str, float] = {}

    def _build_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    @property
    def backend(self) -> str:
        return "redis" if self._client is not None else "memory"

    async def connect(self) -> None:
        if redis is None:
            return
        self._client = redis.from_url(self.redis_url, decode_responses=True)
        try:
            await asyncio.wait_for(self._client.ping(), timeout=0.75)
        except Exception as exc:
            logger.warning("Redis unavailable at %s, using in-memory cache: %s", self.redis_url, exc)
            self._client = None

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(await asyncio.wait_for(self._client.ping(), timeout=0.75))
        except Exception:
            return False

    def _mem_get(self, full_key: str) -> str | None:
        if full_key in self._expiry and time.monotonic() > self._expiry[full_key]:
            self._mem.pop(full_key, None)
            self._expiry.pop(full_key, None)
            return None
        return self._mem.get(full_key)

    async def get_json(self, key: str) -> dict[str, Any] | None:
        full_key = self._build_key(key)
        if self._client is not None:
            try:
                raw = await self._client.get(full_key)
                return None if raw is None else json.loads(raw)
            except Exception as exc:
                logger.warning("Cache read failed for %s: %s", full_key, exc)
                return None
        raw = self._mem_get(full_key)
        return None if raw is None else json.loads(raw)

    async def set_json(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        full_key = self._build_key(key)
        payload = json.dumps(value)
        if self._client is not None:
            try:
                await self._client.set(full_key, payload, ex=ttl_seconds)
                return
            except Exception as exc:
                logger.warning("Cache write failed for %s, keeping value in memory: %s", full_key, exc)
        self._mem[full_key] = payload
        self._expiry[full_key] = time.monotonic() + ttl_seconds

    async def delete_prefix(self, prefix: str) -> int:
        full_prefix = self._build_key(prefix)
        removed = 0
        if self._client is not None:
            try:
                async for key in self._client.scan_iter(match=f"{full_prefix}*"):
                    removed += await self._client.delete(key)
            except Exception as exc:
                logger.warning("Cache invalidation failed for %s: %s", full_prefix, exc)
        for key in [k for k in self._mem if k.startswith(full_prefix)]:
            self._mem.pop(key, None)
            self._expiry.pop(key, None)
            removed += 1
        return removed
