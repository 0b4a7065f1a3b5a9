"""Device context service: cached retrieval of context per device and query.

Wires a RetrievalClient behind a KeyedResultCache keyed by ContextKey, so
repeated or concurrent requests for the same device query hit the backend
once per TTL window.
"""

from __future__ import annotations

import logging
from typing import Optional

from clients.retrieval_client import RetrievalClient
from core.cache import CacheStats, KeyedResultCache
from core.errors import ValidationError
from core.models import ContextKey, DeviceContext

logger = logging.getLogger(__name__)


class DeviceContextService:
    def __init__(
        self,
        *,
        client: RetrievalClient,
        cache: KeyedResultCache[DeviceContext],
        default_top_k: int = 5,
        wait_timeout: Optional[float] = None,
    ) -> None:
        self._client = client
        self._cache = cache
        self._default_top_k = max(1, int(default_top_k))
        # Non-positive means followers wait for the shared computation indefinitely
        self._wait_timeout = wait_timeout if wait_timeout and wait_timeout > 0 else None

    async def get_context(
        self,
        *,
        device_id: str,
        query: str,
        top_k: Optional[int] = None,
        ttl: Optional[float] = None,
    ) -> DeviceContext:
        key = self._key(device_id, query, top_k)

        async def fetch() -> DeviceContext:
            try:
                passages = await self._client.search(
                    device_id=key.device_id,
                    query=key.query,
                    top_k=key.top_k,
                )
            except Exception:
                logger.warning("context retrieval failed", extra={"device_id": key.device_id}, exc_info=True)
                raise
            return DeviceContext(device_id=key.device_id, query=key.query, passages=tuple(passages))

        return await self._cache.get_or_compute(key, fetch, ttl, timeout=self._wait_timeout)

    def invalidate(self, *, device_id: str, query: str, top_k: Optional[int] = None) -> None:
        self._cache.invalidate(self._key(device_id, query, top_k))

    def invalidate_device(self, device_id: str) -> int:
        """Drop every cached query for a device, e.g. after re-provisioning."""
        device = self._clean_device_id(device_id)
        removed = self._cache.invalidate_where(
            lambda k: isinstance(k, ContextKey) and k.device_id == device
        )
        logger.info("device context invalidated", extra={"device_id": device, "removed": removed})
        return removed

    def invalidate_all(self) -> None:
        self._cache.invalidate_all()
        logger.info("all device context invalidated")

    def stats(self) -> CacheStats:
        return self._cache.stats()

    async def run_sweeper(self, interval: float) -> None:
        await self._cache.run_sweeper(interval)

    # --- input normalization ---

    def _key(self, device_id: str, query: str, top_k: Optional[int]) -> ContextKey:
        text = (query or "").strip()
        if not text:
            raise ValidationError("Query is empty")

        k = self._default_top_k if top_k is None else int(top_k)
        if k <= 0:
            raise ValidationError("top_k must be positive")

        return ContextKey(device_id=self._clean_device_id(device_id), query=text, top_k=k)

    def _clean_device_id(self, device_id: str) -> str:
        device = (device_id or "").strip()
        if not device:
            raise ValidationError("Missing device_id")
        return device
