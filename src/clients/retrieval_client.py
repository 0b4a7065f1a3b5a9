"""Async client for the retrieval backend's context search endpoint.

Sends ``POST {base_url}/search`` with the device id, query and result count
and parses the ranked passages out of the JSON response. Caching lives in
the service layer, not here: every call goes to the network.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, List, Mapping

import httpx

from core.errors import ExternalServiceError, NotFoundError, ValidationError
from core.models import ContextPassage

logger = logging.getLogger(__name__)


class RetrievalClient:
    SEARCH_PATH = "/search"

    def __init__(
        self,
        *,
        base_url: str,
        timeout: float = 20.0,
        verify: bool = False,
        max_concurrency: int = 5,
    ) -> None:
        self._base_url = (base_url or "").rstrip("/")
        self._timeout = float(timeout)
        self._verify = bool(verify)
        self._sem = asyncio.Semaphore(max(1, int(max_concurrency)))

    async def search(self, *, device_id: str, query: str, top_k: int) -> List[ContextPassage]:
        """Return up to ``top_k`` passages relevant to ``query`` for ``device_id``."""
        device = (device_id or "").strip()
        text = (query or "").strip()
        if not device:
            raise ValidationError("Missing device_id")
        if not text:
            raise ValidationError("Query is empty")
        if int(top_k) <= 0:
            raise ValidationError("top_k must be positive")

        payload = {"device_id": device, "query": text, "top_k": int(top_k)}
        url = f"{self._base_url}{self.SEARCH_PATH}"
        started = time.monotonic()

        try:
            # Limit concurrent requests across tasks
            async with self._sem:
                async with httpx.AsyncClient(timeout=self._timeout, verify=self._verify) as c:
                    r = await c.post(url, json=payload)
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"Failed to call retrieval backend: {e}") from e

        logger.debug(
            "retrieval search finished",
            extra={
                "device_id": device,
                "status_code": r.status_code,
                "duration_ms": round((time.monotonic() - started) * 1000, 1),
            },
        )

        if r.status_code == 404:
            raise NotFoundError(f"Unknown device: {device}")

        try:
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(f"Retrieval backend returned an error: {e}") from e

        try:
            body = r.json()
        except ValueError as e:
            raise ExternalServiceError("Retrieval backend returned invalid JSON") from e

        return self._parse_results(body)[: int(top_k)]

    def _parse_results(self, body: Any) -> List[ContextPassage]:
        results = body.get("results") if isinstance(body, Mapping) else None
        if not isinstance(results, list):
            raise ExternalServiceError("Retrieval response is missing a 'results' list")

        out: List[ContextPassage] = []
        for item in results:
            if not isinstance(item, Mapping) or not isinstance(item.get("text"), str):
                raise ExternalServiceError(f"Malformed retrieval result: {item!r}")
            try:
                score = float(item.get("score", 0.0))
            except (TypeError, ValueError) as e:
                raise ExternalServiceError(f"Malformed retrieval score: {item.get('score')!r}") from e
            source = item.get("source")
            out.append(
                ContextPassage(
                    text=item["text"],
                    score=score,
                    source=source if isinstance(source, str) else None,
                )
            )
        return out
