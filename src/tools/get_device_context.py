"""MCP tool that returns retrieval context for a device query.

Registers 'get_device_context', which validates inputs and delegates to the
DeviceContextService so repeated requests are served from the cache.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP

from config import DEFAULT_TOP_K
from core.errors import ValidationError
from services.context_service import DeviceContextService


def register(mcp: FastMCP, *, service: DeviceContextService) -> None:
    @mcp.tool(name="get_device_context")
    async def get_device_context(
        device_id: str,
        query: str,
        top_k: int = DEFAULT_TOP_K,
        ttl_seconds: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Retrieve ranked context passages for a device and a query.

        Parameters:
          - device_id: device identifier (required).
          - query: free-text question about the device (required).
          - top_k: number of passages to return (default from config).
          - ttl_seconds: cache lifetime for a freshly fetched result;
            defaults to the server's configured TTL.

        Returns:
          {"device_id", "query", "passages": [{"text", "score", "source"}]}

        Raises:
          ValidationError for missing/invalid inputs, NotFoundError for an
          unknown device, ExternalServiceError when the backend fails.
        """
        if not device_id or not device_id.strip():
            raise ValidationError("Missing device_id")

        if not query or not query.strip():
            raise ValidationError("Query is empty")

        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValidationError("ttl_seconds must be positive")

        ctx = await service.get_context(device_id=device_id, query=query, top_k=top_k, ttl=ttl_seconds)
        return ctx.as_dict()
