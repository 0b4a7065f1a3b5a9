from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict

from mcp.server.fastmcp import FastMCP

from services.context_service import DeviceContextService


def register(mcp: FastMCP, *, service: DeviceContextService) -> None:
    @mcp.tool(name="context_cache_stats")
    async def context_cache_stats() -> Dict[str, Any]:
        """Return hit/miss/eviction counters and current size of the context cache."""
        return asdict(service.stats())
