"""MCP tools that drop cached device context.

Registers 'invalidate_device_context' (one query, or every query for a
device) and 'invalidate_all_context' (wholesale reload).
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP

from core.errors import ValidationError
from services.context_service import DeviceContextService


def register(mcp: FastMCP, *, service: DeviceContextService) -> None:
    @mcp.tool(name="invalidate_device_context")
    async def invalidate_device_context(
        device_id: str,
        query: str = "",
        top_k: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Drop cached context for a device.

        With a query, only that query's entry is dropped (top_k defaults to
        the configured value). Without one, every cached query for the device
        is dropped, e.g. after the device was re-provisioned.
        """
        if not device_id or not device_id.strip():
            raise ValidationError("Missing device_id")

        if query and query.strip():
            service.invalidate(device_id=device_id, query=query, top_k=top_k)
            return {"device_id": device_id.strip(), "scope": "query"}

        removed = service.invalidate_device(device_id)
        return {"device_id": device_id.strip(), "scope": "device", "removed": removed}

    @mcp.tool(name="invalidate_all_context")
    async def invalidate_all_context() -> Dict[str, Any]:
        """Drop every cached context entry."""
        service.invalidate_all()
        return {"scope": "all"}
