"""Server bootstrap for the device context MCP service.

Builds the context cache, retrieval client and service from config,
registers the tools, runs the cache sweeper for the server's lifetime and
starts the MCP server (stdio transport).
"""

import asyncio
import contextlib
from typing import AsyncIterator

from mcp.server.fastmcp import FastMCP

from clients.retrieval_client import RetrievalClient
from config import (
    CONTEXT_CACHE_CAPACITY,
    CONTEXT_CACHE_SWEEP_INTERVAL,
    CONTEXT_CACHE_TTL,
    CONTEXT_WAIT_TIMEOUT,
    DEFAULT_TOP_K,
    HTTP_VERIFY,
    RETRIEVAL_BASE_URL,
    RETRIEVAL_MAX_CONCURRENCY,
    RETRIEVAL_TIMEOUT,
)
from core.cache import KeyedResultCache
from logging_config import configure_logging
from services.context_service import DeviceContextService

from tools.cache_stats import register as register_cache_stats
from tools.get_device_context import register as register_get_device_context
from tools.invalidate_context import register as register_invalidate_context


def build_service() -> DeviceContextService:
    cache = KeyedResultCache(capacity=CONTEXT_CACHE_CAPACITY, default_ttl=CONTEXT_CACHE_TTL)
    client = RetrievalClient(
        base_url=RETRIEVAL_BASE_URL,
        timeout=RETRIEVAL_TIMEOUT,
        verify=HTTP_VERIFY,
        max_concurrency=RETRIEVAL_MAX_CONCURRENCY,
    )
    return DeviceContextService(
        client=client,
        cache=cache,
        default_top_k=DEFAULT_TOP_K,
        wait_timeout=CONTEXT_WAIT_TIMEOUT,
    )


service = build_service()


@contextlib.asynccontextmanager
async def lifespan(_server: FastMCP) -> AsyncIterator[None]:
    if CONTEXT_CACHE_SWEEP_INTERVAL <= 0:
        yield
        return

    sweeper = asyncio.create_task(service.run_sweeper(CONTEXT_CACHE_SWEEP_INTERVAL))
    try:
        yield
    finally:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper


mcp = FastMCP("device-context-mcp", lifespan=lifespan)


def register_tools(server: FastMCP, svc: DeviceContextService) -> None:
    register_get_device_context(server, service=svc)
    register_invalidate_context(server, service=svc)
    register_cache_stats(server, service=svc)


register_tools(mcp, service)


def main() -> None:
    configure_logging()
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
