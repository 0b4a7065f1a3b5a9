import asyncio

import pytest

from core.cache import MISS, KeyedResultCache
from core.errors import ExternalServiceError, ValidationError
from core.models import ContextKey, ContextPassage, DeviceContext
from services.context_service import DeviceContextService


class FakeClient:
    def __init__(self, exc=None):
        self.exc = exc
        self.calls = []
        self.release = asyncio.Event()
        self.release.set()

    async def search(self, *, device_id: str, query: str, top_k: int):
        self.calls.append((device_id, query, top_k))
        await self.release.wait()
        if self.exc is not None:
            raise self.exc
        return [ContextPassage(text=f"{device_id}:{query}", score=1.0)]


def _service(client, clock, **kwargs):
    cache = KeyedResultCache(capacity=16, default_ttl=60.0, clock=clock)
    return DeviceContextService(client=client, cache=cache, default_top_k=3, **kwargs), cache


@pytest.mark.asyncio
async def test_get_context_fetches_once_per_key(clock):
    client = FakeClient()
    svc, cache = _service(client, clock)

    first = await svc.get_context(device_id=" dev-1 ", query=" temperature drift ")
    second = await svc.get_context(device_id="dev-1", query="temperature drift", top_k=3)

    assert first is second
    assert first == DeviceContext(
        device_id="dev-1",
        query="temperature drift",
        passages=(ContextPassage(text="dev-1:temperature drift", score=1.0),),
    )
    assert client.calls == [("dev-1", "temperature drift", 3)]
    assert cache.get(ContextKey("dev-1", "temperature drift", 3)) is first


@pytest.mark.asyncio
async def test_get_context_honors_ttl_override(clock):
    client = FakeClient()
    svc, _ = _service(client, clock)

    await svc.get_context(device_id="d", query="q", ttl=5)
    clock.advance(5.0)
    await svc.get_context(device_id="d", query="q")

    assert len(client.calls) == 2


@pytest.mark.asyncio
async def test_concurrent_requests_share_one_retrieval(clock):
    client = FakeClient()
    client.release.clear()
    svc, _ = _service(client, clock)

    tasks = [asyncio.create_task(svc.get_context(device_id="d", query="q")) for _ in range(5)]
    await asyncio.sleep(0)
    client.release.set()
    results = await asyncio.gather(*tasks)

    assert len(client.calls) == 1
    assert all(r is results[0] for r in results)


@pytest.mark.asyncio
async def test_retrieval_failure_propagates_and_is_not_cached(clock):
    client = FakeClient(exc=ExternalServiceError("backend down"))
    svc, _ = _service(client, clock)

    with pytest.raises(ExternalServiceError):
        await svc.get_context(device_id="d", query="q")

    client.exc = None
    ctx = await svc.get_context(device_id="d", query="q")

    assert ctx.passages
    assert len(client.calls) == 2


@pytest.mark.asyncio
async def test_wait_timeout_applies_to_followers(clock):
    client = FakeClient()
    client.release.clear()
    svc, _ = _service(client, clock, wait_timeout=0.01)

    leader = asyncio.create_task(svc.get_context(device_id="d", query="q"))
    await asyncio.sleep(0)

    with pytest.raises(asyncio.TimeoutError):
        await svc.get_context(device_id="d", query="q")

    client.release.set()
    assert (await leader).device_id == "d"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "device_id, query, top_k",
    [("", "q", None), ("d", "", None), ("d", "q", 0), ("d", "q", -2)],
)
async def test_get_context_validates_inputs(clock, device_id, query, top_k):
    client = FakeClient()
    svc, _ = _service(client, clock)

    with pytest.raises(ValidationError):
        await svc.get_context(device_id=device_id, query=query, top_k=top_k)
    assert client.calls == []


@pytest.mark.asyncio
async def test_invalidate_single_query(clock):
    client = FakeClient()
    svc, cache = _service(client, clock)
    await svc.get_context(device_id="d", query="q")
    await svc.get_context(device_id="d", query="other")

    svc.invalidate(device_id="d", query="q")

    assert cache.get(ContextKey("d", "q", 3)) is MISS
    assert cache.get(ContextKey("d", "other", 3)) is not MISS


@pytest.mark.asyncio
async def test_invalidate_device_drops_all_its_queries(clock):
    client = FakeClient()
    svc, cache = _service(client, clock)
    await svc.get_context(device_id="d1", query="a")
    await svc.get_context(device_id="d1", query="b", top_k=1)
    await svc.get_context(device_id="d2", query="a")

    assert svc.invalidate_device(" d1 ") == 2

    assert cache.size() == 1
    assert cache.get(ContextKey("d2", "a", 3)) is not MISS


@pytest.mark.asyncio
async def test_invalidate_all_and_stats(clock):
    client = FakeClient()
    svc, _ = _service(client, clock)
    await svc.get_context(device_id="d", query="q")
    await svc.get_context(device_id="d", query="q")

    s = svc.stats()
    assert (s.hits, s.misses, s.size) == (1, 1, 1)

    svc.invalidate_all()
    assert svc.stats().size == 0
