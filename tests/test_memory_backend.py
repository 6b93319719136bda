import asyncio
import pytest
import pytest_asyncio

from streamgroup.connectors.memory import MemoryBackend


class FakeClock:
    def __init__(self):
        self.now = 0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def backend(clock):
    backend = MemoryBackend("s", clock=clock)
    await backend.connect()
    await backend.ensure_group_exists("g")
    return backend


@pytest.mark.asyncio
async def test_ids_strictly_increase(backend):
    ids = [await backend.add_event({"n": i}) for i in range(5)]
    parsed = [tuple(int(p) for p in i.split("-")) for i in ids]
    assert parsed == sorted(parsed)
    assert len(set(ids)) == 5


@pytest.mark.asyncio
async def test_pull_delivers_each_entry_once(backend):
    for i in range(3):
        await backend.add_event({"n": str(i)})

    first = await backend.pull("g", "c1", 2)
    second = await backend.pull("g", "c2", 10)
    third = await backend.pull("g", "c1", 10)

    assert [r.fields["n"] for r in first] == ["0", "1"]
    assert [r.fields["n"] for r in second] == ["2"]
    assert third == []
    assert all(not r.reclaimed for r in first + second)


@pytest.mark.asyncio
async def test_pending_tracks_owner_and_idle(backend, clock):
    await backend.add_event({"n": "0"})
    await backend.pull("g", "c1", 10)
    clock.now = 750

    [entry] = await backend.list_pending("g", 10)
    assert entry.consumer == "c1"
    assert entry.idle_ms == 750
    assert entry.delivery_count == 1


@pytest.mark.asyncio
async def test_reassign_honours_min_idle(backend, clock):
    await backend.add_event({"n": "0"})
    [record] = await backend.pull("g", "c1", 10)

    clock.now = 500
    assert await backend.reassign("g", "c2", 1000, [record.id]) == []

    clock.now = 1500
    [claimed] = await backend.reassign("g", "c2", 1000, [record.id])
    assert claimed.reclaimed is True
    assert claimed.fields == {"n": "0"}

    [entry] = await backend.list_pending("g", 10)
    assert entry.consumer == "c2"
    assert entry.idle_ms == 0
    assert entry.delivery_count == 2


@pytest.mark.asyncio
async def test_acknowledge_is_idempotent(backend):
    await backend.add_event({"n": "0"})
    [record] = await backend.pull("g", "c1", 10)

    await backend.acknowledge("g", [record.id])
    await backend.acknowledge("g", [record.id])
    await backend.acknowledge("g", [])
    assert await backend.list_pending("g", 10) == []


@pytest.mark.asyncio
async def test_claim_drops_trimmed_entries(backend, clock):
    await backend.add_event({"n": "0"})
    [record] = await backend.pull("g", "c1", 10)
    await backend.add_event({"n": "1"}, max_len=1)

    clock.now = 5000
    assert await backend.reassign("g", "c2", 1000, [record.id]) == []
    assert await backend.list_pending("g", 10) == []


@pytest.mark.asyncio
async def test_blocking_pull_wakes_on_new_entry(backend):
    async def produce():
        await asyncio.sleep(0.02)
        await backend.add_event({"n": "late"})

    producer = asyncio.create_task(produce())
    records = await backend.pull("g", "c1", 10, block_ms=1000)
    await producer
    assert [r.fields["n"] for r in records] == ["late"]


@pytest.mark.asyncio
async def test_blocking_pull_times_out_empty(backend):
    assert await backend.pull("g", "c1", 10, block_ms=20) == []


@pytest.mark.asyncio
async def test_unknown_group_is_an_error(backend):
    with pytest.raises(LookupError):
        await backend.pull("missing", "c1", 10)
