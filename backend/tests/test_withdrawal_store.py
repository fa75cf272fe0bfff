import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from conftest import DEST

TX = "0x" + "f" * 64


@pytest.mark.asyncio
async def test_create_starts_pending(withdrawal_store):
    w = await withdrawal_store.create("alice@example.com", "DEUR", Decimal("12.5"), DEST)

    assert w.id is not None
    assert w.status == "pending"
    assert w.tx_hash is None
    assert w.processed_at is None
    assert await withdrawal_store.count_pending() == 1


@pytest.mark.asyncio
async def test_pending_is_fifo(withdrawal_store):
    ids = [(await withdrawal_store.create("alice", "DEUR", Decimal(n), DEST)).id for n in (3, 1, 2)]

    pending = await withdrawal_store.pending()

    assert [w.id for w in pending] == ids
    assert len(await withdrawal_store.pending(limit=2)) == 2


@pytest.mark.asyncio
async def test_terminal_states_are_final(withdrawal_store):
    w = await withdrawal_store.create("alice", "DEUR", Decimal("1"), DEST)

    assert await withdrawal_store.complete(w.id, TX) is True
    assert await withdrawal_store.fail(w.id, "late failure") is False
    assert await withdrawal_store.complete(w.id, "0x" + "0" * 64) is False

    row = await withdrawal_store.get(w.id)
    assert row.status == "completed"
    assert row.tx_hash == TX
    assert row.failure_reason is None
    assert await withdrawal_store.pending() == []


@pytest.mark.asyncio
async def test_fail_records_reason_without_hash(withdrawal_store):
    w = await withdrawal_store.create("alice", "DEUR", Decimal("1"), DEST)

    assert await withdrawal_store.fail(w.id, "x" * 800) is True

    row = await withdrawal_store.get(w.id)
    assert row.status == "failed"
    assert row.tx_hash is None
    assert len(row.failure_reason) == 500
    assert row.processed_at is not None
    assert [f.id for f in await withdrawal_store.failed()] == [w.id]


@pytest.mark.asyncio
async def test_get_unknown_returns_none(withdrawal_store):
    assert await withdrawal_store.get(9999) is None


@pytest.mark.asyncio
async def test_completed_total_since(withdrawal_store):
    a = await withdrawal_store.create("alice", "DEUR", Decimal("40"), DEST)
    b = await withdrawal_store.create("bob", "DEUR", Decimal("2.5"), DEST)
    c = await withdrawal_store.create("carol", "DUSD", Decimal("100"), DEST)
    d = await withdrawal_store.create("dave", "DEUR", Decimal("7"), DEST)
    for w in (a, b, c):
        await withdrawal_store.complete(w.id, TX)
    await withdrawal_store.fail(d.id, "rejected")

    since = datetime.now(timezone.utc) - timedelta(hours=1)
    assert await withdrawal_store.completed_total_since("DEUR", since) == Decimal("42.5")
    assert await withdrawal_store.completed_total_since("DCNY", since) == Decimal("0")
    future = datetime.now(timezone.utc) + timedelta(hours=1)
    assert await withdrawal_store.completed_total_since("DEUR", future) == Decimal("0")
