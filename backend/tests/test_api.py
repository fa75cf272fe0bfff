import pytest
import pytest_asyncio
from decimal import Decimal
from unittest.mock import AsyncMock
from httpx import AsyncClient, ASGITransport
from sqlalchemy.exc import OperationalError
from custody.config import Settings
from custody.engine import Engine
from custody.main import app
from conftest import DEST, DEUR, SENDER, WALLET


def make_settings(**overrides):
    values = dict(
        PLATFORM_WALLET_ADDRESS=WALLET,
        PLATFORM_WALLET_PRIVATE_KEY="0x" + "11" * 32,
        DEUR_TOKEN_ADDRESS=DEUR,
        MAX_DAILY_WITHDRAWAL=1000,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest_asyncio.fixture
async def engine(ledger, db_engine, session_factory):
    engine = Engine(make_settings(), ledger=ledger, db_engine=db_engine, session_factory=session_factory)
    app.state.engine = engine
    yield engine
    del app.state.engine


@pytest_asyncio.fixture
async def client(engine):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


async def seed_deposit(engine, tx_char: str, amount: str = "15") -> int:
    await engine.deposits.insert_confirmed({
        "tx_hash": "0x" + tx_char * 64,
        "log_index": 0,
        "user_ref": SENDER,
        "from_address": SENDER,
        "asset": "DEUR",
        "amount": Decimal(amount),
        "block_number": 985,
        "confirmations": 15,
    })
    return (await engine.deposits.get_by_tx("0x" + tx_char * 64)).id


@pytest.mark.asyncio
async def test_health(client):
    r = await client.get("/health")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["status"] == "ok"
    assert body["database"] == "connected"
    assert body["engine"] == "stopped"
    assert body["pending_withdrawals"] == 0
    assert body["unprocessed_deposits"] == 0
    assert set(body["loops"]) == {"scanner", "settler"}
    assert "timestamp" in body


@pytest.mark.asyncio
async def test_health_degraded_when_database_down(client, engine, monkeypatch):
    monkeypatch.setattr(
        "custody.engine.database.ping",
        AsyncMock(side_effect=OperationalError("SELECT 1", {}, Exception("connection refused"))),
    )
    r = await client.get("/health")
    assert r.status_code == 503
    assert r.json()["status"] == "degraded"
    assert "database_error" in r.json()


@pytest.mark.asyncio
async def test_pending_deposits_and_mark_processed(client, engine):
    ids = [await seed_deposit(engine, c) for c in "abc"]

    r = await client.get(f"/api/deposits/{SENDER}/pending")
    assert r.status_code == 200
    assert len(r.json()) == 3
    assert Decimal(r.json()[0]["amount"]) == Decimal("15")

    r = await client.post("/api/deposits/mark-processed", json={"depositIds": [ids[0], ids[2]]})
    assert r.status_code == 200
    assert r.json() == {"success": True, "requested": 2, "processed": 2}

    r = await client.get(f"/api/deposits/{SENDER}/pending")
    assert [d["id"] for d in r.json()] == [ids[1]]


@pytest.mark.asyncio
async def test_mark_processed_rejects_bad_body(client):
    r = await client.post("/api/deposits/mark-processed", json={"depositIds": "nope"})
    assert r.status_code == 400
    assert "error" in r.json()


@pytest.mark.asyncio
async def test_withdrawal_request_is_queued(client, engine):
    r = await client.post("/api/withdrawal/request", json={
        "userEmail": "alice@example.com",
        "amount": "25.5",
        "currency": "Digital EUR",
        "toAddress": DEST,
    })
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["success"] is True
    assert body["status"] == "pending"

    stored = await engine.withdrawals.get(body["withdrawalId"])
    assert stored.asset == "DEUR"
    assert stored.amount == Decimal("25.5")

    r = await client.get(f"/api/withdrawal/{body['withdrawalId']}")
    assert r.status_code == 200
    assert r.json()["to_address"] == DEST


@pytest.mark.asyncio
async def test_withdrawal_rejects_bad_destination(client, engine):
    r = await client.post("/api/withdrawal/request", json={
        "requester": "alice", "amount": "1", "asset": "DEUR", "destination": "0x123",
    })
    assert r.status_code == 400
    assert "Invalid Ethereum address format" in r.json()["error"]
    assert await engine.withdrawals.count_pending() == 0


@pytest.mark.asyncio
async def test_withdrawal_rejects_unknown_asset_and_bad_amounts(client):
    base = {"requester": "alice", "asset": "DEUR", "destination": DEST}

    r = await client.post("/api/withdrawal/request", json=dict(base, asset="DOGE", amount="1"))
    assert r.status_code == 400
    assert "Unknown asset" in r.json()["error"]

    r = await client.post("/api/withdrawal/request", json=dict(base, amount="0"))
    assert r.status_code == 400

    r = await client.post("/api/withdrawal/request", json=dict(base, amount="5000"))
    assert r.status_code == 400
    assert "daily withdrawal limit" in r.json()["error"]


@pytest.mark.asyncio
async def test_withdrawal_not_found(client):
    r = await client.get("/api/withdrawal/9999")
    assert r.status_code == 404
    assert r.json() == {"error": "Withdrawal not found"}


@pytest.mark.asyncio
async def test_failed_withdrawals_listed(client, engine):
    w = await engine.withdrawals.create("alice", "DEUR", Decimal("1"), DEST)
    await engine.withdrawals.fail(w.id, "ChainRejected: execution reverted")

    r = await client.get("/api/withdrawal/failed")
    assert r.status_code == 200
    assert [f["id"] for f in r.json()] == [w.id]
    assert r.json()[0]["failure_reason"].startswith("ChainRejected")


@pytest.mark.asyncio
async def test_settled_withdrawal_visible_with_hash(client, engine, ledger):
    r = await client.post("/api/withdrawal/request", json={
        "requester": "alice", "amount": "2", "asset": "DEUR", "destination": DEST,
    })
    withdrawal_id = r.json()["withdrawalId"]

    await engine.settler.tick()

    r = await client.get(f"/api/withdrawal/{withdrawal_id}")
    assert r.json()["status"] == "completed"
    assert r.json()["tx_hash"] == "0x" + format(1, "064x")
    assert ledger.submissions == [(DEUR, DEST, 2 * 10 ** 18)]
