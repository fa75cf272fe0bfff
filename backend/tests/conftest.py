import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from custody.core.errors import NetworkError
from custody.database import Base
from custody.services.deposit_store import DepositStore
from custody.services.ledger_client import TransferEvent
from custody.services.withdrawal_store import WithdrawalStore
import custody.models  # noqa: F401 - register all models

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

WALLET = "0x8ecd3463bea3ec99b3bbf81cd8502d84e5a60179"
DEUR = "0x2791bca1f2de4661ed88a30c99a7a9449aa84174"
DUSD = "0xc2132d05d31c914a87c6611c10748aeb04b58e8f"
DCNY = "0x3c499c542cef5e3811e1192ce70d8cc03d5c3359"
SENDER = "0x1234567890abcdef1234567890abcdef12345678"
DEST = "0xabcdef1234567890abcdef1234567890abcdef12"


class FakeLedger:
    """In-memory stand-in for the Polygon ledger client."""

    def __init__(self, height: int = 0):
        self.height = height
        self.events: dict[str, list[TransferEvent]] = {}
        self.fail_ranges: dict[str, Exception] = {}
        self.log_calls: list[tuple] = []
        self.submissions: list[tuple] = []
        self.submit_errors: dict[str, Exception] = {}
        self.closed = False

    def add_transfer(self, contract: str, tx_hash: str, block: int, value: int, sender: str = SENDER):
        self.events.setdefault(contract, []).append(
            TransferEvent(tx_hash=tx_hash, from_address=sender, to_address=WALLET, value=value, block_number=block)
        )

    async def current_height(self) -> int:
        return self.height

    async def get_transfer_events(self, contract, to_address, from_block, to_block):
        self.log_calls.append((contract, from_block, to_block))
        if contract in self.fail_ranges:
            raise self.fail_ranges[contract]
        return [
            e for e in self.events.get(contract, [])
            if from_block <= e.block_number <= to_block and e.to_address == to_address
        ]

    async def submit_transfer(self, contract, credentials, to_address, amount):
        self.submissions.append((contract, to_address, amount))
        error = self.submit_errors.get(to_address)
        if error:
            raise error
        return "0x" + format(len(self.submissions), "064x")

    async def close(self):
        self.closed = True


@pytest.fixture
def ledger():
    return FakeLedger(height=1000)


@pytest.fixture
def network_error():
    return NetworkError("eth_getLogs: ReadTimeout")


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL, connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest.fixture
def deposit_store(session_factory):
    return DepositStore(session_factory)


@pytest.fixture
def withdrawal_store(session_factory):
    return WithdrawalStore(session_factory)
