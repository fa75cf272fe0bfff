from datetime import datetime, timezone
from typing import Iterable
from sqlalchemy import select, update, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import async_sessionmaker
from custody.models.deposit import Deposit, DepositStatus


def _insert_ignore(dialect_name: str):
    """INSERT ... ON CONFLICT (tx_hash) DO NOTHING for the active dialect."""
    if dialect_name == "postgresql":
        insert = postgresql.insert
    elif dialect_name == "sqlite":
        insert = sqlite.insert
    else:
        raise ValueError(f"unsupported database dialect for insert-or-ignore: {dialect_name}")
    return insert(Deposit).on_conflict_do_nothing(index_elements=[Deposit.tx_hash])


class DepositStore:
    """Durable, deduplicated record of confirmed deposits."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def insert_confirmed(self, record: dict) -> bool:
        """Insert a confirmed deposit; returns False when the tx hash already exists."""
        values = dict(record)
        values["tx_hash"] = values["tx_hash"].lower()
        values.setdefault("status", DepositStatus.confirmed)
        async with self.session_factory() as db:
            stmt = _insert_ignore(db.get_bind().dialect.name).values(**values)
            result = await db.execute(stmt)
            await db.commit()
            return result.rowcount == 1

    async def get_by_tx(self, tx_hash: str):
        async with self.session_factory() as db:
            return await db.scalar(select(Deposit).where(Deposit.tx_hash == tx_hash.lower()))

    async def pending_for(self, user_ref: str) -> list[Deposit]:
        """Confirmed deposits not yet credited for a user, newest first."""
        async with self.session_factory() as db:
            rows = await db.scalars(
                select(Deposit).where(
                    Deposit.user_ref == user_ref.lower(),
                    Deposit.status == DepositStatus.confirmed,
                ).order_by(Deposit.created_at.desc(), Deposit.id.desc())
            )
            return list(rows)

    async def mark_processed(self, deposit_ids: Iterable[int]) -> int:
        """Move confirmed deposits to processed.

        Unknown ids and deposits already processed are ignored. Returns the
        number of deposits that changed state.
        """
        ids = sorted({int(i) for i in deposit_ids})
        if not ids:
            return 0
        async with self.session_factory() as db:
            result = await db.execute(
                update(Deposit)
                .where(Deposit.id.in_(ids), Deposit.status == DepositStatus.confirmed)
                .values(status=DepositStatus.processed, processed_at=datetime.now(timezone.utc))
            )
            await db.commit()
            return result.rowcount

    async def count_unprocessed(self) -> int:
        async with self.session_factory() as db:
            return await db.scalar(
                select(func.count(Deposit.id)).where(Deposit.status == DepositStatus.confirmed)
            ) or 0
