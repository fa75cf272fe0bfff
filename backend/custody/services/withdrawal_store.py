from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import async_sessionmaker
from custody.models.withdrawal import Withdrawal, WithdrawalStatus


class WithdrawalStore:
    """Durable record of withdrawal requests and their lifecycle."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def create(self, requester: str, asset: str, amount: Decimal, to_address: str) -> Withdrawal:
        async with self.session_factory() as db:
            withdrawal = Withdrawal(
                requester=requester,
                asset=asset,
                amount=amount,
                to_address=to_address,
                status=WithdrawalStatus.pending,
            )
            db.add(withdrawal)
            await db.commit()
            await db.refresh(withdrawal)
            return withdrawal

    async def get(self, withdrawal_id: int) -> Optional[Withdrawal]:
        async with self.session_factory() as db:
            return await db.get(Withdrawal, withdrawal_id)

    async def pending(self, limit: Optional[int] = None) -> list[Withdrawal]:
        """Pending requests, oldest first."""
        query = (
            select(Withdrawal)
            .where(Withdrawal.status == WithdrawalStatus.pending)
            .order_by(Withdrawal.created_at.asc(), Withdrawal.id.asc())
        )
        if limit:
            query = query.limit(limit)
        async with self.session_factory() as db:
            return list(await db.scalars(query))

    async def failed(self, limit: int = 200) -> list[Withdrawal]:
        async with self.session_factory() as db:
            return list(await db.scalars(
                select(Withdrawal)
                .where(Withdrawal.status == WithdrawalStatus.failed)
                .order_by(Withdrawal.processed_at.desc(), Withdrawal.id.desc())
                .limit(limit)
            ))

    async def _finish(self, withdrawal_id: int, **values) -> bool:
        # Only a pending row may move; terminal rows are left untouched.
        async with self.session_factory() as db:
            result = await db.execute(
                update(Withdrawal)
                .where(Withdrawal.id == withdrawal_id, Withdrawal.status == WithdrawalStatus.pending)
                .values(processed_at=datetime.now(timezone.utc), **values)
            )
            await db.commit()
            return result.rowcount == 1

    async def complete(self, withdrawal_id: int, tx_hash: str) -> bool:
        return await self._finish(withdrawal_id, status=WithdrawalStatus.completed, tx_hash=tx_hash)

    async def fail(self, withdrawal_id: int, reason: str) -> bool:
        return await self._finish(
            withdrawal_id, status=WithdrawalStatus.failed, tx_hash=None, failure_reason=reason[:500]
        )

    async def count_pending(self) -> int:
        async with self.session_factory() as db:
            return await db.scalar(
                select(func.count(Withdrawal.id)).where(Withdrawal.status == WithdrawalStatus.pending)
            ) or 0

    async def completed_total_since(self, asset: str, since: datetime) -> Decimal:
        async with self.session_factory() as db:
            total = await db.scalar(
                select(func.sum(Withdrawal.amount)).where(
                    Withdrawal.asset == asset,
                    Withdrawal.status == WithdrawalStatus.completed,
                    Withdrawal.processed_at >= since,
                )
            )
            return Decimal(str(total)) if total is not None else Decimal("0")
