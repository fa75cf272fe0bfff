import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from custody.core.errors import BroadcastError, LedgerError
from custody.services.assets import Asset, resolve_asset
from custody.services.ledger_client import WalletCredentials

logger = logging.getLogger("custody.settler")

PAUSE_KEY = "settlement:paused"


def start_of_day(now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


class WithdrawalSettler:
    """Broadcasts pending withdrawals and moves each to completed or failed.

    A failed request is never retried: a transfer whose broadcast outcome is
    unknown must be reconciled by hand before any resubmission.
    """

    def __init__(
        self,
        ledger,
        withdrawals,
        assets: dict[str, Asset],
        credentials: WalletCredentials,
        max_daily_withdrawal: Optional[Decimal] = None,
        redis=None,
    ):
        self.ledger = ledger
        self.withdrawals = withdrawals
        self.assets = assets
        self.credentials = credentials
        self.max_daily_withdrawal = (
            Decimal(str(max_daily_withdrawal)) if max_daily_withdrawal else None
        )
        self.redis = redis
        # Outcomes already decided on-chain but not yet written to the store.
        self._unrecorded: dict[int, tuple[str, str]] = {}

    def snapshot(self) -> dict:
        return {
            "wallet": self.credentials.address,
            "credentials_configured": self.credentials.configured,
            "max_daily_withdrawal": str(self.max_daily_withdrawal) if self.max_daily_withdrawal else None,
            "unrecorded_outcomes": sorted(self._unrecorded),
        }

    async def is_paused(self) -> bool:
        if self.redis is None:
            return False
        return bool(await self.redis.get(PAUSE_KEY))

    async def _record(self, withdrawal_id: int, outcome: str, detail: str) -> None:
        if outcome == "completed":
            changed = await self.withdrawals.complete(withdrawal_id, detail)
        else:
            changed = await self.withdrawals.fail(withdrawal_id, detail)
        if not changed:
            logger.warning("Withdrawal #%s was no longer pending when marking it %s", withdrawal_id, outcome)

    async def _flush_unrecorded(self) -> None:
        for withdrawal_id, (outcome, detail) in list(self._unrecorded.items()):
            await self._record(withdrawal_id, outcome, detail)
            del self._unrecorded[withdrawal_id]
            logger.info("Recorded deferred outcome for withdrawal #%s: %s", withdrawal_id, outcome)

    async def _remaining_allowance(self, asset: Asset, cache: dict) -> Optional[Decimal]:
        if self.max_daily_withdrawal is None:
            return None
        if asset.symbol not in cache:
            spent = await self.withdrawals.completed_total_since(asset.symbol, start_of_day())
            cache[asset.symbol] = self.max_daily_withdrawal - spent
        return cache[asset.symbol]

    async def settle_one(self, withdrawal, asset: Asset) -> tuple[str, str]:
        """Submit one transfer. Returns (outcome, tx hash or failure reason)."""
        try:
            units = asset.to_base_units(Decimal(str(withdrawal.amount)))
        except ValueError as e:
            return "failed", f"invalid amount: {e}"
        try:
            tx_hash = await self.ledger.submit_transfer(
                asset.contract_address, self.credentials, withdrawal.to_address, units
            )
        except BroadcastError as e:
            logger.error("Withdrawal #%s broadcast as %s but not confirmed; needs reconciliation", withdrawal.id, e.tx_hash)
            # hash first so truncation of the reason never drops it
            return "failed", f"(tx={e.tx_hash}) {e.__class__.__name__}: {e}"
        except LedgerError as e:
            return "failed", f"{e.__class__.__name__}: {e}"
        except Exception as e:
            logger.exception("Unexpected error submitting withdrawal #%s", withdrawal.id)
            return "failed", f"{e.__class__.__name__}: {e}"
        return "completed", tx_hash

    async def tick(self) -> dict:
        summary = {"completed": 0, "failed": 0, "deferred": 0, "skipped": None}

        if await self.is_paused():
            logger.warning("Settlement paused via %s", PAUSE_KEY)
            summary["skipped"] = "paused"
            return summary
        if not self.credentials.configured:
            logger.error("Wallet credentials missing (PLATFORM_WALLET_ADDRESS / PLATFORM_WALLET_PRIVATE_KEY); settlement skipped")
            summary["skipped"] = "credentials missing"
            return summary

        await self._flush_unrecorded()

        pending = await self.withdrawals.pending()
        if not pending:
            return summary
        logger.info("Processing %s withdrawal(s)", len(pending))

        allowance: dict[str, Decimal] = {}
        blocked: set[str] = set()
        for withdrawal in pending:
            asset = resolve_asset(self.assets, withdrawal.asset)
            if asset is None or not asset.enabled:
                logger.error("Withdrawal #%s failed: asset %s not configured", withdrawal.id, withdrawal.asset)
                await self._record(withdrawal.id, "failed", f"asset {withdrawal.asset} not configured")
                summary["failed"] += 1
                continue

            amount = Decimal(str(withdrawal.amount))
            remaining = await self._remaining_allowance(asset, allowance)
            if asset.symbol in blocked or (remaining is not None and amount > remaining):
                # keep FIFO order: nothing later in this asset jumps the queue
                blocked.add(asset.symbol)
                summary["deferred"] += 1
                logger.info("Withdrawal #%s deferred: daily %s ceiling reached", withdrawal.id, asset.symbol)
                continue

            logger.info(
                "Withdrawal #%s: %s %s to %s (requester %s)",
                withdrawal.id, amount, asset.symbol, withdrawal.to_address, withdrawal.requester,
            )
            outcome, detail = await self.settle_one(withdrawal, asset)
            if outcome == "completed" and remaining is not None:
                allowance[asset.symbol] = remaining - amount

            try:
                await self._record(withdrawal.id, outcome, detail)
            except Exception:
                self._unrecorded[withdrawal.id] = (outcome, detail)
                logger.exception("Could not record %s for withdrawal #%s; will retry before next batch", outcome, withdrawal.id)
                raise

            if outcome == "completed":
                summary["completed"] += 1
                logger.info("Withdrawal #%s completed tx=%s", withdrawal.id, detail)
            else:
                summary["failed"] += 1
                logger.error("Withdrawal #%s failed: %s", withdrawal.id, detail)
        return summary
