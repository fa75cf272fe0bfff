import logging
from typing import Optional
from custody.services.assets import Asset
from custody.services.ledger_client import TransferEvent

logger = logging.getLogger("custody.scanner")


# ---------------------------------------------------------------------------
# Cursor persistence
# ---------------------------------------------------------------------------

class MemoryCursorStore:
    """Cursor store that lives as long as the process."""

    def __init__(self, initial: Optional[dict[str, int]] = None):
        self._cursors = dict(initial or {})

    async def load(self, symbol: str) -> Optional[int]:
        return self._cursors.get(symbol)

    async def save(self, symbol: str, block: int) -> None:
        self._cursors[symbol] = block


class RedisCursorStore:
    """Cursor checkpoints in Redis, key format ``scanner:cursor:{symbol}``."""

    def __init__(self, redis):
        self.redis = redis

    def key(self, symbol: str) -> str:
        return f"scanner:cursor:{symbol}"

    async def load(self, symbol: str) -> Optional[int]:
        value = await self.redis.get(self.key(symbol))
        return int(value) if value is not None else None

    async def save(self, symbol: str, block: int) -> None:
        await self.redis.set(self.key(symbol), str(block))


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------

class DepositScanner:
    """Advances a per-asset block cursor and commits confirmed deposits.

    The cursor never moves past ``height - min_confirmations``, so a transfer
    that is still short of the threshold is scanned again on the next tick
    instead of being skipped for good.
    """

    def __init__(
        self,
        ledger,
        deposits,
        cursors,
        assets: dict[str, Asset],
        wallet_address: str,
        min_confirmations: int = 12,
        max_range: int = 2000,
        start_block: Optional[int] = None,
    ):
        self.ledger = ledger
        self.deposits = deposits
        self.cursors = cursors
        self.assets = assets
        self.wallet_address = (wallet_address or "").lower()
        self.min_confirmations = min_confirmations
        self.max_range = max(1, max_range)
        self.start_block = start_block
        self._cursor: dict[str, int] = {}
        self.awaiting: dict[str, int] = {}

    def snapshot(self) -> dict:
        return {
            "wallet": self.wallet_address,
            "min_confirmations": self.min_confirmations,
            "cursors": dict(self._cursor),
            "awaiting_confirmations": dict(self.awaiting),
        }

    async def _load_cursor(self, asset: Asset, height: int) -> int:
        if asset.symbol in self._cursor:
            return self._cursor[asset.symbol]
        cursor = await self.cursors.load(asset.symbol)
        if cursor is None:
            if self.start_block is not None:
                cursor = self.start_block - 1
            else:
                cursor = height - self.min_confirmations
            cursor = max(cursor, -1)
            logger.info("%s: no checkpoint, starting after block %s", asset.symbol, cursor)
        self._cursor[asset.symbol] = cursor
        return cursor

    async def _advance(self, asset: Asset, block: int) -> None:
        if block <= self._cursor[asset.symbol]:
            return
        await self.cursors.save(asset.symbol, block)
        self._cursor[asset.symbol] = block

    def _to_record(self, asset: Asset, event: TransferEvent, confirmations: int) -> dict:
        return {
            "tx_hash": event.tx_hash,
            "log_index": event.log_index,
            "user_ref": event.from_address.lower(),
            "from_address": event.from_address,
            "asset": asset.symbol,
            "amount": asset.from_base_units(event.value),
            "block_number": event.block_number,
            "confirmations": confirmations,
        }

    async def scan_asset(self, asset: Asset, height: int) -> dict:
        """Scan one asset up to ``height``.

        Exceptions propagate; the cursor only reflects windows that finished.
        """
        report = {"from": None, "to": None, "events": 0, "inserted": 0, "duplicates": 0, "awaiting": 0}
        cursor = await self._load_cursor(asset, height)
        from_block = cursor + 1
        if from_block > height:
            self.awaiting[asset.symbol] = 0
            return report

        safe_head = height - self.min_confirmations
        report["from"], report["to"] = from_block, height

        window_start = from_block
        while window_start <= height:
            window_end = min(window_start + self.max_range - 1, height)
            events = await self.ledger.get_transfer_events(
                asset.contract_address, self.wallet_address, window_start, window_end
            )
            report["events"] += len(events)
            for event in events:
                confirmations = height - event.block_number
                if confirmations < self.min_confirmations:
                    report["awaiting"] += 1
                    logger.info(
                        "%s: transfer tx=%s block=%s waiting for confirmations %s/%s",
                        asset.symbol, event.tx_hash, event.block_number,
                        confirmations, self.min_confirmations,
                    )
                    continue
                inserted = await self.deposits.insert_confirmed(
                    self._to_record(asset, event, confirmations)
                )
                if inserted:
                    report["inserted"] += 1
                    logger.info(
                        "%s: deposit confirmed tx=%s from=%s amount=%s block=%s",
                        asset.symbol, event.tx_hash, event.from_address,
                        asset.from_base_units(event.value), event.block_number,
                    )
                else:
                    report["duplicates"] += 1
            await self._advance(asset, min(window_end, safe_head))
            window_start = window_end + 1

        self.awaiting[asset.symbol] = report["awaiting"]
        return report

    async def tick(self) -> dict:
        """Scan every asset with a contract address once."""
        height = await self.ledger.current_height()
        results = {}
        for asset in self.assets.values():
            if not asset.enabled:
                logger.warning("%s: no contract address configured, skipping", asset.symbol)
                results[asset.symbol] = {"skipped": "no contract address"}
                continue
            try:
                results[asset.symbol] = await self.scan_asset(asset, height)
            except Exception as e:
                logger.exception("%s: scan failed, cursor held at %s", asset.symbol, self._cursor.get(asset.symbol))
                results[asset.symbol] = {"error": str(e)}
        return results
