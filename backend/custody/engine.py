import asyncio
import logging
from decimal import Decimal
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker
from custody import database
from custody.core.errors import StartupError
from custody.services.assets import Asset, is_address, load_assets
from custody.services.deposit_store import DepositStore
from custody.services.ledger_client import PolygonLedgerClient, WalletCredentials
from custody.services.scanner import DepositScanner, MemoryCursorStore, RedisCursorStore
from custody.services.scheduler import PollingLoop, schedule
from custody.services.settler import WithdrawalSettler
from custody.services.withdrawal_store import WithdrawalStore

logger = logging.getLogger("custody.engine")

STOP_POLL_SEC = 0.1

STARTUP_GUIDANCE = (
    "Check that DATABASE_URL is correct and reachable, "
    "that POLYGON_RPC_URL points to a working node, "
    "and that all required environment variables are set."
)


class Engine:
    """Wires the ledger client, stores, scanner and settler together."""

    def __init__(
        self,
        cfg,
        ledger=None,
        db_engine: Optional[AsyncEngine] = None,
        session_factory: Optional[async_sessionmaker] = None,
        redis=None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.cfg = cfg
        self.db_engine = db_engine or database.engine
        self.session_factory = session_factory or database.AsyncSessionLocal
        self.redis = redis
        self.ledger = ledger or PolygonLedgerClient(
            cfg.POLYGON_RPC_URL,
            chain_id=cfg.CHAIN_ID,
            timeout=cfg.RPC_TIMEOUT_SEC,
            gas_limit=cfg.TRANSFER_GAS_LIMIT,
            receipt_timeout=cfg.RECEIPT_TIMEOUT_SEC,
        )
        self.assets: dict[str, Asset] = load_assets(cfg)
        self.credentials = WalletCredentials(cfg.PLATFORM_WALLET_ADDRESS, cfg.PLATFORM_WALLET_PRIVATE_KEY)

        self.deposits = DepositStore(self.session_factory)
        self.withdrawals = WithdrawalStore(self.session_factory)
        cursors = RedisCursorStore(redis) if redis is not None else MemoryCursorStore()
        self.scanner = DepositScanner(
            self.ledger,
            self.deposits,
            cursors,
            self.assets,
            wallet_address=cfg.PLATFORM_WALLET_ADDRESS,
            min_confirmations=cfg.MIN_CONFIRMATIONS,
            max_range=cfg.SCAN_MAX_BLOCK_RANGE,
            start_block=cfg.SCAN_START_BLOCK,
        )
        self.settler = WithdrawalSettler(
            self.ledger,
            self.withdrawals,
            self.assets,
            self.credentials,
            max_daily_withdrawal=Decimal(str(cfg.MAX_DAILY_WITHDRAWAL)) if cfg.MAX_DAILY_WITHDRAWAL else None,
            redis=redis,
        )
        self.loops = {
            "scanner": PollingLoop("scanner", self.scanner.tick, cfg.SCAN_INTERVAL_SEC, cfg.SCANNER_START_DELAY_SEC),
            "settler": PollingLoop("settler", self.settler.tick, cfg.SETTLE_INTERVAL_SEC, cfg.SETTLER_START_DELAY_SEC),
        }
        self.scheduler = scheduler or AsyncIOScheduler()
        self.started = False

    async def check_dependencies(self) -> int:
        """Verify the database and the RPC node; returns the current block height."""
        try:
            await database.ping(self.db_engine)
            logger.info("Database connected")
            if self.cfg.AUTO_CREATE_TABLES:
                await database.create_tables(self.db_engine)
                logger.info("Database tables ready")
        except Exception as e:
            logger.critical("Database unreachable at startup: %s. %s", e, STARTUP_GUIDANCE)
            raise StartupError(f"database unreachable: {e}") from e
        try:
            height = await self.ledger.current_height()
            logger.info("RPC connected, current block %s", height)
        except Exception as e:
            logger.critical("Polygon RPC unreachable at startup: %s. %s", e, STARTUP_GUIDANCE)
            raise StartupError(f"rpc unreachable: {e}") from e
        return height

    async def start(self) -> None:
        await self.check_dependencies()

        if is_address(self.cfg.PLATFORM_WALLET_ADDRESS):
            for asset in self.assets.values():
                if asset.enabled:
                    logger.info("Monitoring %s (%s) at %s", asset.name, asset.symbol, asset.contract_address)
                else:
                    logger.warning("%s: no address configured, skipping", asset.name)
            schedule(self.scheduler, self.loops["scanner"])
        else:
            logger.error("PLATFORM_WALLET_ADDRESS missing or invalid; deposit scanner not started")

        schedule(self.scheduler, self.loops["settler"])
        self.scheduler.start()
        self.started = True
        logger.info(
            "Engine started: scan every %ss (min %s confirmations), settle every %ss",
            self.cfg.SCAN_INTERVAL_SEC, self.cfg.MIN_CONFIRMATIONS, self.cfg.SETTLE_INTERVAL_SEC,
        )

    async def _wait_for_loops(self, timeout: float) -> bool:
        """Wait until no loop is mid-tick; returns False if the timeout ran out."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while any(p.running for p in self.loops.values()):
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(STOP_POLL_SEC)
        return True

    async def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        # The ledger client must outlive a tick that may be waiting on a receipt.
        if not await self._wait_for_loops(self.cfg.SHUTDOWN_GRACE_SEC):
            busy = [name for name, p in self.loops.items() if p.running]
            logger.error(
                "Loops %s still running after %ss; closing ledger client anyway", busy, self.cfg.SHUTDOWN_GRACE_SEC
            )
        await self.ledger.close()
        self.started = False

    async def health(self) -> dict:
        db_ok, db_error = True, None
        try:
            await database.ping(self.db_engine)
        except Exception as e:
            db_ok, db_error = False, str(e)

        body = {
            "status": "ok" if db_ok else "degraded",
            "database": "connected" if db_ok else "error",
            "engine": "active" if self.started else "stopped",
            "loops": {name: loop.snapshot() for name, loop in self.loops.items()},
            "scanner": self.scanner.snapshot(),
            "settler": self.settler.snapshot(),
        }
        if db_ok:
            body["pending_withdrawals"] = await self.withdrawals.count_pending()
            body["unprocessed_deposits"] = await self.deposits.count_unprocessed()
        else:
            body["database_error"] = db_error
        return body
