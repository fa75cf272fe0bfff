import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Optional
import httpx
from eth_account import Account
from eth_utils import to_checksum_address
from custody.core.errors import (
    BroadcastError,
    ChainRejected,
    InsufficientBalance,
    InvalidDestination,
    MalformedLog,
    NetworkError,
)
from custody.services.assets import is_address

logger = logging.getLogger("custody.ledger")

TRANSFER_EVENT_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
TRANSFER_SELECTOR = "a9059cbb"
BALANCE_OF_SELECTOR = "70a08231"

RECEIPT_POLL_SEC = 2.0


@dataclass(frozen=True)
class TransferEvent:
    tx_hash: str
    from_address: str
    to_address: str
    value: int
    block_number: int
    log_index: Optional[int] = None


@dataclass(frozen=True)
class WalletCredentials:
    address: str
    private_key: str

    @property
    def configured(self) -> bool:
        return bool(self.private_key) and is_address(self.address)

    def __repr__(self) -> str:
        return f"WalletCredentials(address={self.address!r})"


class ReceiptTimeout(BroadcastError, NetworkError):
    """Broadcast succeeded but no receipt arrived in time; outcome unknown."""

    def __init__(self, tx_hash: str, timeout: float):
        super().__init__(f"no receipt for {tx_hash} after {timeout:.0f}s", tx_hash)


class TransferReverted(BroadcastError, ChainRejected):
    """The transfer was mined with a failed status."""


def pad_address(address: str) -> str:
    return "0x" + "0" * 24 + address.lower()[2:]


def topic_to_address(topic: str) -> str:
    if not isinstance(topic, str) or not topic.startswith("0x") or len(topic) != 66:
        raise MalformedLog(f"invalid address topic: {topic!r}")
    return "0x" + topic[-40:].lower()


def hex_to_int(value) -> int:
    if isinstance(value, int):
        return value
    if not isinstance(value, str) or not value.startswith("0x"):
        raise MalformedLog(f"invalid hex quantity: {value!r}")
    return int(value, 16) if len(value) > 2 else 0


def parse_transfer_log(log: dict) -> TransferEvent:
    """Decode an ERC-20 Transfer log as returned by eth_getLogs."""
    try:
        topics = log.get("topics") or []
        if len(topics) < 3 or topics[0].lower() != TRANSFER_EVENT_TOPIC:
            raise MalformedLog(f"not a Transfer log: {topics!r}")
        tx_hash = log["transactionHash"]
        if not isinstance(tx_hash, str) or len(tx_hash) != 66:
            raise MalformedLog(f"invalid transaction hash: {tx_hash!r}")
        log_index = log.get("logIndex")
        return TransferEvent(
            tx_hash=tx_hash.lower(),
            from_address=topic_to_address(topics[1]),
            to_address=topic_to_address(topics[2]),
            value=hex_to_int(log.get("data") or "0x"),
            block_number=hex_to_int(log["blockNumber"]),
            log_index=hex_to_int(log_index) if log_index is not None else None,
        )
    except (KeyError, AttributeError, TypeError, ValueError) as e:
        raise MalformedLog(f"cannot decode log: {e}") from e


def encode_transfer(to_address: str, amount: int) -> str:
    return "0x" + TRANSFER_SELECTOR + pad_address(to_address)[2:] + format(amount, "064x")


def classify_rpc_error(message: str):
    msg = message.lower()
    if "insufficient funds" in msg or "exceeds balance" in msg:
        return InsufficientBalance
    if "invalid address" in msg or "invalid recipient" in msg:
        return InvalidDestination
    if any(s in msg for s in ("timeout", "timed out", "rate limit", "too many requests", "unavailable")):
        return NetworkError
    return ChainRejected


class PolygonLedgerClient:
    """JSON-RPC client for the handful of calls the engine needs."""

    def __init__(
        self,
        rpc_url: str,
        chain_id: int = 137,
        timeout: float = 30.0,
        gas_limit: int = 100000,
        receipt_timeout: float = 120.0,
    ):
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.gas_limit = gas_limit
        self.receipt_timeout = receipt_timeout
        self.client = httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def _call(self, method: str, params: list):
        try:
            resp = await self.client.post(
                self.rpc_url,
                json={"jsonrpc": "2.0", "method": method, "params": params, "id": next(self._ids)},
            )
        except httpx.HTTPError as e:
            raise NetworkError(f"{method}: {e.__class__.__name__}: {e}") from e
        if resp.status_code != 200:
            raise NetworkError(f"{method}: RPC request failed with HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as e:
            raise NetworkError(f"{method}: invalid JSON-RPC response") from e
        error = data.get("error")
        if error:
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise classify_rpc_error(message)(f"{method}: {message}")
        return data.get("result")

    async def current_height(self) -> int:
        return hex_to_int(await self._call("eth_blockNumber", []))

    async def get_transfer_events(
        self, contract_address: str, to_address: str, from_block: int, to_block: int
    ) -> list[TransferEvent]:
        logs = await self._call("eth_getLogs", [{
            "address": contract_address,
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
            "topics": [TRANSFER_EVENT_TOPIC, None, pad_address(to_address)],
        }])
        events = []
        for log in logs or []:
            if log.get("removed"):
                continue
            event = parse_transfer_log(log)
            if event.to_address != to_address.lower():
                continue
            events.append(event)
        return events

    async def token_balance(self, contract_address: str, owner: str) -> int:
        result = await self._call("eth_call", [{
            "to": contract_address,
            "data": "0x" + BALANCE_OF_SELECTOR + pad_address(owner)[2:],
        }, "latest"])
        return hex_to_int(result or "0x")

    async def get_receipt(self, tx_hash: str) -> Optional[dict]:
        return await self._call("eth_getTransactionReceipt", [tx_hash])

    async def wait_for_receipt(self, tx_hash: str) -> dict:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.receipt_timeout
        while True:
            try:
                receipt = await self.get_receipt(tx_hash)
            except NetworkError as e:
                logger.warning("Receipt check for %s failed, polling again: %s", tx_hash, e)
                receipt = None
            if receipt:
                return receipt
            if loop.time() >= deadline:
                raise ReceiptTimeout(tx_hash, self.receipt_timeout)
            await asyncio.sleep(RECEIPT_POLL_SEC)

    async def submit_transfer(
        self, contract_address: str, credentials: WalletCredentials, to_address: str, amount: int
    ) -> str:
        """Sign and broadcast an ERC-20 transfer, returning the mined tx hash."""
        if not is_address(to_address):
            raise InvalidDestination(f"invalid destination address: {to_address!r}")
        if to_address.lower() == "0x" + "0" * 40:
            raise InvalidDestination("refusing to transfer to the zero address")

        balance = await self.token_balance(contract_address, credentials.address)
        if balance < amount:
            raise InsufficientBalance(f"wallet holds {balance} base units, transfer needs {amount}")

        nonce = hex_to_int(await self._call(
            "eth_getTransactionCount", [credentials.address, "pending"]))
        gas_price = hex_to_int(await self._call("eth_gasPrice", []))
        tx = {
            "nonce": nonce,
            "gasPrice": gas_price,
            "gas": self.gas_limit,
            "to": to_checksum_address(contract_address),
            "value": 0,
            "data": encode_transfer(to_address, amount),
            "chainId": self.chain_id,
        }
        signed = Account.sign_transaction(tx, credentials.private_key)
        raw = "0x" + bytes(signed.raw_transaction).hex()

        tx_hash = await self._call("eth_sendRawTransaction", [raw])
        logger.info("Broadcast transfer tx=%s to=%s amount=%s", tx_hash, to_address, amount)

        # From here on the transfer may be on-chain; every error carries its hash.
        try:
            receipt = await self.wait_for_receipt(tx_hash)
        except BroadcastError:
            raise
        except Exception as e:
            raise BroadcastError(
                f"receipt check for {tx_hash} failed: {e.__class__.__name__}: {e}", tx_hash
            ) from e
        if receipt.get("status") != "0x1":
            raise TransferReverted(f"transaction {tx_hash} reverted", tx_hash)
        return tx_hash

    async def close(self):
        await self.client.aclose()
