"""Error taxonomy shared by the engine and the HTTP layer."""


class CustodyError(Exception):
    pass


class StartupError(CustodyError):
    """A dependency (database or RPC) is unreachable at boot."""


class LedgerError(CustodyError):
    """Base class for failures reported by the ledger client."""


class NetworkError(LedgerError):
    pass


class InsufficientBalance(LedgerError):
    pass


class InvalidDestination(LedgerError):
    pass


class ChainRejected(LedgerError):
    pass


class MalformedLog(LedgerError):
    pass


class BroadcastError(LedgerError):
    """A transfer was broadcast but its outcome could not be confirmed.

    ``tx_hash`` identifies the transaction on-chain for reconciliation.
    """

    def __init__(self, message: str, tx_hash: str):
        super().__init__(message)
        self.tx_hash = tx_hash
