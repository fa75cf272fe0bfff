from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    DATABASE_URL: str = "sqlite+aiosqlite:///./custody.db"
    REDIS_URL: str = ""
    AUTO_CREATE_TABLES: bool = False
    LOG_LEVEL: str = "INFO"

    # Polygon RPC
    POLYGON_RPC_URL: str = "https://polygon-rpc.com"
    CHAIN_ID: int = 137
    RPC_TIMEOUT_SEC: float = 30.0
    RECEIPT_TIMEOUT_SEC: float = 120.0
    TRANSFER_GAS_LIMIT: int = 100000

    # Custodial (platform) wallet
    PLATFORM_WALLET_ADDRESS: str = ""
    PLATFORM_WALLET_PRIVATE_KEY: str = ""

    # Token contracts
    DEUR_TOKEN_ADDRESS: str = ""
    DUSD_TOKEN_ADDRESS: str = ""
    DCNY_TOKEN_ADDRESS: str = ""
    DEUR_DECIMALS: int = 18
    DUSD_DECIMALS: int = 18
    DCNY_DECIMALS: int = 18

    # Deposit scanner
    MIN_CONFIRMATIONS: int = 12
    SCAN_INTERVAL_SEC: int = 30
    SCAN_START_BLOCK: Optional[int] = None
    SCAN_MAX_BLOCK_RANGE: int = 2000
    SCANNER_START_DELAY_SEC: int = 5

    # Withdrawal settler
    SETTLE_INTERVAL_SEC: int = 60
    SETTLER_START_DELAY_SEC: int = 10
    MAX_DAILY_WITHDRAWAL: float = 10000
    # should exceed RECEIPT_TIMEOUT_SEC
    SHUTDOWN_GRACE_SEC: float = 150.0

    CORS_ORIGINS: str = ""
    PORT: int = 8080

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def convert_database_url(cls, v):
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    @field_validator('MIN_CONFIRMATIONS', 'SCAN_MAX_BLOCK_RANGE')
    @classmethod
    def non_negative(cls, v):
        if v < 0:
            raise ValueError("must be >= 0")
        return v

settings = Settings()
