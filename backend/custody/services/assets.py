import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def is_address(value: Optional[str]) -> bool:
    return bool(value) and bool(ADDRESS_RE.match(value))


@dataclass(frozen=True)
class Asset:
    """A fungible token tracked for deposits and withdrawals."""

    symbol: str
    name: str
    contract_address: Optional[str]
    decimals: int = 18

    @property
    def enabled(self) -> bool:
        return is_address(self.contract_address)

    def to_base_units(self, amount: Decimal) -> int:
        """Convert a decimal token amount to integer base units.

        Raises ValueError when the amount has more precision than the token.
        """
        scaled = Decimal(str(amount)).scaleb(self.decimals)
        if scaled != scaled.to_integral_value():
            raise ValueError(f"{amount} {self.symbol} exceeds {self.decimals} decimals")
        if scaled <= 0:
            raise ValueError(f"amount must be positive, got {amount}")
        return int(scaled)

    def from_base_units(self, value: int) -> Decimal:
        return Decimal(value).scaleb(-self.decimals)


def load_assets(cfg) -> dict[str, Asset]:
    """Build the asset catalog keyed by symbol from settings."""
    return {
        "DEUR": Asset("DEUR", "Digital EUR", cfg.DEUR_TOKEN_ADDRESS or None, cfg.DEUR_DECIMALS),
        "DUSD": Asset("DUSD", "Digital USD", cfg.DUSD_TOKEN_ADDRESS or None, cfg.DUSD_DECIMALS),
        "DCNY": Asset("DCNY", "Digital CNH", cfg.DCNY_TOKEN_ADDRESS or None, cfg.DCNY_DECIMALS),
    }


def resolve_asset(assets: dict[str, Asset], key: str) -> Optional[Asset]:
    """Look an asset up by symbol or display name, case-insensitively."""
    if not key:
        return None
    wanted = key.strip().lower()
    for asset in assets.values():
        if asset.symbol.lower() == wanted or asset.name.lower() == wanted:
            return asset
    return None
