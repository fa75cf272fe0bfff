from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, AliasChoices, field_validator
from custody.services.assets import is_address


class WithdrawalRequest(BaseModel):
    requester: str = Field(min_length=1, max_length=255, validation_alias=AliasChoices("requester", "userEmail"))
    amount: Decimal = Field(gt=0, max_digits=36, decimal_places=18)
    asset: str = Field(min_length=1, validation_alias=AliasChoices("asset", "currency"))
    destination: str = Field(validation_alias=AliasChoices("destination", "toAddress"))

    @field_validator("requester", "asset", "destination")
    @classmethod
    def strip(cls, v: str) -> str:
        return v.strip()

    @field_validator("destination")
    @classmethod
    def check_address(cls, v: str) -> str:
        if not is_address(v):
            raise ValueError("Invalid Ethereum address format")
        return v


class WithdrawalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    requester: str
    asset: str
    amount: Decimal
    to_address: str
    status: str
    tx_hash: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
