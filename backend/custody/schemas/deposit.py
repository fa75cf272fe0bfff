from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, AliasChoices


class MarkProcessedRequest(BaseModel):
    deposit_ids: list[int] = Field(validation_alias=AliasChoices("depositIds", "deposit_ids"))


class DepositOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tx_hash: str
    user_ref: str
    from_address: str
    asset: str
    amount: Decimal
    block_number: int
    confirmations: int
    status: str
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
