from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional
from datetime import datetime
from decimal import Decimal


class LedgerEntryView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    member_id: str
    claim_id: Optional[str]
    amount: Decimal
    entry_type: str
    description: Optional[str]
    expires_at: Optional[datetime]
    is_redeemed: bool
    redeemed_at: Optional[datetime]
    created_at: datetime


class BalanceStats(BaseModel):
    total_earned: Decimal
    total_redeemed: Decimal


class BalanceView(BaseModel):
    available_balance: Decimal
    credits: List[LedgerEntryView]
    stats: BalanceStats


class AdjustmentRequest(BaseModel):
    member_id: str
    amount: Decimal
    entry_type: Literal["bonus", "adjustment"] = "adjustment"
    description: Optional[str] = Field(default=None, max_length=500)
    expires_in_days: Optional[int] = Field(default=None, gt=0)
