from datetime import datetime
from pydantic import BaseModel
from typing import Optional


class WalletOut(BaseModel):
    user_id: int
    balance: float
    currency: str


class WalletTransactionOut(BaseModel):
    id: int
    kind: str
    amount: float
    balance_after: float
    description: str
    reference: Optional[str] = None
    created_at: datetime
