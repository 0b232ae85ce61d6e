from pydantic import BaseModel
from typing import Any, Dict, Optional


class PurchaseOutcomeOut(BaseModel):
    status: str
    code: str
    message: str
    kind: Optional[str] = None
    amount_charged: float = 0
    balance_after: Optional[float] = None
    detail: Dict[str, Any] = {}


class PurchaseQuoteOut(BaseModel):
    kind: str
    description: str
    amount: float
    balance: float
    shortfall: float
    sufficient: bool
