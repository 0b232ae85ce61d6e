from pydantic import BaseModel
from typing import Optional


class TopupRequest(BaseModel):
    amount: float
    language: str = "AZ"


class TopupResponse(BaseModel):
    order_id: str
    payment_url: str
    amount: float
    currency: str


class PaymentVerifyRequest(BaseModel):
    order_id: str


class PaymentOut(BaseModel):
    id: int
    provider: str
    order_id: str
    amount: float
    currency: str
    status: str
    balance: Optional[float] = None

    class Config:
        from_attributes = True
