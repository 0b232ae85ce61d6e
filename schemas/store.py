from datetime import datetime
from pydantic import BaseModel
from typing import Dict, List, Optional

from schemas.purchase import PurchaseOutcomeOut


class StorePlanOut(BaseModel):
    id: str
    name: Dict[str, str]
    price: float
    max_ads: int
    duration_days: int
    features: List[str] = []

    class Config:
        from_attributes = True


class StoreCreate(BaseModel):
    name: str
    plan_id: str
    category_name: Optional[str] = None
    description: Optional[str] = None
    address: Optional[str] = None
    confirmed: bool = False


class StorePlanPayment(BaseModel):
    plan_id: Optional[str] = None  # defaults to the store's current plan
    confirmed: bool = False


class StoreQuoteRequest(BaseModel):
    kind: str = "store_create"  # store_create, store_renew, store_reactivate
    plan_id: Optional[str] = None
    store_id: Optional[int] = None
    name: Optional[str] = None


class StoreOut(BaseModel):
    id: int
    user_id: int
    name: str
    category_name: Optional[str] = None
    description: Optional[str] = None
    address: Optional[str] = None
    plan_id: str
    plan_price: float
    max_ads: int
    duration_days: int
    ads_used: int
    status: str
    expires_at: datetime
    rating: float
    total_ratings: int
    follower_count: int
    created_at: datetime

    class Config:
        from_attributes = True


class StoreUsageOut(BaseModel):
    used: int
    max_ads: int
    remaining: int
    deleted: int

    class Config:
        from_attributes = True


class ExpirationInfoOut(BaseModel):
    status: str
    expires_at: datetime
    days_until_expiration: int
    grace_period_ends_at: datetime
    archived_at: datetime
    can_renew: bool
    can_reactivate: bool

    class Config:
        from_attributes = True


class StoreDetailOut(StoreOut):
    usage: StoreUsageOut
    expiration: ExpirationInfoOut
    active_listings: int


class StorePurchaseOut(BaseModel):
    purchase: PurchaseOutcomeOut
    store: Optional[StoreOut] = None
