from datetime import datetime
from pydantic import BaseModel
from typing import Dict, Optional

from schemas.purchase import PurchaseOutcomeOut


class ListingCreate(BaseModel):
    title: str
    price: float
    description: Optional[str] = None
    currency: Optional[str] = None
    store_id: Optional[int] = None
    expires_at: Optional[datetime] = None


class ListingOut(BaseModel):
    id: int
    user_id: int
    store_id: Optional[int] = None
    title: str
    description: Optional[str] = None
    price: float
    original_price: Optional[float] = None
    currency: str
    has_discount: bool
    discount_type: Optional[str] = None
    discount_value: Optional[float] = None
    discount_end_date: Optional[datetime] = None
    promotion_type: Optional[str] = None
    promotion_end_date: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PriceInfoOut(BaseModel):
    original_price: float
    discounted_price: float
    discount_percentage: float
    badge_percentage: int
    discount_type: Optional[str] = None
    discount_value: float
    absolute_savings: float
    source: str

    class Config:
        from_attributes = True


class TimerBarOut(BaseModel):
    title: str
    color: str
    ends_at: datetime

    class Config:
        from_attributes = True


class ListingPresentationOut(BaseModel):
    price: PriceInfoOut
    badge_kind: Optional[str] = None
    deadline: Optional[datetime] = None
    timer_bar: Optional[TimerBarOut] = None

    class Config:
        from_attributes = True


class ListingDetailOut(ListingOut):
    presentation: ListingPresentationOut
    visible: bool


class PromotionPackageOut(BaseModel):
    id: str
    name: Dict[str, str]
    type: str
    price: float
    duration_days: int

    class Config:
        from_attributes = True


class PromoteRequest(BaseModel):
    package_id: str
    confirmed: bool = False


class ListingDiscountRequest(BaseModel):
    discount_type: str
    discount_value: float
    end_date: datetime
    timer_bar_enabled: bool = False
    timer_bar_title: Optional[str] = None
    timer_bar_color: Optional[str] = None
    timer_bar_end_date: Optional[datetime] = None
    confirmed: bool = False


class ListingPurchaseOut(BaseModel):
    purchase: PurchaseOutcomeOut
    listing: Optional[ListingOut] = None
