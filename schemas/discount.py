from datetime import datetime
from pydantic import BaseModel
from typing import List, Optional


class DiscountCreate(BaseModel):
    title: str
    description: str = ""
    type: str
    value: float
    min_purchase_amount: Optional[float] = None
    max_discount_amount: Optional[float] = None
    applicable_listings: List[int] = []
    applies_to_all: bool = False
    excluded_listings: List[int] = []
    start_date: datetime
    end_date: datetime
    usage_limit: Optional[int] = None


class DiscountUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    value: Optional[float] = None
    min_purchase_amount: Optional[float] = None
    max_discount_amount: Optional[float] = None
    applicable_listings: Optional[List[int]] = None
    applies_to_all: Optional[bool] = None
    excluded_listings: Optional[List[int]] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    usage_limit: Optional[int] = None


class CampaignCreate(DiscountCreate):
    priority: int = 0


class CampaignUpdate(DiscountUpdate):
    priority: Optional[int] = None


class DiscountOut(BaseModel):
    id: int
    store_id: int
    title: str
    description: str
    type: str
    value: float
    min_purchase_amount: Optional[float] = None
    max_discount_amount: Optional[float] = None
    applicable_listings: List[int] = []
    applies_to_all: bool = False
    excluded_listings: List[int] = []
    start_date: datetime
    end_date: datetime
    usage_limit: Optional[int] = None
    used_count: int
    is_active: bool

    class Config:
        from_attributes = True


class CampaignOut(DiscountOut):
    priority: int


class StoreWideDiscountRequest(BaseModel):
    percentage: float
    exclude_listing_ids: List[int] = []
    end_date: Optional[datetime] = None


class ListingDiscountRequest(BaseModel):
    percentage: float
    end_date: Optional[datetime] = None
