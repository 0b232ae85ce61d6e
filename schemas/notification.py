from datetime import datetime
from pydantic import BaseModel
from typing import Optional


class NotificationOut(BaseModel):
    id: int
    kind: str
    title: str
    message: str
    store_id: Optional[int] = None
    listing_id: Optional[int] = None
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True
