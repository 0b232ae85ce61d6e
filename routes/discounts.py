from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from core.db import get_db
from core.ownership import get_current_user
from models.user import User
from schemas.discount import (
    CampaignCreate,
    CampaignOut,
    CampaignUpdate,
    DiscountCreate,
    DiscountOut,
    DiscountUpdate,
    ListingDiscountRequest,
    StoreWideDiscountRequest,
)
from services.catalog import DiscountCatalog
from services.lifecycle import StoreLifecycleManager

router = APIRouter(tags=["discounts"])


@router.post("/stores/{store_id}/discounts", response_model=DiscountOut, status_code=status.HTTP_201_CREATED)
def create_discount(store_id: int, data: DiscountCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return DiscountCatalog(db).create_discount(user, store_id, data.model_dump())


@router.get("/stores/{store_id}/discounts", response_model=List[DiscountOut])
def list_discounts(store_id: int, active_only: bool = False, db: Session = Depends(get_db)):
    StoreLifecycleManager(db).get_store(store_id)
    catalog = DiscountCatalog(db)
    return catalog.active_discounts(store_id) if active_only else catalog.store_discounts(store_id)


@router.patch("/discounts/{discount_id}", response_model=DiscountOut)
def update_discount(discount_id: int, data: DiscountUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return DiscountCatalog(db).update_discount(user, discount_id, data.model_dump(exclude_unset=True))


@router.patch("/discounts/{discount_id}/toggle", response_model=DiscountOut)
def toggle_discount(discount_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return DiscountCatalog(db).toggle_discount(user, discount_id)


@router.delete("/discounts/{discount_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_discount(discount_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    DiscountCatalog(db).delete_discount(user, discount_id)


@router.post("/stores/{store_id}/campaigns", response_model=CampaignOut, status_code=status.HTTP_201_CREATED)
def create_campaign(store_id: int, data: CampaignCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return DiscountCatalog(db).create_campaign(user, store_id, data.model_dump())


@router.get("/stores/{store_id}/campaigns", response_model=List[CampaignOut])
def list_campaigns(store_id: int, db: Session = Depends(get_db)):
    StoreLifecycleManager(db).get_store(store_id)
    return DiscountCatalog(db).store_campaigns(store_id)


@router.patch("/campaigns/{campaign_id}", response_model=CampaignOut)
def update_campaign(campaign_id: int, data: CampaignUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return DiscountCatalog(db).update_campaign(user, campaign_id, data.model_dump(exclude_unset=True))


@router.patch("/campaigns/{campaign_id}/toggle", response_model=CampaignOut)
def toggle_campaign(campaign_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return DiscountCatalog(db).toggle_campaign(user, campaign_id)


@router.delete("/campaigns/{campaign_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_campaign(campaign_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    DiscountCatalog(db).delete_campaign(user, campaign_id)


@router.post("/stores/{store_id}/store-wide-discount", response_model=DiscountOut, status_code=status.HTTP_201_CREATED)
def apply_store_wide_discount(
    store_id: int, data: StoreWideDiscountRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return DiscountCatalog(db).apply_store_wide_discount(
        user, store_id, data.percentage, data.exclude_listing_ids, end_date=data.end_date
    )


@router.delete("/stores/{store_id}/store-wide-discount")
def remove_store_wide_discount(store_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"removed": DiscountCatalog(db).remove_store_wide_discount(user, store_id)}


@router.post(
    "/stores/{store_id}/listings/{listing_id}/discount",
    response_model=DiscountOut,
    status_code=status.HTTP_201_CREATED,
)
def apply_listing_store_discount(
    store_id: int,
    listing_id: int,
    data: ListingDiscountRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return DiscountCatalog(db).apply_discount_to_listing(user, store_id, listing_id, data.percentage, end_date=data.end_date)


@router.delete("/stores/{store_id}/listings/{listing_id}/discount")
def remove_listing_store_discount(
    store_id: int, listing_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return {"updated": DiscountCatalog(db).remove_discount_from_listing(user, store_id, listing_id)}
