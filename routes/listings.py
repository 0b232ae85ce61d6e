from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from core.db import get_db
from core.ownership import get_current_user
from models.user import User
from routes.common import confirmation, render_outcome
from schemas.listing import (
    ListingCreate,
    ListingDetailOut,
    ListingDiscountRequest,
    ListingOut,
    ListingPresentationOut,
    ListingPurchaseOut,
    PriceInfoOut,
    PromoteRequest,
    PromotionPackageOut,
    TimerBarOut,
)
from services.listings import ListingService
from services.plans import PROMOTION_PACKAGES
from services.purchase import PromotionPurchaseFlow

router = APIRouter(prefix="/listings", tags=["listings"])


def _presentation(presentation) -> ListingPresentationOut:
    timer = presentation.timer_bar
    return ListingPresentationOut(
        price=PriceInfoOut.model_validate(presentation.price),
        badge_kind=presentation.badge_kind,
        deadline=presentation.deadline,
        timer_bar=TimerBarOut.model_validate(timer) if timer is not None else None,
    )


def _listing_purchase(outcome) -> ListingPurchaseOut:
    purchase = render_outcome(outcome)
    listing = ListingOut.model_validate(outcome.result) if outcome.result is not None else None
    return ListingPurchaseOut(purchase=purchase, listing=listing)


@router.get("/promotion-packages", response_model=List[PromotionPackageOut])
def list_promotion_packages():
    return list(PROMOTION_PACKAGES)


@router.post("", response_model=ListingOut, status_code=status.HTTP_201_CREATED)
def create_listing(data: ListingCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ListingService(db).create_listing(user, data.model_dump())


@router.get("/{listing_id}", response_model=ListingDetailOut)
def get_listing(listing_id: int, db: Session = Depends(get_db)):
    service = ListingService(db)
    listing = service.get_listing(listing_id)
    base = ListingOut.model_validate(listing).model_dump()
    return ListingDetailOut(
        **base,
        presentation=_presentation(service.present(listing)),
        visible=service.lifecycle.is_listing_visible(listing),
    )


@router.delete("/{listing_id}")
def delete_listing(listing_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    service = ListingService(db)
    listing = service.delete_listing(user, service.get_owned_listing(user, listing_id))
    return {"status": "deleted", "listing_id": listing.id}


@router.post("/{listing_id}/promote", response_model=ListingPurchaseOut)
def promote_listing(listing_id: int, data: PromoteRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    outcome = PromotionPurchaseFlow(db).promote_listing(user, listing_id, data.package_id, confirmation(data.confirmed))
    return _listing_purchase(outcome)


@router.post("/{listing_id}/discount", response_model=ListingPurchaseOut)
def apply_listing_discount(listing_id: int, data: ListingDiscountRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    payload = data.model_dump(exclude={"confirmed"})
    outcome = PromotionPurchaseFlow(db).apply_listing_discount(user, listing_id, payload, confirmation(data.confirmed))
    return _listing_purchase(outcome)


@router.delete("/{listing_id}/discount", response_model=ListingOut)
def remove_listing_discount(listing_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    service = ListingService(db)
    return service.remove_discount(user, service.get_owned_listing(user, listing_id))
