from typing import List

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from core.db import get_db
from core.errors import ValidationError
from core.ownership import get_current_user
from models.store import Store
from models.user import User
from routes.common import confirmation, render_outcome
from schemas.purchase import PurchaseQuoteOut
from schemas.store import (
    ExpirationInfoOut,
    StoreCreate,
    StoreDetailOut,
    StoreOut,
    StorePlanOut,
    StorePlanPayment,
    StorePurchaseOut,
    StoreQuoteRequest,
    StoreUsageOut,
)
from services.lifecycle import StoreLifecycleManager
from services.plans import STORE_PLANS
from services.purchase import PromotionPurchaseFlow, PurchaseKind

router = APIRouter(prefix="/stores", tags=["stores"])

QUOTABLE_KINDS = (PurchaseKind.STORE_CREATE, PurchaseKind.STORE_RENEW, PurchaseKind.STORE_REACTIVATE)


def _store_detail(manager: StoreLifecycleManager, store: Store) -> StoreDetailOut:
    base = StoreOut.model_validate(store).model_dump()
    return StoreDetailOut(
        **base,
        usage=StoreUsageOut.model_validate(manager.usage(store)),
        expiration=ExpirationInfoOut.model_validate(manager.expiration_info(store)),
        active_listings=manager.active_listing_count(store.id),
    )


def _store_purchase(outcome, response: Response) -> StorePurchaseOut:
    purchase = render_outcome(outcome)
    if outcome.ok:
        response.status_code = status.HTTP_201_CREATED if outcome.purchase.kind == PurchaseKind.STORE_CREATE else status.HTTP_200_OK
    store = StoreOut.model_validate(outcome.result) if outcome.result is not None else None
    return StorePurchaseOut(purchase=purchase, store=store)


@router.get("/plans", response_model=List[StorePlanOut])
def list_plans():
    return list(STORE_PLANS)


@router.get("/mine", response_model=List[StoreOut])
def my_stores(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return StoreLifecycleManager(db).user_stores(user.id)


@router.post("/quote", response_model=PurchaseQuoteOut)
def quote_store_purchase(data: StoreQuoteRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        kind = PurchaseKind(data.kind)
    except ValueError:
        raise ValidationError(f"Unknown purchase kind: {data.kind}")
    if kind not in QUOTABLE_KINDS:
        raise ValidationError("Only store purchases can be quoted here")

    flow = PromotionPurchaseFlow(db)
    prepared = flow.prepare(user, kind, plan_or_tier_id=data.plan_id, target_id=data.store_id, data={"name": data.name})
    quote = flow.quote(user, prepared)
    return PurchaseQuoteOut(
        kind=quote.purchase.kind.value,
        description=quote.purchase.description,
        amount=float(quote.purchase.amount),
        balance=float(quote.balance),
        shortfall=float(quote.shortfall),
        sufficient=quote.sufficient,
    )


@router.post("", response_model=StorePurchaseOut)
def create_store(data: StoreCreate, response: Response, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    store_data = data.model_dump(exclude={"plan_id", "confirmed"})
    outcome = PromotionPurchaseFlow(db).create_store(user, data.plan_id, store_data, confirmation(data.confirmed))
    return _store_purchase(outcome, response)


@router.get("/{store_id}", response_model=StoreDetailOut)
def get_store(store_id: int, db: Session = Depends(get_db)):
    manager = StoreLifecycleManager(db)
    return _store_detail(manager, manager.get_store(store_id))


@router.post("/{store_id}/renew", response_model=StorePurchaseOut)
def renew_store(store_id: int, data: StorePlanPayment, response: Response, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    outcome = PromotionPurchaseFlow(db).renew_store(user, store_id, data.plan_id, confirmation(data.confirmed))
    return _store_purchase(outcome, response)


@router.post("/{store_id}/reactivate", response_model=StorePurchaseOut)
def reactivate_store(store_id: int, data: StorePlanPayment, response: Response, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    outcome = PromotionPurchaseFlow(db).reactivate_store(user, store_id, data.plan_id, confirmation(data.confirmed))
    return _store_purchase(outcome, response)


@router.delete("/{store_id}")
def delete_store(store_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    manager = StoreLifecycleManager(db)
    store = manager.get_owned_store(user, store_id)
    manager.delete_store(user, store)
    return {"status": "deleted", "store_id": store.id}


@router.post("/{store_id}/follow")
def follow_store(store_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    manager = StoreLifecycleManager(db)
    store = manager.follow(user, manager.get_store(store_id))
    return {"following": True, "follower_count": store.follower_count}


@router.delete("/{store_id}/follow")
def unfollow_store(store_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    manager = StoreLifecycleManager(db)
    store = manager.unfollow(user, manager.get_store(store_id))
    return {"following": False, "follower_count": store.follower_count}
