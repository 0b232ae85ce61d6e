import logging
from decimal import Decimal

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.config import settings
from core.db import get_db
from core.errors import NotFoundError, PaymentError, ValidationError
from core.ownership import get_current_user
from models.payment import Payment
from models.user import User
from schemas.payment import PaymentOut, PaymentVerifyRequest, TopupRequest, TopupResponse
from services.payriff import check_status, create_payment, new_order_id
from services.wallet import WalletLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/topup", response_model=TopupResponse)
def init_topup(data: TopupRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    amount = Decimal(str(data.amount)).quantize(Decimal("0.01"))
    if amount <= 0:
        raise ValidationError("Amount must be greater than 0")
    if amount > settings.WALLET_MAX_TOPUP:
        raise ValidationError(f"A single top-up cannot exceed {settings.WALLET_MAX_TOPUP}")

    order_id = new_order_id()
    resp = create_payment(amount, settings.DEFAULT_CURRENCY, f"Wallet top-up for user {user.id}", order_id, data.language)
    if not resp.get("success"):
        raise PaymentError(resp.get("error") or "Unable to initialize payment")

    payment = Payment(
        user_id=user.id,
        provider="payriff",
        order_id=resp["order_id"],
        amount=amount,
        currency=settings.DEFAULT_CURRENCY,
        status="initialized",
        payment_url=resp["payment_url"],
        raw_response=resp.get("raw"),
    )
    db.add(payment)
    db.commit()
    return {
        "order_id": payment.order_id,
        "payment_url": payment.payment_url,
        "amount": float(amount),
        "currency": payment.currency,
    }


@router.post("/verify", response_model=PaymentOut)
def verify_topup(data: PaymentVerifyRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    payment = db.query(Payment).filter(Payment.user_id == user.id, Payment.order_id == data.order_id).one_or_none()
    if not payment:
        raise NotFoundError("Payment not found")

    ledger = WalletLedger(db)
    # A verified top-up is credited once; later calls only report it
    if payment.status != "approved":
        gateway_status = check_status(payment.order_id)
        if gateway_status == "approved":
            # Only the request whose UPDATE flips the row may credit it
            claimed = (
                db.query(Payment)
                .filter(Payment.id == payment.id, Payment.status != "approved")
                .update({Payment.status: "approved"}, synchronize_session=False)
            )
            if claimed == 1:
                ledger.credit(user.id, payment.amount, "Wallet top-up", reference=payment.order_id)
                logger.info("Top-up %s approved for user %s", payment.order_id, user.id)
            else:
                logger.info("Top-up %s was already approved by another request", payment.order_id)
        elif gateway_status != "unknown":
            db.query(Payment).filter(Payment.id == payment.id, Payment.status != "approved").update(
                {Payment.status: gateway_status}, synchronize_session=False
            )
        db.commit()
        db.refresh(payment)

    return PaymentOut(
        id=payment.id,
        provider=payment.provider,
        order_id=payment.order_id,
        amount=float(payment.amount),
        currency=payment.currency,
        status=payment.status,
        balance=float(ledger.balance(user.id)),
    )
