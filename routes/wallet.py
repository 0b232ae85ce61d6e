from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.db import get_db
from core.ownership import get_current_user
from models.user import User
from schemas.wallet import WalletOut, WalletTransactionOut
from services.wallet import WalletLedger, from_minor

router = APIRouter(prefix="/wallet", tags=["wallet"])


@router.get("", response_model=WalletOut)
def get_wallet(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    ledger = WalletLedger(db)
    wallet = ledger.get_wallet(user.id)
    db.commit()
    return WalletOut(user_id=user.id, balance=float(from_minor(wallet.balance_minor)), currency=wallet.currency)


@router.get("/transactions", response_model=List[WalletTransactionOut])
def list_transactions(limit: int = 50, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return [
        WalletTransactionOut(
            id=tx.id,
            kind=tx.kind,
            amount=float(from_minor(tx.amount_minor)),
            balance_after=float(from_minor(tx.balance_after_minor)),
            description=tx.description,
            reference=tx.reference,
            created_at=tx.created_at,
        )
        for tx in WalletLedger(db).transactions(user.id, limit=min(max(limit, 1), 200))
    ]
