import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from sqlalchemy.orm import Session

from core.config import settings
from core.errors import NotFoundError, ValidationError
from models.user import User
from models.wallet import Wallet, WalletTransaction
from services.pricing import to_decimal

logger = logging.getLogger(__name__)

MINOR_UNITS = 100


def to_minor(amount: Decimal) -> int:
    return int((Decimal(amount) * MINOR_UNITS).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def from_minor(amount_minor: int) -> Decimal:
    return (Decimal(amount_minor) / MINOR_UNITS).quantize(Decimal("0.01"))


def checked_amount(amount) -> Decimal:
    """Parse a wallet amount, refusing anything that is not a positive whole number of cents."""
    amount = to_decimal(amount)
    if amount is None or amount <= 0:
        raise ValidationError("Amount must be positive")
    if amount != amount.quantize(Decimal("0.01")):
        raise ValidationError("Amount cannot have more than two decimal places", amount=str(amount))
    return amount


class WalletLedger:
    """The only way money enters or leaves a user's wallet.

    ``spend`` and ``credit`` flush but never commit; the caller decides when
    the surrounding unit of work is final.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_wallet(self, user_id: int) -> Wallet:
        wallet = self.db.get(Wallet, user_id)
        if wallet is None:
            if self.db.get(User, user_id) is None:
                raise NotFoundError("User not found", user_id=user_id)
            wallet = Wallet(user_id=user_id, balance_minor=0, currency=settings.DEFAULT_CURRENCY)
            self.db.add(wallet)
            self.db.flush()
        return wallet

    def balance(self, user_id: int) -> Decimal:
        return from_minor(self.get_wallet(user_id).balance_minor)

    def spend(self, user_id: int, amount: Decimal, description: str = "", reference: Optional[str] = None) -> bool:
        """Debit ``amount`` if the balance covers it.

        Returns False and leaves the balance untouched otherwise. The check
        and the debit are one conditional UPDATE so two concurrent spends can
        never both pass against the same balance.
        """
        amount = checked_amount(amount)
        amount_minor = to_minor(amount)
        wallet = self.get_wallet(user_id)

        updated = (
            self.db.query(Wallet)
            .filter(Wallet.user_id == user_id, Wallet.balance_minor >= amount_minor)
            .update({Wallet.balance_minor: Wallet.balance_minor - amount_minor}, synchronize_session=False)
        )
        self.db.expire(wallet, ["balance_minor"])
        if updated != 1:
            logger.warning(
                "Wallet debit of %s refused for user %s (balance %s)",
                amount,
                user_id,
                from_minor(wallet.balance_minor),
            )
            return False

        self._record(wallet, "debit", amount_minor, description, reference)
        logger.info("Debited %s from user %s wallet (%s)", amount, user_id, description or "no description")
        return True

    def credit(self, user_id: int, amount: Decimal, description: str = "", reference: Optional[str] = None) -> WalletTransaction:
        amount = checked_amount(amount)
        if amount > settings.WALLET_MAX_TOPUP:
            raise ValidationError(f"A single top-up cannot exceed {settings.WALLET_MAX_TOPUP}")
        amount_minor = to_minor(amount)
        wallet = self.get_wallet(user_id)

        if reference:
            existing = (
                self.db.query(WalletTransaction)
                .filter(WalletTransaction.kind == "credit", WalletTransaction.reference == reference)
                .one_or_none()
            )
            if existing is not None:
                logger.info("Credit %s already applied, skipping", reference)
                return existing

        ceiling = to_minor(settings.WALLET_MAX_BALANCE)
        updated = (
            self.db.query(Wallet)
            .filter(Wallet.user_id == user_id, Wallet.balance_minor + amount_minor <= ceiling)
            .update({Wallet.balance_minor: Wallet.balance_minor + amount_minor}, synchronize_session=False)
        )
        self.db.expire(wallet, ["balance_minor"])
        if updated != 1:
            raise ValidationError(
                f"Wallet balance cannot exceed {settings.WALLET_MAX_BALANCE}",
                balance=from_minor(wallet.balance_minor),
            )

        transaction = self._record(wallet, "credit", amount_minor, description, reference)
        logger.info("Credited %s to user %s wallet (%s)", amount, user_id, reference or description)
        return transaction

    def transactions(self, user_id: int, limit: int = 50) -> List[WalletTransaction]:
        return (
            self.db.query(WalletTransaction)
            .filter(WalletTransaction.user_id == user_id)
            .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
            .limit(limit)
            .all()
        )

    def _record(self, wallet: Wallet, kind: str, amount_minor: int, description: str, reference: Optional[str]) -> WalletTransaction:
        transaction = WalletTransaction(
            user_id=wallet.user_id,
            kind=kind,
            amount_minor=amount_minor,
            balance_after_minor=wallet.balance_minor,
            description=description[:255],
            reference=reference,
        )
        self.db.add(transaction)
        self.db.flush()
        return transaction
