"""Read-only catalog of store plans and listing promotion packages."""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Tuple

from core.errors import ValidationError


@dataclass(frozen=True)
class StorePlan:
    id: str
    name: Dict[str, str]
    price: Decimal
    max_ads: int
    duration_days: int
    features: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PromotionPackage:
    id: str
    name: Dict[str, str]
    type: str  # featured, premium, vip
    price: Decimal
    duration_days: int


STORE_PLANS: Tuple[StorePlan, ...] = (
    StorePlan(
        id="basic",
        name={"az": "Əsas Paket", "ru": "Базовый пакет", "en": "Basic"},
        price=Decimal("100"),
        max_ads=200,
        duration_days=30,
        features=("Up to 200 listings", "Store profile", "Contact details"),
    ),
    StorePlan(
        id="premium",
        name={"az": "Premium Paket", "ru": "Премиум пакет", "en": "Premium"},
        price=Decimal("150"),
        max_ads=350,
        duration_days=30,
        features=("Up to 350 listings", "Store profile", "Contact details", "Priority support"),
    ),
    StorePlan(
        id="business",
        name={"az": "Biznes Paket", "ru": "Бизнес пакет", "en": "Business"},
        price=Decimal("200"),
        max_ads=500,
        duration_days=30,
        features=("Up to 500 listings", "Store profile", "Contact details", "Priority support", "Analytics"),
    ),
)

PROMOTION_PACKAGES: Tuple[PromotionPackage, ...] = (
    PromotionPackage("featured-7", {"az": "Önə Çəkmə (7 gün)", "en": "Featured (7 days)"}, "featured", Decimal("2"), 7),
    PromotionPackage("featured-14", {"az": "Önə Çəkmə (14 gün)", "en": "Featured (14 days)"}, "featured", Decimal("3"), 14),
    PromotionPackage("premium-7", {"az": "Premium (7 gün)", "en": "Premium (7 days)"}, "premium", Decimal("5"), 7),
    PromotionPackage("premium-14", {"az": "Premium (14 gün)", "en": "Premium (14 days)"}, "premium", Decimal("8"), 14),
    PromotionPackage("vip-7", {"az": "VIP (7 gün)", "en": "VIP (7 days)"}, "vip", Decimal("8"), 7),
    PromotionPackage("vip-14", {"az": "VIP (14 gün)", "en": "VIP (14 days)"}, "vip", Decimal("12"), 14),
    PromotionPackage("vip-30", {"az": "VIP (30 gün)", "en": "VIP (30 days)"}, "vip", Decimal("18"), 30),
)


def get_store_plan(plan_id: str | None) -> StorePlan:
    if not plan_id:
        raise ValidationError("Select a store plan first")
    for plan in STORE_PLANS:
        if plan.id == plan_id:
            return plan
    raise ValidationError(f"Unknown store plan: {plan_id}")


def get_promotion_package(package_id: str | None) -> PromotionPackage:
    if not package_id:
        raise ValidationError("Select a promotion package first")
    for package in PROMOTION_PACKAGES:
        if package.id == package_id:
            return package
    raise ValidationError(f"Unknown promotion package: {package_id}")
