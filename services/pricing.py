"""Effective price and countdown resolution for a listing.

Pure functions of their inputs: no session, no clock other than the ``now``
argument, no exceptions for malformed data. Several promotion sources can
target the same listing; exactly one of them decides the displayed price:

1. an active store discount or campaign that lists the listing (catalog
   order, discounts before campaigns);
2. the listing's own discount flag;
3. nothing, in which case the listing's price is shown as is.

The countdown deadline is computed separately and may come from a different
source than the one that won the price.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, Optional, Sequence

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0")

PERCENTAGE = "percentage"
FIXED_AMOUNT = "fixed_amount"


@dataclass(frozen=True)
class PriceInfo:
    original_price: Decimal
    discounted_price: Decimal
    discount_percentage: Decimal
    discount_type: Optional[str]
    discount_value: Decimal
    absolute_savings: Decimal
    source: str = "none"  # discount, campaign, listing, none
    source_id: Optional[int] = None

    @property
    def has_discount(self) -> bool:
        return self.absolute_savings > ZERO

    @property
    def badge_percentage(self) -> int:
        return int(self.discount_percentage.quantize(Decimal(1), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class TimerBar:
    title: str
    color: str
    ends_at: datetime


@dataclass(frozen=True)
class ListingPresentation:
    price: PriceInfo
    badge_kind: Optional[str]
    deadline: Optional[datetime]
    timer_bar: Optional[TimerBar]


def to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            return None
    if not result.is_finite():
        return None
    return result


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def as_datetime(value: Any) -> Optional[datetime]:
    """Coerce a stored timestamp to naive UTC; unparseable values become None."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def is_running(promo: Any, now: datetime) -> bool:
    if not getattr(promo, "is_active", True):
        return False
    start = as_datetime(getattr(promo, "start_date", None))
    end = as_datetime(getattr(promo, "end_date", None))
    if start is None or end is None:
        return False
    return start <= now <= end


def applies_to(promo: Any, listing_id: Any, store_id: Any = None) -> bool:
    """Targeted promotions name their listings; store-wide ones cover every
    listing of their own store except the excluded ones."""
    if getattr(promo, "applies_to_all", False):
        if store_id is None or str(store_id) != str(getattr(promo, "store_id", None)):
            return False
        excluded = getattr(promo, "excluded_listings", None) or ()
        return str(listing_id) not in {str(target) for target in excluded}
    targets = getattr(promo, "applicable_listings", None) or ()
    return str(listing_id) in {str(target) for target in targets}


def _matching(listing: Any, promos: Iterable[Any], now: datetime) -> list:
    store_id = getattr(listing, "store_id", None)
    return [promo for promo in promos if is_running(promo, now) and applies_to(promo, listing.id, store_id)]


def _build(
    base: Decimal,
    discounted: Decimal,
    discount_type: Optional[str],
    discount_value: Decimal,
    source: str,
    source_id: Optional[int] = None,
) -> PriceInfo:
    base = max(base, ZERO)
    discounted = min(max(discounted, ZERO), base)
    percentage = (base - discounted) / base * HUNDRED if base > ZERO else ZERO
    original_price = round_money(base)
    discounted_price = round_money(discounted)
    return PriceInfo(
        original_price=original_price,
        discounted_price=discounted_price,
        discount_percentage=percentage,
        discount_type=discount_type,
        discount_value=discount_value,
        absolute_savings=original_price - discounted_price,
        source=source,
        source_id=source_id,
    )


def _no_discount(price: Decimal) -> PriceInfo:
    return _build(price, price, None, ZERO, "none")


def _apply_catalog(listing: Any, promo: Any, source: str) -> PriceInfo:
    price = to_decimal(listing.price) or ZERO
    original = to_decimal(getattr(listing, "original_price", None))
    base = original if original is not None else price
    value = to_decimal(promo.value) or ZERO

    if promo.type == FIXED_AMOUNT:
        savings = min(max(value, ZERO), base)
        return _build(base, base - savings, FIXED_AMOUNT, round_money(savings), source, promo.id)

    # percentage, buy_x_get_y and every campaign type share percentage math
    percentage = min(max(value, ZERO), HUNDRED)
    savings = base * percentage / HUNDRED
    cap = to_decimal(getattr(promo, "max_discount_amount", None))
    if cap is not None and savings > cap:
        savings = max(cap, ZERO)
    return _build(base, base - savings, PERCENTAGE, percentage, source, promo.id)


def _apply_explicit(listing: Any, price: Decimal, original: Optional[Decimal]) -> Optional[PriceInfo]:
    value = to_decimal(listing.discount_value)
    if value is None or value <= ZERO:
        return None
    if listing.discount_type == PERCENTAGE:
        if original is not None and original > ZERO:
            return _build(original, original * (HUNDRED - value) / HUNDRED, PERCENTAGE, value, "listing")
        if value >= HUNDRED:
            return None
        return _build(price * HUNDRED / (HUNDRED - value), price, PERCENTAGE, value, "listing")
    if listing.discount_type == FIXED_AMOUNT:
        base = original if original is not None and original > ZERO else price + value
        return _build(base, base - value, FIXED_AMOUNT, round_money(min(value, base)), "listing")
    return None


def _apply_listing(listing: Any) -> Optional[PriceInfo]:
    price = to_decimal(listing.price) or ZERO
    original = to_decimal(getattr(listing, "original_price", None))

    if getattr(listing, "discount_type", None):
        return _apply_explicit(listing, price, original)

    # Legacy rows: only a percentage was stored, so the discount type has to be
    # reconstructed from it and from the price delta.
    percentage = to_decimal(getattr(listing, "discount_percentage", None))
    if percentage is not None and percentage >= 1:
        if original is not None and original > ZERO:
            return _build(original, original * (HUNDRED - percentage) / HUNDRED, PERCENTAGE, percentage, "listing")
        if percentage >= HUNDRED:
            return None
        return _build(price * HUNDRED / (HUNDRED - percentage), price, PERCENTAGE, percentage, "listing")

    # A percentage below 1 is a fixed amount that was percent-encoded; the
    # price delta is recomputed rather than trusting the stored figure.
    if original is not None and original > price:
        savings = (original - price).quantize(Decimal(1), rounding=ROUND_HALF_UP)
        return _build(original, price, FIXED_AMOUNT, savings, "listing")

    return None


def resolve_price(
    listing: Any,
    discounts: Sequence[Any] = (),
    campaigns: Sequence[Any] = (),
    now: Optional[datetime] = None,
) -> PriceInfo:
    now = now or datetime.utcnow()

    for promo in _matching(listing, discounts, now):
        return _apply_catalog(listing, promo, "discount")
    for promo in _matching(listing, campaigns, now):
        return _apply_catalog(listing, promo, "campaign")

    if getattr(listing, "has_discount", False):
        resolved = _apply_listing(listing)
        if resolved is not None:
            return resolved

    return _no_discount(to_decimal(listing.price) or ZERO)


def promotion_deadline(
    listing: Any,
    discounts: Sequence[Any] = (),
    campaigns: Sequence[Any] = (),
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """Nearest future end date across every source, whichever one won the price."""
    now = now or datetime.utcnow()
    candidates = [promo.end_date for promo in _matching(listing, discounts, now)]
    candidates += [promo.end_date for promo in _matching(listing, campaigns, now)]
    if getattr(listing, "has_discount", False):
        candidates.append(getattr(listing, "discount_end_date", None))
    candidates.append(getattr(listing, "promotion_end_date", None))

    future = [moment for moment in map(as_datetime, candidates) if moment is not None and moment > now]
    return min(future) if future else None


def timer_bar(listing: Any, now: Optional[datetime] = None) -> Optional[TimerBar]:
    now = now or datetime.utcnow()
    if not getattr(listing, "timer_bar_enabled", False) or not getattr(listing, "timer_bar_title", None):
        return None
    ends_at = as_datetime(getattr(listing, "timer_bar_end_date", None))
    if ends_at is None or ends_at <= now:
        return None
    return TimerBar(title=listing.timer_bar_title, color=listing.timer_bar_color or "#FF6B6B", ends_at=ends_at)


def present_listing(
    listing: Any,
    discounts: Sequence[Any] = (),
    campaigns: Sequence[Any] = (),
    now: Optional[datetime] = None,
) -> ListingPresentation:
    now = now or datetime.utcnow()
    price = resolve_price(listing, discounts, campaigns, now)

    running_campaigns = sorted(_matching(listing, campaigns, now), key=lambda c: -(getattr(c, "priority", 0) or 0))
    if running_campaigns:
        badge_kind = running_campaigns[0].type
    elif price.has_discount:
        badge_kind = "discount"
    else:
        badge_kind = None

    return ListingPresentation(
        price=price,
        badge_kind=badge_kind,
        deadline=promotion_deadline(listing, discounts, campaigns, now),
        timer_bar=timer_bar(listing, now),
    )
