"""Referral discount terms.

A code carries one numeric ``discount_value`` whose meaning depends on
``discount_type``. It is lifted into one of two variants as soon as it leaves
the row, so nothing downstream interprets the number through a string flag.
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from app.models.enums import DiscountType

_CENTS = Decimal("0.01")


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(_CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class FixedDiscount:
    amount: Decimal

    type = DiscountType.FIXED

    @property
    def value(self) -> Decimal:
        return self.amount

    @property
    def headline(self) -> str:
        """Short label for share copy: '£10', '£7.50'."""
        amount = _money(self.amount)
        if amount == amount.to_integral_value():
            return f"£{int(amount)}"
        return f"£{amount}"

    @property
    def formatted(self) -> str:
        return f"£{_money(self.amount)} off"

    def redemption_amount(self) -> Decimal | None:
        """Amount fixed at redemption time."""
        return _money(self.amount)

    def resolve(self, price: Decimal | None = None) -> Decimal:
        """Never more than the booking price when one is known."""
        amount = _money(self.amount)
        if price is not None:
            amount = min(amount, _money(price))
        return amount


@dataclass(frozen=True)
class PercentageDiscount:
    percent: Decimal

    type = DiscountType.PERCENTAGE

    @property
    def value(self) -> Decimal:
        return self.percent

    @property
    def headline(self) -> str:
        return f"{self.percent.normalize():f}%"

    @property
    def formatted(self) -> str:
        return f"{self.percent.normalize():f}% off"

    def redemption_amount(self) -> Decimal | None:
        """Unknown until a booking price exists."""
        return None

    def resolve(self, price: Decimal | None = None) -> Decimal | None:
        if price is None:
            return None
        return _money(Decimal(price) * self.percent / Decimal("100"))


Discount = FixedDiscount | PercentageDiscount


def make_discount(discount_type: DiscountType | str, value: Decimal) -> Discount:
    value = Decimal(value)
    if DiscountType(discount_type) == DiscountType.PERCENTAGE:
        return PercentageDiscount(percent=value)
    return FixedDiscount(amount=value)


def discount_from_code(code) -> Discount:
    """Discount terms of a ``ReferralCode`` row."""
    return make_discount(code.discount_type, code.discount_value)
