"""
Payment Splitter Module

Decides how much of a single payment repays principal and how much is
interest. Pure: no storage, no clock, no logging.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

from .exceptions import InsufficientClosingAmount, InvalidPaymentMode
from .money import round_money, floor_zero, ZERO
from .terms import CollectionType, HUNDRED


class PaymentMode(Enum):
    """Intent of a payment"""
    NORMAL = "normal"
    CLOSE = "close"     # Settle the remaining principal; excess counts as interest

    @classmethod
    def parse(cls, value: Any) -> 'PaymentMode':
        if value is None:
            return cls.NORMAL
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise InvalidPaymentMode(f"Unknown payment mode: {value!r}")


@dataclass(frozen=True)
class PaymentSplit:
    """Principal and interest portions of one payment"""
    principal_paid: Decimal
    interest_paid: Decimal

    @property
    def amount(self) -> Decimal:
        return self.principal_paid + self.interest_paid


def split_payment(
    amount: Decimal,
    remaining_principal: Decimal,
    interest_rate: Decimal,
    collection_type: CollectionType,
    mode: PaymentMode = PaymentMode.NORMAL
) -> PaymentSplit:
    """
    Split a payment into principal and interest.

    Rules, first match wins:
      1. Close mode takes exactly the remaining principal; the rest is interest.
      2. Interest-only collection types put the whole payment into interest.
      3. Regular loans repay amount / (1 + rate/100) of principal. A ratio at
         or below zero makes the whole payment interest.

    Principal is capped at the remaining principal (and at the payment
    itself) and rounded to the cent. Interest is whatever is left, so the
    two always add up to the payment.

    Args:
        amount: Payment amount, greater than zero
        remaining_principal: Principal still owed before this payment
        interest_rate: Loan rate in percent
        collection_type: Classification in effect for this payment
        mode: Normal or close

    Raises:
        InsufficientClosingAmount: Close mode with amount below remaining principal
    """
    remaining = round_money(floor_zero(remaining_principal))

    if mode == PaymentMode.CLOSE:
        if amount < remaining:
            raise InsufficientClosingAmount(remaining)
        principal = remaining
    elif collection_type.is_interest_only:
        principal = ZERO
    else:
        ratio = Decimal('1') + interest_rate / HUNDRED
        principal = amount / ratio if ratio > ZERO else ZERO

    principal = round_money(min(principal, remaining, amount))
    return PaymentSplit(principal_paid=principal, interest_paid=amount - principal)
