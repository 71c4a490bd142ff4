"""
Loan Terms Module

Collection types and the calculator that derives a loan's financial figures
from its principal, rate, duration, advance interest and collection type.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

from .exceptions import InvalidLoanTerms, ValidationError
from .money import round_money, to_decimal, ZERO


HUNDRED = Decimal('100')


class CollectionType(Enum):
    """How payments against a loan are classified"""
    REGULAR = "regular"    # Amortizing: every payment carries principal and interest
    MONTHLY = "monthly"    # Interest-only, collected monthly
    FIRE = "fire"          # Interest-only

    @property
    def is_interest_only(self) -> bool:
        return self in (CollectionType.MONTHLY, CollectionType.FIRE)

    @classmethod
    def parse(cls, value: Any) -> 'CollectionType':
        """Accept an enum member or its (case-insensitive) string value"""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise ValidationError(f"Unknown collection type: {value!r}")


@dataclass(frozen=True)
class LoanFigures:
    """Inputs and derived figures of a loan, always computed together"""
    principal: Decimal
    interest_rate: Decimal
    duration: int
    advance_interest: Decimal
    collection_type: CollectionType
    interest: Decimal              # principal x rate / 100, one period's interest
    total_interest: Decimal        # interest + advance
    disbursed_amount: Decimal      # principal - advance
    total_payable: Decimal         # principal + interest
    real_profit: Decimal           # total payable - disbursed amount
    installment_amount: Decimal


def compute_terms(principal: Any, interest_rate: Any, duration: Any,
                  advance_interest: Any = 0,
                  collection_type: Any = CollectionType.REGULAR) -> LoanFigures:
    """
    Compute every derived figure of a loan.

    Interest-only loans (monthly, fire) have an installment equal to one
    period's interest; amortizing loans spread the total payable evenly over
    the duration.

    Raises:
        InvalidLoanTerms: If principal, rate or duration is missing or not
            positive, duration is fractional, the advance is invalid, or the
            collection type is unknown
    """
    principal_value = to_decimal(principal)
    rate = to_decimal(interest_rate)
    installments = to_decimal(duration)
    advance = to_decimal(advance_interest if advance_interest is not None else 0)

    if principal_value is None or principal_value <= ZERO:
        raise InvalidLoanTerms(f"Principal must be a positive number, got {principal!r}")
    if rate is None or rate <= ZERO:
        raise InvalidLoanTerms(f"Interest rate must be a positive number, got {interest_rate!r}")
    if installments is None or installments <= ZERO:
        raise InvalidLoanTerms(f"Duration must be a positive number, got {duration!r}")
    if installments != installments.to_integral_value():
        raise InvalidLoanTerms(f"Duration must be a whole number of installments, got {duration!r}")
    if advance is None or advance < ZERO:
        raise InvalidLoanTerms(f"Advance interest must be zero or more, got {advance_interest!r}")

    try:
        kind = CollectionType.parse(collection_type)
    except ValidationError as e:
        raise InvalidLoanTerms(str(e)) from e

    interest = principal_value * rate / HUNDRED
    total_payable = principal_value + interest
    disbursed = principal_value - advance
    if kind.is_interest_only:
        installment = interest
    else:
        installment = total_payable / installments

    return LoanFigures(
        principal=round_money(principal_value),
        interest_rate=rate,
        duration=int(installments),
        advance_interest=round_money(advance),
        collection_type=kind,
        interest=round_money(interest),
        total_interest=round_money(interest + advance),
        disbursed_amount=round_money(disbursed),
        total_payable=round_money(total_payable),
        real_profit=round_money(total_payable - disbursed),
        installment_amount=round_money(installment)
    )
