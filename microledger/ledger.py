"""
Ledger Summary Module

Derives the borrower-facing view of a loan (what was paid, what is owed,
what the next installment is) from the loan and its collection history.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from .models import Collection, Loan
from .money import ZERO, floor_zero, round_money
from .terms import CollectionType, HUNDRED


@dataclass(frozen=True)
class LedgerSummary:
    loan_amount: Decimal            # What the borrower actually received
    total_payable: Decimal
    total_paid: Decimal
    remaining_balance: Decimal
    remaining_principal: Decimal
    periodic_interest: Decimal
    installment_amount: Decimal
    collection_type: CollectionType

    def to_dict(self) -> Dict[str, Any]:
        return {
            "loan_amount": str(self.loan_amount),
            "total_payable": str(self.total_payable),
            "total_paid": str(self.total_paid),
            "remaining_balance": str(self.remaining_balance),
            "remaining_principal": str(self.remaining_principal),
            "periodic_interest": str(self.periodic_interest),
            "installment_amount": str(self.installment_amount),
            "collection_type": self.collection_type.value
        }


@dataclass
class Ledger:
    """Collection history with its summary; summary is None when no loan matched"""
    collections: List[Collection] = field(default_factory=list)
    summary: Optional[LedgerSummary] = None


def summarize(loan: Loan, collections: Sequence[Collection]) -> LedgerSummary:
    """
    Summarize a loan for its borrower.

    Interest-only loans owe the remaining principal plus the next period's
    interest (nothing once closed). Amortizing loans owe their total payable
    less everything paid so far.
    """
    total_paid = round_money(sum((c.amount for c in collections), ZERO))
    remaining_principal = loan.remaining_principal
    periodic_interest = round_money(remaining_principal * loan.interest_rate / HUNDRED)

    if loan.collection_type.is_interest_only:
        total_payable = round_money(remaining_principal + periodic_interest)
        remaining_balance = round_money(ZERO) if loan.is_closed else total_payable
        installment = periodic_interest
    else:
        if loan.total_payable > ZERO:
            total_payable = round_money(loan.total_payable)
        else:
            total_payable = round_money(loan.principal + loan.total_interest)
        remaining_balance = round_money(floor_zero(total_payable - total_paid))
        installment = round_money(loan.installment_amount)

    return LedgerSummary(
        loan_amount=round_money(loan.disbursed_amount),
        total_payable=total_payable,
        total_paid=total_paid,
        remaining_balance=remaining_balance,
        remaining_principal=remaining_principal,
        periodic_interest=periodic_interest,
        installment_amount=installment,
        collection_type=loan.collection_type
    )


def build_ledger(loan: Optional[Loan], collections: Sequence[Collection]) -> Ledger:
    if loan is None:
        return Ledger(collections=list(collections), summary=None)
    return Ledger(collections=list(collections), summary=summarize(loan, collections))
