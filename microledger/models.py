"""
Ledger Records Module

Loan and Collection records and their storage (de)serialization. Money is
stored as Decimal strings, dates as ISO strings.
"""

from dataclasses import dataclass
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from .money import ZERO, floor_zero, round_money
from .splitter import PaymentMode
from .storage import StorageRecord
from .terms import CollectionType, LoanFigures


LOANS_TABLE = "loans"
COLLECTIONS_TABLE = "collections"

# Replay and ledger order: by day, then creation order
HISTORY_ORDER = [("date", 1), ("created_at", 1), ("id", 1)]
NEWEST_FIRST = [("created_at", -1), ("id", -1)]


class LoanStatus(Enum):
    ACTIVE = "active"
    CLOSED = "closed"


def status_for(principal_paid: Decimal, principal: Decimal) -> LoanStatus:
    """Closed exactly when the whole (positive) principal has been repaid"""
    if principal > ZERO and principal_paid >= principal:
        return LoanStatus.CLOSED
    return LoanStatus.ACTIVE


def normalize_party(name: Optional[str]) -> str:
    """Key used for case-insensitive party matching"""
    return (name or "").strip().lower()


def _date_or_none(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _iso_or_none(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class Loan(StorageRecord):
    """One lending agreement: terms, derived figures and repayment aggregate"""
    loan_number: str
    party_name: str
    principal: Decimal
    interest_rate: Decimal
    duration: int
    advance_interest: Decimal
    collection_type: CollectionType

    # Derived figures, only ever set together via apply_figures()
    disbursed_amount: Decimal = ZERO
    total_interest: Decimal = ZERO
    total_payable: Decimal = ZERO
    real_profit: Decimal = ZERO
    installment_amount: Decimal = ZERO

    # Aggregate owned by payment application and reconciliation
    principal_paid: Decimal = ZERO
    interest_collected: Decimal = ZERO
    status: LoanStatus = LoanStatus.ACTIVE

    # Borrower details
    loan_date: Optional[date] = None
    father_name: Optional[str] = None
    age: Optional[int] = None
    date_of_birth: Optional[date] = None
    occupation: Optional[str] = None
    address: Optional[str] = None
    mobile: Optional[str] = None
    aadhar: Optional[str] = None
    witness_mobile: Optional[str] = None

    @property
    def is_closed(self) -> bool:
        return self.status == LoanStatus.CLOSED

    @property
    def remaining_principal(self) -> Decimal:
        return round_money(floor_zero(self.principal - self.principal_paid))

    def apply_figures(self, figures: LoanFigures) -> None:
        """Replace terms and every derived figure in one step"""
        self.principal = figures.principal
        self.interest_rate = figures.interest_rate
        self.duration = figures.duration
        self.advance_interest = figures.advance_interest
        self.collection_type = figures.collection_type
        self.disbursed_amount = figures.disbursed_amount
        self.total_interest = figures.total_interest
        self.total_payable = figures.total_payable
        self.real_profit = figures.real_profit
        self.installment_amount = figures.installment_amount

    def set_aggregate(self, principal_paid: Decimal, interest_collected: Decimal) -> None:
        """Store repayment totals and derive status from them"""
        self.principal_paid = round_money(principal_paid)
        self.interest_collected = round_money(interest_collected)
        self.status = status_for(self.principal_paid, self.principal)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['collection_type'] = self.collection_type.value
        result['status'] = self.status.value
        result['party_key'] = normalize_party(self.party_name)
        for field_name in ('loan_date', 'date_of_birth'):
            result[field_name] = _iso_or_none(getattr(self, field_name))
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_number=data['loan_number'],
            party_name=data.get('party_name') or "",
            principal=Decimal(data['principal']),
            interest_rate=Decimal(data['interest_rate']),
            duration=int(data['duration']),
            advance_interest=Decimal(data.get('advance_interest') or '0'),
            collection_type=CollectionType(data['collection_type']),
            disbursed_amount=Decimal(data.get('disbursed_amount') or '0'),
            total_interest=Decimal(data.get('total_interest') or '0'),
            total_payable=Decimal(data.get('total_payable') or '0'),
            real_profit=Decimal(data.get('real_profit') or '0'),
            installment_amount=Decimal(data.get('installment_amount') or '0'),
            principal_paid=Decimal(data.get('principal_paid') or '0'),
            interest_collected=Decimal(data.get('interest_collected') or '0'),
            status=LoanStatus(data.get('status', 'active')),
            loan_date=_date_or_none(data.get('loan_date')),
            father_name=data.get('father_name'),
            age=data.get('age'),
            date_of_birth=_date_or_none(data.get('date_of_birth')),
            occupation=data.get('occupation'),
            address=data.get('address'),
            mobile=data.get('mobile'),
            aadhar=data.get('aadhar'),
            witness_mobile=data.get('witness_mobile')
        )


@dataclass
class Collection(StorageRecord):
    """One payment against a loan, with its principal/interest split"""
    loan_number: str
    party_name: str
    amount: Decimal
    date: date
    collection_type: CollectionType    # Type in effect when the payment was taken
    principal_paid: Decimal = ZERO
    interest_paid: Decimal = ZERO
    mode: PaymentMode = PaymentMode.NORMAL

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['date'] = self.date.isoformat()
        result['collection_type'] = self.collection_type.value
        result['mode'] = self.mode.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Collection':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_number=data['loan_number'],
            party_name=data.get('party_name') or "",
            amount=Decimal(data['amount']),
            date=date.fromisoformat(data['date']),
            collection_type=CollectionType(data['collection_type']),
            principal_paid=Decimal(data.get('principal_paid') or '0'),
            interest_paid=Decimal(data.get('interest_paid') or '0'),
            mode=PaymentMode(data.get('mode') or 'normal')
        )
