"""
Loan Module

Handles loan creation, term changes with full recomputation of derived
figures, lookups and listing. Repayment aggregates are never written here
directly; they come from payment application and reconciliation.
"""

import logging
import re
import uuid
from datetime import datetime, timezone, date
from typing import Any, Dict, List, Optional

from .audit import AuditTrail, AuditEventType
from .exceptions import DuplicateLoanNumber, InvalidLoanTerms, LoanNotFound, ValidationError
from .locking import LoanLockRegistry
from .logging_config import log_action
from .models import Loan, LoanStatus, normalize_party, LOANS_TABLE, COLLECTIONS_TABLE
from .money import to_decimal
from .reconciliation import ReconciliationEngine
from .storage import StorageInterface
from .terms import CollectionType, compute_terms


logger = logging.getLogger("microledger.loans")

# Patch keys that feed compute_terms
TERM_FIELDS = ("principal", "interest_rate", "duration", "advance_interest", "collection_type")

# Owned by payment application / reconciliation
AGGREGATE_FIELDS = ("principal_paid", "interest_collected", "status")

DETAIL_FIELDS = (
    "party_name", "loan_date", "father_name", "age", "date_of_birth",
    "occupation", "address", "mobile", "aadhar", "witness_mobile"
)


def _parse_date(value: Any, field_name: str) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise ValidationError(f"{field_name} must be an ISO date, got {value!r}")


def _parse_age(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    age = to_decimal(value)
    if age is None or age < 0:
        raise ValidationError(f"age must be a non-negative number, got {value!r}")
    return int(age)


class LoanManager:
    """
    Manages loans from creation through term changes and deletion
    """

    def __init__(
        self,
        storage: StorageInterface,
        reconciler: ReconciliationEngine,
        locks: LoanLockRegistry,
        audit_trail: AuditTrail,
        loan_number_prefix: str = "LN-",
        loan_number_width: int = 5
    ):
        self.storage = storage
        self.reconciler = reconciler
        self.locks = locks
        self.audit_trail = audit_trail
        self.loan_number_prefix = loan_number_prefix
        self.loan_number_width = loan_number_width

    def create_loan(
        self,
        party_name: str,
        principal: Any,
        interest_rate: Any,
        duration: Any,
        collection_type: Any = CollectionType.REGULAR,
        advance_interest: Any = 0,
        loan_number: Optional[str] = None,
        loan_date: Any = None,
        father_name: Optional[str] = None,
        age: Any = None,
        date_of_birth: Any = None,
        occupation: Optional[str] = None,
        address: Optional[str] = None,
        mobile: Optional[str] = None,
        aadhar: Optional[str] = None,
        witness_mobile: Optional[str] = None
    ) -> Loan:
        """
        Create a loan and compute its derived figures

        Args:
            party_name: Borrower name
            principal: Loan amount
            interest_rate: Rate in percent
            duration: Number of installments
            collection_type: regular, monthly or fire
            advance_interest: Interest deducted up front from the disbursement
            loan_number: Business key; generated when missing or blank

        Raises:
            InvalidLoanTerms: If the terms are not usable
            DuplicateLoanNumber: If the loan number is taken
        """
        figures = compute_terms(principal, interest_rate, duration, advance_interest, collection_type)

        number = (loan_number or "").strip()
        if number:
            if self.get_loan_by_number(number):
                raise DuplicateLoanNumber(f"Loan number {number} already exists")
        else:
            number = self._next_loan_number()

        now = datetime.now(timezone.utc)
        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            loan_number=number,
            party_name=(party_name or "").strip(),
            principal=figures.principal,
            interest_rate=figures.interest_rate,
            duration=figures.duration,
            advance_interest=figures.advance_interest,
            collection_type=figures.collection_type,
            loan_date=_parse_date(loan_date, "loan_date") or now.date(),
            father_name=father_name,
            age=_parse_age(age),
            date_of_birth=_parse_date(date_of_birth, "date_of_birth"),
            occupation=occupation,
            address=address,
            mobile=mobile,
            aadhar=aadhar,
            witness_mobile=witness_mobile
        )
        loan.apply_figures(figures)

        self.storage.insert(LOANS_TABLE, loan.id, loan.to_dict())

        self.audit_trail.log_event(
            AuditEventType.LOAN_CREATED, "loan", loan.id,
            metadata={
                "loan_number": loan.loan_number,
                "principal": loan.principal,
                "interest_rate": loan.interest_rate,
                "duration": loan.duration,
                "collection_type": loan.collection_type,
                "total_payable": loan.total_payable
            }
        )
        log_action(logger, "info", "Loan created", action="create_loan", loan_number=loan.loan_number)
        return loan

    def update_loan(self, loan_id: str, **patch: Any) -> Loan:
        """
        Update loan terms and/or borrower details

        Any change to a term input recomputes every derived figure together.
        When terms change on a loan that already has collections, the loan is
        reconciled so its aggregate reflects the new principal and rate.

        Raises:
            LoanNotFound: If the loan does not exist
            InvalidLoanTerms: If the effective terms are not usable
            ValidationError: On unknown or read-only fields
        """
        for name in AGGREGATE_FIELDS:
            if name in patch:
                patch.pop(name)
                log_action(logger, "warning", f"Ignoring attempt to set {name} directly",
                           action="update_loan", extra={"loan_id": loan_id})
        unknown = set(patch) - set(TERM_FIELDS) - set(DETAIL_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update loan fields: {', '.join(sorted(unknown))}")

        loan = self.get_loan(loan_id)
        if not loan:
            raise LoanNotFound(f"Loan {loan_id} not found")

        terms_touched = any(name in patch for name in TERM_FIELDS)

        with self.locks.hold(loan.loan_number):
            # Re-read under the lock so a concurrent payment is not overwritten
            loan = self.get_loan(loan_id)
            if not loan:
                raise LoanNotFound(f"Loan {loan_id} not found")

            if terms_touched:
                figures = compute_terms(
                    patch.get("principal", loan.principal),
                    patch.get("interest_rate", loan.interest_rate),
                    patch.get("duration", loan.duration),
                    patch.get("advance_interest", loan.advance_interest),
                    patch.get("collection_type", loan.collection_type)
                )
                loan.apply_figures(figures)

            for name in DETAIL_FIELDS:
                if name not in patch:
                    continue
                value = patch[name]
                if name in ("loan_date", "date_of_birth"):
                    value = _parse_date(value, name)
                elif name == "age":
                    value = _parse_age(value)
                elif name == "party_name":
                    value = (value or "").strip()
                setattr(loan, name, value)

            loan.updated_at = datetime.now(timezone.utc)

            with self.storage.atomic():
                self.storage.save(LOANS_TABLE, loan.id, loan.to_dict())
                # Without history the aggregate is zero and stays valid
                if terms_touched and self.storage.find_one(COLLECTIONS_TABLE, {"loan_number": loan.loan_number}):
                    self.reconciler.reconcile(loan.loan_number)

        self.audit_trail.log_event(
            AuditEventType.LOAN_UPDATED, "loan", loan.id,
            metadata={"loan_number": loan.loan_number, "fields": sorted(patch)}
        )
        log_action(logger, "info", "Loan updated", action="update_loan", loan_number=loan.loan_number,
                   extra={"fields": sorted(patch), "terms_recomputed": terms_touched})
        return self.get_loan(loan_id)

    def delete_loan(self, loan_id: str) -> bool:
        """Delete a loan record. Its collections are left in place."""
        loan = self.get_loan(loan_id)
        if not loan:
            return False

        with self.locks.hold(loan.loan_number):
            deleted = self.storage.delete(LOANS_TABLE, loan_id)

        if deleted:
            self.audit_trail.log_event(
                AuditEventType.LOAN_DELETED, "loan", loan_id,
                metadata={"loan_number": loan.loan_number}
            )
            log_action(logger, "info", "Loan deleted", action="delete_loan", loan_number=loan.loan_number)
        return deleted

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        """Get loan by internal ID"""
        data = self.storage.load(LOANS_TABLE, loan_id)
        if data:
            return Loan.from_dict(data)
        return None

    def get_loan_by_number(self, loan_number: str) -> Optional[Loan]:
        """Get loan by its business key"""
        data = self.storage.find_one(LOANS_TABLE, {"loan_number": loan_number})
        if data:
            return Loan.from_dict(data)
        return None

    def require_loan_by_number(self, loan_number: str) -> Loan:
        loan = self.get_loan_by_number(loan_number)
        if not loan:
            raise LoanNotFound(f"Loan {loan_number} not found")
        return loan

    def find_loan_by_party(self, party_name: str) -> Optional[Loan]:
        """First loan whose party name matches, ignoring case and padding"""
        data = self.storage.find_one(LOANS_TABLE, {"party_key": normalize_party(party_name)})
        if data:
            return Loan.from_dict(data)
        return None

    def list_loans(self, collection_type: Any = None, status: Optional[LoanStatus] = None) -> List[Loan]:
        """All loans, optionally filtered by collection type and status"""
        filters: Dict[str, Any] = {}
        if collection_type is not None:
            filters["collection_type"] = CollectionType.parse(collection_type).value
        if status is not None:
            filters["status"] = status.value
        return [Loan.from_dict(data) for data in self.storage.find(LOANS_TABLE, filters)]

    def _next_loan_number(self) -> str:
        pattern = re.compile(rf"^{re.escape(self.loan_number_prefix)}(\d+)$")
        highest = 0
        for data in self.storage.load_all(LOANS_TABLE):
            match = pattern.match(data.get("loan_number", ""))
            if match:
                highest = max(highest, int(match.group(1)))
        return f"{self.loan_number_prefix}{highest + 1:0{self.loan_number_width}d}"
