"""
Collections Module

Payment ingestion and collection history. New payments take the fast path
(split against the loan's current outstanding principal); edits and
deletions of past payments trigger a full reconciliation of the loan.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone, date, timedelta
from decimal import Decimal
from typing import Any, List, Optional

from .audit import AuditTrail, AuditEventType
from .exceptions import (
    CollectionNotFound, InvalidAmount, InvalidQuery, LoanAlreadyClosed,
    LoanNotFound, ValidationError
)
from .ledger import Ledger, build_ledger
from .locking import LoanLockRegistry
from .logging_config import log_action
from .models import (
    Collection, normalize_party,
    LOANS_TABLE, COLLECTIONS_TABLE, HISTORY_ORDER, NEWEST_FIRST
)
from .loans import LoanManager
from .money import ZERO, round_money, to_decimal
from .reconciliation import ReconciliationEngine
from .splitter import PaymentMode, split_payment
from .storage import StorageInterface
from .terms import CollectionType


logger = logging.getLogger("microledger.collections")


def parse_amount(value: Any) -> Decimal:
    """
    Validate a payment amount and round it to the cent

    Raises:
        InvalidAmount: If the value is not a finite number greater than zero
    """
    amount = to_decimal(value)
    if amount is None:
        raise InvalidAmount("Amount must be a valid number greater than zero")
    amount = round_money(amount)
    if amount <= ZERO:
        raise InvalidAmount("Amount must be a valid number greater than zero")
    return amount


def parse_day(value: Any) -> date:
    """Calendar day of a date, datetime or ISO string"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return datetime.fromisoformat(text).date() if "T" in text else date.fromisoformat(text)
        except ValueError:
            pass
    raise ValidationError(f"Invalid date: {value!r}")


@dataclass
class CollectionListing:
    collections: List[Collection] = field(default_factory=list)
    total: Decimal = ZERO


class CollectionManager:
    """Manager for payments applied against loans"""

    def __init__(
        self,
        storage: StorageInterface,
        loan_manager: LoanManager,
        reconciler: ReconciliationEngine,
        locks: LoanLockRegistry,
        audit_trail: AuditTrail
    ):
        self.storage = storage
        self.loan_manager = loan_manager
        self.reconciler = reconciler
        self.locks = locks
        self.audit_trail = audit_trail

        self._clock_lock = threading.Lock()
        self._last_timestamp: Optional[datetime] = None

    def apply_payment(
        self,
        loan_number: str,
        amount: Any,
        payment_date: Any = None,
        collection_type: Any = None,
        mode: Any = PaymentMode.NORMAL,
        party_name: Optional[str] = None
    ) -> Collection:
        """
        Record a new payment against a loan

        The payment is assumed to be the latest in the loan's history, so it
        is split against the loan's current outstanding principal instead of
        replaying everything. A payment dated before the loan's latest
        collection is inserted and the whole loan is reconciled instead.

        Args:
            loan_number: Loan the payment belongs to
            amount: Payment amount, greater than zero
            payment_date: Day of payment (defaults to today, UTC)
            collection_type: Type in effect for this payment (defaults to the loan's)
            mode: "normal" or "close"
            party_name: Payer name (defaults to the loan's party)

        Returns:
            The stored Collection with its split

        Raises:
            LoanNotFound: If no loan has this number
            LoanAlreadyClosed: If the loan is closed
            InvalidAmount: If the amount is not a positive finite number
            InsufficientClosingAmount: Close mode below the remaining principal
        """
        payment_mode = PaymentMode.parse(mode)
        day = parse_day(payment_date) if payment_date else datetime.now(timezone.utc).date()

        with self.locks.hold(loan_number):
            loan = self.loan_manager.get_loan_by_number(loan_number)
            if not loan:
                raise LoanNotFound(f"Loan {loan_number} not found")
            if loan.is_closed:
                log_action(logger, "warning", "Payment rejected, loan already closed",
                           action="apply_payment", loan_number=loan_number)
                raise LoanAlreadyClosed(f"Loan {loan_number} is already closed")
            payment = parse_amount(amount)
            backdated = self._is_backdated(loan_number, day)
            kind = CollectionType.parse(collection_type) if collection_type else loan.collection_type

            split = split_payment(
                payment, loan.remaining_principal, loan.interest_rate, kind, payment_mode
            )

            loan.set_aggregate(
                loan.principal_paid + split.principal_paid,
                loan.interest_collected + split.interest_paid
            )
            loan.updated_at = datetime.now(timezone.utc)

            created_at = self._next_timestamp()
            collection = Collection(
                id=str(uuid.uuid4()),
                created_at=created_at,
                updated_at=created_at,
                loan_number=loan_number,
                party_name=normalize_party(party_name or loan.party_name),
                amount=payment,
                date=day,
                collection_type=kind,
                principal_paid=split.principal_paid,
                interest_paid=split.interest_paid,
                mode=payment_mode
            )

            with self.storage.atomic():
                self.storage.insert(COLLECTIONS_TABLE, collection.id, collection.to_dict())
                if backdated:
                    # An earlier-dated payment shifts the split of every later one
                    self.reconciler.reconcile(loan_number)
                else:
                    self.storage.save(LOANS_TABLE, loan.id, loan.to_dict())

            if backdated:
                collection = self.get_collection(collection.id)
                loan = self.loan_manager.get_loan(loan.id)

            self.audit_trail.log_event(
                AuditEventType.COLLECTION_ADDED, "collection", collection.id,
                metadata={
                    "loan_number": loan_number,
                    "amount": payment,
                    "mode": payment_mode,
                    "collection_type": kind,
                    "principal_paid": collection.principal_paid,
                    "interest_paid": collection.interest_paid
                }
            )
            # Reconciliation audits its own closing
            if loan.is_closed and not backdated:
                self.audit_trail.log_event(
                    AuditEventType.LOAN_CLOSED, "loan", loan.id,
                    metadata={"loan_number": loan_number}
                )

        log_action(logger, "info", "Payment applied", action="apply_payment",
                   loan_number=loan_number, collection_id=collection.id,
                   extra={"amount": str(payment), "principal_paid": str(collection.principal_paid),
                          "interest_paid": str(collection.interest_paid), "status": loan.status.value,
                          "backdated": backdated})
        return collection

    def edit_collection(self, collection_id: str, amount: Any = None, payment_date: Any = None) -> Collection:
        """
        Change the amount and/or date of a past payment, then reconcile its loan

        Raises:
            CollectionNotFound: If the collection does not exist
            InvalidAmount: If a new amount is given and is not valid
        """
        collection = self.get_collection(collection_id)

        patch = {}
        if amount is not None:
            patch["amount"] = str(parse_amount(amount))
        if payment_date:
            patch["date"] = parse_day(payment_date).isoformat()

        with self.locks.hold(collection.loan_number):
            patch["updated_at"] = datetime.now(timezone.utc).isoformat()
            with self.storage.atomic():
                if self.storage.update(COLLECTIONS_TABLE, collection_id, patch) is None:
                    raise CollectionNotFound(f"Collection {collection_id} not found")
                self.reconciler.reconcile(collection.loan_number)

        self.audit_trail.log_event(
            AuditEventType.COLLECTION_UPDATED, "collection", collection_id,
            metadata={"loan_number": collection.loan_number, **patch}
        )
        log_action(logger, "info", "Collection updated", action="edit_collection",
                   loan_number=collection.loan_number, collection_id=collection_id)
        return self.get_collection(collection_id)

    def delete_collection(self, collection_id: str) -> None:
        """
        Remove a past payment, then reconcile its loan

        Raises:
            CollectionNotFound: If the collection does not exist
        """
        collection = self.get_collection(collection_id)

        with self.locks.hold(collection.loan_number):
            with self.storage.atomic():
                if not self.storage.delete(COLLECTIONS_TABLE, collection_id):
                    raise CollectionNotFound(f"Collection {collection_id} not found")
                self.reconciler.reconcile(collection.loan_number)

        self.audit_trail.log_event(
            AuditEventType.COLLECTION_DELETED, "collection", collection_id,
            metadata={"loan_number": collection.loan_number, "amount": collection.amount}
        )
        log_action(logger, "info", "Collection deleted", action="delete_collection",
                   loan_number=collection.loan_number, collection_id=collection_id)

    def get_collection(self, collection_id: str) -> Collection:
        data = self.storage.load(COLLECTIONS_TABLE, collection_id)
        if not data:
            raise CollectionNotFound(f"Collection {collection_id} not found")
        return Collection.from_dict(data)

    def get_loan_collections(self, loan_number: str) -> List[Collection]:
        """Payment history of a loan in replay order"""
        return self.reconciler.load_history(loan_number)

    def list_collections(self) -> CollectionListing:
        """Every collection, newest first, with the total collected"""
        records = self.storage.find(COLLECTIONS_TABLE, {}, sort=NEWEST_FIRST)
        return self._listing(records)

    def collection_report(self, day: Any = None, loan_number: Optional[str] = None) -> CollectionListing:
        """
        Collections for one calendar day and/or one loan, newest first

        Raises:
            InvalidQuery: If neither a day nor a loan number is given
        """
        if not day and not loan_number:
            raise InvalidQuery("Date or loan number is required")

        filters = {}
        if day:
            filters["date"] = parse_day(day).isoformat()
        if loan_number:
            filters["loan_number"] = loan_number
        return self._listing(self.storage.find(COLLECTIONS_TABLE, filters, sort=NEWEST_FIRST))

    def total_by_type(self, collection_type: Any) -> Decimal:
        """Sum of every collection recorded under a collection type"""
        kind = CollectionType.parse(collection_type)
        return round_money(self.storage.sum(COLLECTIONS_TABLE, {"collection_type": kind.value}, "amount"))

    def ledger_by_party(self, party_name: str) -> Ledger:
        """
        Ledger for a party name, matched case-insensitively.

        Returns the collections with a None summary when no loan matches.
        """
        key = normalize_party(party_name)
        records = self.storage.find(COLLECTIONS_TABLE, {"party_name": key}, sort=HISTORY_ORDER)
        collections = [Collection.from_dict(data) for data in records]
        loan = self.loan_manager.find_loan_by_party(key)
        return build_ledger(loan, collections)

    def ledger_by_loan_number(self, loan_number: str) -> Ledger:
        """
        Raises:
            LoanNotFound: If no loan has this number
        """
        loan = self.loan_manager.require_loan_by_number(loan_number)
        return build_ledger(loan, self.get_loan_collections(loan_number))

    def _is_backdated(self, loan_number: str, day: date) -> bool:
        """True when the loan already has a collection dated after day"""
        key = day.isoformat()
        return any(
            record["date"] > key
            for record in self.storage.find(COLLECTIONS_TABLE, {"loan_number": loan_number})
        )

    def _listing(self, records: List[dict]) -> CollectionListing:
        collections = [Collection.from_dict(data) for data in records]
        total = round_money(sum((c.amount for c in collections), ZERO))
        return CollectionListing(collections=collections, total=total)

    def _next_timestamp(self) -> datetime:
        """Strictly increasing creation time, so same-day payments keep insertion order"""
        with self._clock_lock:
            now = datetime.now(timezone.utc)
            if self._last_timestamp is not None and now <= self._last_timestamp:
                now = self._last_timestamp + timedelta(microseconds=1)
            self._last_timestamp = now
            return now
