"""
Reconciliation Module

Rebuilds a loan's principal/interest splits and aggregate from its full,
ordered collection history. The replay itself is a pure function; the
engine around it loads history, replays it and writes the results back as
one atomic unit.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from .audit import AuditTrail, AuditEventType
from .exceptions import InsufficientClosingAmount
from .locking import LoanLockRegistry
from .logging_config import log_action
from .models import (
    Collection, Loan, LoanStatus, status_for,
    LOANS_TABLE, COLLECTIONS_TABLE, HISTORY_ORDER
)
from .money import ZERO, floor_zero, round_money
from .splitter import PaymentMode, split_payment
from .storage import StorageInterface
from .terms import CollectionType


logger = logging.getLogger("microledger.reconciliation")


@dataclass(frozen=True)
class ReplayEntry:
    """One payment as the replay sees it"""
    collection_id: str
    amount: Decimal
    collection_type: CollectionType
    mode: PaymentMode = PaymentMode.NORMAL


@dataclass(frozen=True)
class ReplayedSplit:
    collection_id: str
    principal_paid: Decimal
    interest_paid: Decimal
    remaining_principal: Decimal    # Outstanding after this payment


@dataclass(frozen=True)
class ReplayResult:
    """Fresh splits for every entry plus the loan aggregate they imply"""
    principal: Decimal
    splits: Tuple[ReplayedSplit, ...]
    remaining_principal: Decimal
    principal_paid: Decimal
    interest_collected: Decimal

    @property
    def status(self) -> LoanStatus:
        return status_for(self.principal_paid, self.principal)


def replay_collections(principal: Decimal, interest_rate: Decimal,
                       entries: Iterable[ReplayEntry]) -> ReplayResult:
    """
    Replay payments in the given order against a fresh principal.

    Each entry is split with its own collection type and payment mode against
    the principal outstanding at its position. Remaining principal is floored
    at zero and rounded after every step.

    Raises:
        InsufficientClosingAmount: If a close-mode entry no longer covers the
            principal outstanding at its position
    """
    remaining = round_money(principal)
    total_interest = ZERO
    splits: List[ReplayedSplit] = []

    for entry in entries:
        split = split_payment(entry.amount, remaining, interest_rate, entry.collection_type, entry.mode)
        remaining = round_money(floor_zero(remaining - split.principal_paid))
        total_interest += split.interest_paid
        splits.append(ReplayedSplit(
            collection_id=entry.collection_id,
            principal_paid=split.principal_paid,
            interest_paid=split.interest_paid,
            remaining_principal=remaining
        ))

    return ReplayResult(
        principal=principal,
        splits=tuple(splits),
        remaining_principal=remaining,
        principal_paid=round_money(floor_zero(principal - remaining)),
        interest_collected=round_money(total_interest)
    )


class ReconciliationEngine:
    """Writes replay results back to the store for one loan at a time"""

    def __init__(self, storage: StorageInterface, locks: LoanLockRegistry,
                 audit_trail: AuditTrail):
        self.storage = storage
        self.locks = locks
        self.audit_trail = audit_trail

    def load_history(self, loan_number: str) -> List[Collection]:
        """All collections of a loan in replay order"""
        records = self.storage.find(COLLECTIONS_TABLE, {"loan_number": loan_number}, sort=HISTORY_ORDER)
        return [Collection.from_dict(data) for data in records]

    def reconcile(self, loan_number: str) -> Optional[ReplayResult]:
        """
        Recompute every split and the aggregate of a loan.

        A missing loan is a no-op returning None. Storage failures are logged
        and re-raised; nothing is retried.

        Raises:
            InsufficientClosingAmount: If the history no longer lets a
                close-mode payment settle the loan; nothing is written
        """
        with self.locks.hold(loan_number):
            loan_data = self.storage.find_one(LOANS_TABLE, {"loan_number": loan_number})
            if loan_data is None:
                logger.debug("Reconcile skipped, loan %s not found", loan_number)
                return None
            loan = Loan.from_dict(loan_data)

            history = self.load_history(loan_number)
            try:
                result = replay_collections(
                    loan.principal,
                    loan.interest_rate,
                    (ReplayEntry(c.id, c.amount, c.collection_type, c.mode) for c in history)
                )
            except InsufficientClosingAmount as e:
                log_action(logger, "warning", "Reconciliation rejected, settlement no longer covers principal",
                           action="reconcile", loan_number=loan_number,
                           extra={"threshold": str(e.threshold)})
                raise

            was_closed = loan.is_closed
            loan.set_aggregate(result.principal_paid, result.interest_collected)
            loan.updated_at = datetime.now(timezone.utc)

            updates = [
                (split.collection_id, {
                    "principal_paid": str(split.principal_paid),
                    "interest_paid": str(split.interest_paid)
                })
                for split in result.splits
            ]

            try:
                with self.storage.atomic():
                    if updates:
                        self.storage.batch_update(COLLECTIONS_TABLE, updates)
                    self.storage.save(LOANS_TABLE, loan.id, loan.to_dict())
            except Exception:
                log_action(logger, "error", "Reconciliation failed, ledger may be inconsistent",
                           action="reconcile", loan_number=loan_number, exc_info=True)
                raise

            self.audit_trail.log_event(
                AuditEventType.LOAN_RECONCILED, "loan", loan.id,
                metadata={
                    "loan_number": loan_number,
                    "collections": len(updates),
                    "principal_paid": loan.principal_paid,
                    "interest_collected": loan.interest_collected,
                    "status": loan.status
                }
            )
            if loan.is_closed and not was_closed:
                self.audit_trail.log_event(
                    AuditEventType.LOAN_CLOSED, "loan", loan.id,
                    metadata={"loan_number": loan_number}
                )

            log_action(logger, "info", "Loan reconciled", action="reconcile", loan_number=loan_number,
                       extra={"collections": len(updates), "status": loan.status.value})
            return result
