"""
Test suite for loan management
"""

import pytest
from datetime import date
from decimal import Decimal

from microledger.audit import AuditEventType
from microledger.config import LedgerConfig
from microledger.exceptions import (
    DuplicateLoanNumber, InvalidLoanTerms, LoanNotFound, ValidationError
)
from microledger.models import LOANS_TABLE, LoanStatus
from microledger.storage import InMemoryStorage
from microledger.system import LedgerSystem
from microledger.terms import CollectionType


class TestLoanCreation:
    """Test creating loans"""

    def setup_method(self):
        """Set up test fixtures"""
        self.system = LedgerSystem(storage=InMemoryStorage(), config=LedgerConfig(storage_backend="memory"))
        self.loan_manager = self.system.loan_manager

    def test_create_regular_loan(self):
        loan = self.loan_manager.create_loan(
            party_name=" Ravi Kumar ",
            principal=10000,
            interest_rate=10,
            duration=10,
            loan_date="2024-03-01",
            mobile="9876543210"
        )

        assert loan.party_name == "Ravi Kumar"
        assert loan.total_payable == Decimal('11000.00')
        assert loan.installment_amount == Decimal('1100.00')
        assert loan.disbursed_amount == Decimal('10000.00')
        assert loan.principal_paid == Decimal('0')
        assert loan.status == LoanStatus.ACTIVE
        assert loan.loan_date == date(2024, 3, 1)

        stored = self.loan_manager.get_loan(loan.id)
        assert stored.total_payable == Decimal('11000.00')
        assert stored.mobile == "9876543210"

    def test_loan_date_defaults_to_today(self):
        loan = self.loan_manager.create_loan("Asha", 1000, 10, 5)
        assert loan.loan_date is not None

    def test_generated_loan_numbers(self):
        first = self.loan_manager.create_loan("A", 1000, 10, 5)
        second = self.loan_manager.create_loan("B", 1000, 10, 5, loan_number="  ")
        self.loan_manager.create_loan("C", 1000, 10, 5, loan_number="LN-00007")
        fourth = self.loan_manager.create_loan("D", 1000, 10, 5)

        assert first.loan_number == "LN-00001"
        assert second.loan_number == "LN-00002"
        assert fourth.loan_number == "LN-00008"

    def test_duplicate_loan_number(self):
        self.loan_manager.create_loan("A", 1000, 10, 5, loan_number="L-1")

        with pytest.raises(DuplicateLoanNumber):
            self.loan_manager.create_loan("B", 2000, 10, 5, loan_number="L-1")
        assert self.system.storage.count(LOANS_TABLE) == 1

    def test_invalid_terms_store_nothing(self):
        with pytest.raises(InvalidLoanTerms):
            self.loan_manager.create_loan("A", 0, 10, 5)
        with pytest.raises(InvalidLoanTerms):
            self.loan_manager.create_loan("A", 1000, 10, 5, collection_type="weekly")

        assert self.system.storage.count(LOANS_TABLE) == 0

    def test_invalid_details_rejected(self):
        with pytest.raises(ValidationError):
            self.loan_manager.create_loan("A", 1000, 10, 5, date_of_birth="yesterday")
        with pytest.raises(ValidationError):
            self.loan_manager.create_loan("A", 1000, 10, 5, age=-3)

    def test_creation_is_audited(self):
        loan = self.loan_manager.create_loan("A", 1000, 10, 5)

        events = self.system.audit_trail.get_events_for_entity("loan", loan.id)
        assert [e.event_type for e in events] == [AuditEventType.LOAN_CREATED]
        assert events[0].metadata["total_payable"] == "1100.00"


class TestLoanUpdates:
    """Test term changes and detail edits"""

    def setup_method(self):
        """Set up test fixtures"""
        self.system = LedgerSystem(storage=InMemoryStorage(), config=LedgerConfig(storage_backend="memory"))
        self.loan_manager = self.system.loan_manager
        self.loan = self.loan_manager.create_loan("Asha", 10000, 10, 10, loan_number="LN-1")

    def test_term_change_recomputes_all_figures(self):
        updated = self.loan_manager.update_loan(self.loan.id, interest_rate=20, advance_interest=1000)

        assert updated.interest_rate == Decimal('20.00')
        assert updated.total_interest == Decimal('3000.00')
        assert updated.total_payable == Decimal('12000.00')
        assert updated.installment_amount == Decimal('1200.00')
        assert updated.disbursed_amount == Decimal('9000.00')
        assert updated.real_profit == Decimal('3000.00')

    def test_duration_change(self):
        updated = self.loan_manager.update_loan(self.loan.id, duration=4)
        assert updated.installment_amount == Decimal('2750.00')

    def test_invalid_term_change_leaves_loan_unchanged(self):
        with pytest.raises(InvalidLoanTerms):
            self.loan_manager.update_loan(self.loan.id, principal=-5)

        stored = self.loan_manager.get_loan(self.loan.id)
        assert stored.principal == Decimal('10000.00')
        assert stored.total_payable == Decimal('11000.00')

    def test_detail_change_keeps_figures(self):
        updated = self.loan_manager.update_loan(self.loan.id, address="12 Market Road", age="41")

        assert updated.address == "12 Market Road"
        assert updated.age == 41
        assert updated.total_payable == Decimal('11000.00')

    def test_aggregate_fields_ignored(self):
        updated = self.loan_manager.update_loan(self.loan.id, principal_paid=10000, status="closed")

        assert updated.principal_paid == Decimal('0')
        assert updated.status == LoanStatus.ACTIVE

    def test_unknown_fields_rejected(self):
        with pytest.raises(ValidationError, match="loan_number"):
            self.loan_manager.update_loan(self.loan.id, loan_number="LN-2")

    def test_missing_loan(self):
        with pytest.raises(LoanNotFound):
            self.loan_manager.update_loan("nope", address="x")

    def test_term_change_reconciles_history(self):
        collection = self.system.collection_manager.apply_payment("LN-1", 1100, date(2024, 1, 1))
        assert collection.principal_paid == Decimal('1000.00')

        updated = self.loan_manager.update_loan(self.loan.id, interest_rate=21)

        assert updated.principal_paid == Decimal('909.09')
        assert updated.interest_collected == Decimal('190.91')
        stored = self.system.collection_manager.get_collection(collection.id)
        assert stored.principal_paid == Decimal('909.09')
        assert stored.interest_paid == Decimal('190.91')

    def test_principal_cut_closes_loan(self):
        self.system.collection_manager.apply_payment("LN-1", 1100, date(2024, 1, 1))

        updated = self.loan_manager.update_loan(self.loan.id, principal=800)

        assert updated.principal_paid == Decimal('800.00')
        assert updated.status == LoanStatus.CLOSED

    def test_type_change_keeps_recorded_payment_types(self):
        collection = self.system.collection_manager.apply_payment("LN-1", 1100, date(2024, 1, 1))

        updated = self.loan_manager.update_loan(self.loan.id, collection_type="monthly")

        assert updated.collection_type == CollectionType.MONTHLY
        stored = self.system.collection_manager.get_collection(collection.id)
        assert stored.collection_type == CollectionType.REGULAR
        assert stored.principal_paid == Decimal('1000.00')


class TestLoanQueries:

    def setup_method(self):
        """Set up test fixtures"""
        self.system = LedgerSystem(storage=InMemoryStorage(), config=LedgerConfig(storage_backend="memory"))
        self.loan_manager = self.system.loan_manager
        self.regular = self.loan_manager.create_loan("Ravi Kumar", 1000, 10, 10, loan_number="LN-1")
        self.monthly = self.loan_manager.create_loan("Meena", 5000, 5, 12, collection_type="monthly",
                                                     loan_number="LN-2")

    def test_lookups(self):
        assert self.loan_manager.get_loan_by_number("LN-2").id == self.monthly.id
        assert self.loan_manager.get_loan_by_number("LN-9") is None
        assert self.loan_manager.get_loan("missing") is None
        with pytest.raises(LoanNotFound):
            self.loan_manager.require_loan_by_number("LN-9")

    def test_find_by_party_ignores_case(self):
        assert self.loan_manager.find_loan_by_party("  RAVI kumar").id == self.regular.id
        assert self.loan_manager.find_loan_by_party("Nobody") is None

    def test_list_loans_filters(self):
        assert len(self.loan_manager.list_loans()) == 2
        assert [l.loan_number for l in self.loan_manager.list_loans(collection_type="monthly")] == ["LN-2"]

        self.system.collection_manager.apply_payment("LN-1", 1000, mode="close")
        closed = self.loan_manager.list_loans(status=LoanStatus.CLOSED)
        assert [l.loan_number for l in closed] == ["LN-1"]

    def test_delete_loan_keeps_collections(self):
        self.system.collection_manager.apply_payment("LN-1", 110, date(2024, 1, 1))

        assert self.loan_manager.delete_loan(self.regular.id)
        assert not self.loan_manager.delete_loan(self.regular.id)
        assert self.loan_manager.get_loan_by_number("LN-1") is None
        assert len(self.system.collection_manager.get_loan_collections("LN-1")) == 1
