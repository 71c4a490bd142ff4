"""
Tests for ledger summaries
"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from microledger.ledger import build_ledger, summarize
from microledger.models import Collection, Loan
from microledger.terms import CollectionType, compute_terms


def make_loan(principal=10000, rate=10, duration=10, collection_type="regular", advance=0,
              principal_paid="0", interest_collected="0"):
    figures = compute_terms(principal, rate, duration, advance, collection_type)
    now = datetime.now(timezone.utc)
    loan = Loan(
        id="loan-1", created_at=now, updated_at=now, loan_number="LN-1", party_name="Asha",
        principal=figures.principal, interest_rate=figures.interest_rate, duration=figures.duration,
        advance_interest=figures.advance_interest, collection_type=figures.collection_type
    )
    loan.apply_figures(figures)
    loan.set_aggregate(Decimal(principal_paid), Decimal(interest_collected))
    return loan


def make_collections(*amounts):
    now = datetime.now(timezone.utc)
    return [
        Collection(id=f"c{i}", created_at=now, updated_at=now, loan_number="LN-1", party_name="asha",
                   amount=Decimal(str(amount)), date=date(2024, 1, i + 1),
                   collection_type=CollectionType.REGULAR)
        for i, amount in enumerate(amounts)
    ]


class TestAmortizingSummary:

    def test_partially_repaid(self):
        loan = make_loan(advance=500, principal_paid="3000", interest_collected="300")
        summary = summarize(loan, make_collections(1100, 1100, 1100))

        assert summary.loan_amount == Decimal('9500.00')
        assert summary.total_payable == Decimal('11000.00')
        assert summary.total_paid == Decimal('3300.00')
        assert summary.remaining_balance == Decimal('7700.00')
        assert summary.remaining_principal == Decimal('7000.00')
        assert summary.periodic_interest == Decimal('700.00')
        assert summary.installment_amount == Decimal('1100.00')
        assert summary.collection_type == CollectionType.REGULAR

    def test_overpayment_floors_balance(self):
        loan = make_loan(principal_paid="10000", interest_collected="2000")
        summary = summarize(loan, make_collections(6000, 6000))

        assert summary.remaining_balance == Decimal('0.00')
        assert summary.remaining_principal == Decimal('0.00')

    def test_missing_total_payable_falls_back(self):
        loan = make_loan()
        loan.total_payable = Decimal('0')

        assert summarize(loan, []).total_payable == Decimal('11000.00')


class TestInterestOnlySummary:

    def test_active_loan(self):
        loan = make_loan(collection_type="monthly", rate=5, interest_collected="1000")
        summary = summarize(loan, make_collections(500, 500))

        assert summary.periodic_interest == Decimal('500.00')
        assert summary.installment_amount == Decimal('500.00')
        assert summary.total_payable == Decimal('10500.00')
        assert summary.remaining_balance == Decimal('10500.00')
        assert summary.total_paid == Decimal('1000.00')

    def test_closed_loan_owes_nothing(self):
        loan = make_loan(collection_type="fire", rate=5, principal_paid="10000")
        summary = summarize(loan, make_collections(10000))

        assert loan.is_closed
        assert summary.remaining_principal == Decimal('0.00')
        assert summary.periodic_interest == Decimal('0.00')
        assert summary.total_payable == Decimal('0.00')
        assert summary.remaining_balance == Decimal('0')
        assert summary.to_dict()["remaining_balance"] == "0.00"


class TestBuildLedger:

    def test_without_loan(self):
        collections = make_collections(100)
        ledger = build_ledger(None, collections)

        assert ledger.collections == collections
        assert ledger.summary is None

    def test_summary_serializes(self):
        ledger = build_ledger(make_loan(), make_collections(1100))
        data = ledger.summary.to_dict()

        assert data["total_paid"] == "1100.00"
        assert data["collection_type"] == "regular"
