"""
Micro-Lending Collection Ledger

Tracks micro-loans and the collections applied against them, keeping every
principal/interest split and each loan's aggregate state consistent with
the full payment history. All money is handled as Decimal.
"""

__version__ = "1.0.0"
