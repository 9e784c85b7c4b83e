"""
Budget Ledger

Fund allocations, expenditure tracking with an approval workflow, and
COA budget-execution reports for a barangay budget, with Decimal amounts
and a hash-chained audit trail.
"""

__version__ = "1.0.0"
