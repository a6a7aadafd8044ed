"""
Bank statement → Extraction → Human review → Transaction import

Turns uploaded bank statements (CSV or PDF) into reviewed, deduplicated
transactions with optional reconciliation against existing invoices.
"""

__version__ = "0.1.0"
