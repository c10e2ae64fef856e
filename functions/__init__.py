"""JobLedger - Cloud Functions.

This package contains the Python Cloud Functions for the JobLedger
contractor document service: AI-drafted estimates, change orders and
invoices, tracked through a project lifecycle.

Architecture:
- Line-item model with two-level parent/child hierarchy
- Rollup engine and document total calculator
- Draft reconciliation protocol between chat messages and drafts
- Change-order cost impact with estimate versioning
- Actual-vs-estimated variance reporting
"""

__version__ = "1.0.0"
