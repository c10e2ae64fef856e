"""Utility modules for JobLedger functions."""

from utils.document_logger import (
    log_document_committed,
    log_change_order_applied,
    log_approval_rejected,
)

__all__ = [
    "log_document_committed",
    "log_change_order_applied",
    "log_approval_rejected",
]
