"""JobLedger configuration.

This package contains:
- settings: Environment variables, configuration and the OpenAI key lookup
- errors: Custom exceptions and error codes
"""

from config.settings import settings
from config.errors import JobLedgerError

__all__ = [
    "settings",
    "JobLedgerError",
]
