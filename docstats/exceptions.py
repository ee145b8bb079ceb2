"""
Statistics error kinds
Each kind carries the HTTP status the API boundary translates it to
"""

from typing import List, Optional


class StatisticsError(Exception):
    """Base error for the statistics domain"""

    status_code = 500

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class PersistenceError(StatisticsError):
    """A datastore failure other than "not found" """

    status_code = 500


class StatisticsValidationError(StatisticsError):
    """Incoherent statistics payload rejected under strict validation"""

    status_code = 422


class UnsupportedCriteriaError(StatisticsError):
    """Search criteria that cannot be evaluated"""

    status_code = 400


class ConcurrencyConflictError(StatisticsError):
    """Optimistic write retries were exhausted for a project"""

    status_code = 409
