"""
API Middleware
"""

from .auth import require_service_token

__all__ = ["require_service_token"]
