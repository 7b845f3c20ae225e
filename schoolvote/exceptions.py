"""
Exceptions for the school election core.

Expected failures (duplicate students, unknown ids, denied pages, malformed
tokens) are returned as typed results, not raised. The classes here cover
the loud paths: programmer misuse, bad configuration, and the policy denial
the HTTP layer turns into a redirect.
"""

from typing import Any, Dict, Optional


class SchoolVoteError(Exception):
    """Base exception for all school election errors"""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


class ConfigurationError(SchoolVoteError):
    """Required configuration is missing or invalid"""

    def __init__(self, message: str):
        super().__init__(message, code="CONFIGURATION_ERROR")


class PolicyDeniedError(SchoolVoteError):
    """The current actor may not load this page or perform this action"""

    def __init__(self, redirect_to: str, message: str = "Not authorized"):
        super().__init__(message, code="POLICY_DENIED", details={"redirect_to": redirect_to})
        self.redirect_to = redirect_to


class AdminContextError(SchoolVoteError):
    """Admin-only code was reached without an authenticated admin session"""

    def __init__(self, message: str = "Admin context used outside an authenticated session"):
        super().__init__(message, code="ADMIN_CONTEXT_MISSING")
