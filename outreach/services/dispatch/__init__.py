"""
Dispatch with multi-account fallback.
"""

from outreach.services.dispatch.fallback import (
    DispatchAttempt,
    DispatchErrorType,
    DispatchOutcome,
    FallbackRetryStrategy,
    resolve_error_type,
)

__all__ = [
    "DispatchAttempt",
    "DispatchErrorType",
    "DispatchOutcome",
    "FallbackRetryStrategy",
    "resolve_error_type",
]
