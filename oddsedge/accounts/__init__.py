"""
Session validation and entitlement resolution.
"""

from .sessions import (
    ANONYMOUS,
    Principal,
    SessionExpiredError,
    SessionValidator,
    extract_bearer_token,
)
from .entitlements import (
    ANONYMOUS_PLAN,
    EntitlementLookupError,
    EntitlementService,
    ResolvedPlan,
    TrialInfo,
)

__all__ = [
    "ANONYMOUS",
    "Principal",
    "SessionExpiredError",
    "SessionValidator",
    "extract_bearer_token",
    "ANONYMOUS_PLAN",
    "EntitlementLookupError",
    "EntitlementService",
    "ResolvedPlan",
    "TrialInfo",
]
