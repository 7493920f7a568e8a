"""
Entitlement resolution.

The plan a client claims is never trusted: the server looks the user up in
``current_entitlements`` on every delivery, through a short TTL cache.
"""
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from oddsedge.config.constants import PLAN_LIMITS, Plan, PlanLimits, Tier, normalize_plan

from .sessions import Principal


class EntitlementLookupError(Exception):
    """The entitlement source could not be read."""


@dataclass(frozen=True)
class TrialInfo:
    trial_used: Optional[bool] = None
    trial_started_at: Optional[datetime] = None
    trial_ends_at: Optional[datetime] = None
    is_trial_active: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "trial_used": self.trial_used,
            "trial_started_at": self.trial_started_at.isoformat() if self.trial_started_at else None,
            "trial_ends_at": self.trial_ends_at.isoformat() if self.trial_ends_at else None,
            "is_trial_active": self.is_trial_active,
        }


@dataclass(frozen=True)
class ResolvedPlan:
    """Server-side view of what a caller may see."""

    plan: Plan
    user_id: Optional[str] = None
    entitlement_source: Optional[str] = None
    trial: TrialInfo = field(default_factory=TrialInfo)
    error: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def limits(self) -> PlanLimits:
        return PLAN_LIMITS[self.plan]

    @property
    def tier(self) -> Tier:
        return self.limits.tier

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "plan": self.plan.value,
            "tier": self.tier.value,
            "authenticated": self.authenticated,
        }
        if self.authenticated:
            data["userId"] = self.user_id
            data["entitlement_source"] = self.entitlement_source
            data["trial"] = self.trial.to_dict()
        if self.error:
            data["error"] = self.error
        return data


ANONYMOUS_PLAN = ResolvedPlan(plan=Plan.ANONYMOUS)


def plan_from_record(record) -> tuple[Plan, Optional[str], TrialInfo]:
    """Plan, source and trial details from an entitlement record."""
    if record is None:
        return Plan.FREE, None, TrialInfo()

    plan = normalize_plan(record.current_plan)
    if record.entitlement_source == "grant":
        # grants are full access
        plan = Plan.ELITE

    trial = TrialInfo(
        trial_used=record.trial_used,
        trial_started_at=record.trial_started_at,
        trial_ends_at=record.trial_ends_at,
        is_trial_active=record.entitlement_source == "trial",
    )
    return plan, record.entitlement_source, trial


class EntitlementService:
    """
    Resolves a principal to its plan.

    Example:
        >>> service = EntitlementService(repository, cache_ttl_seconds=30)
        >>> resolved = service.resolve(principal)
        >>> resolved.tier
        <Tier.PRO: 'pro'>
    """

    def __init__(
        self,
        repository,
        cache_ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.repository = repository
        self.cache_ttl_seconds = cache_ttl_seconds
        self._clock = clock
        self._cache: dict[str, tuple[float, ResolvedPlan]] = {}
        self._lock = threading.Lock()

    def resolve(self, principal: Principal) -> ResolvedPlan:
        """
        Raises:
            EntitlementLookupError: when the entitlement table cannot be read
        """
        if not principal.authenticated:
            return ANONYMOUS_PLAN

        user_id = principal.user_id
        now = self._clock()
        with self._lock:
            cached = self._cache.get(user_id)
        if cached is not None and now - cached[0] < self.cache_ttl_seconds:
            return cached[1]

        try:
            record = self.repository.get_entitlement(user_id)
        except SQLAlchemyError as e:
            logger.warning(f"Entitlement lookup failed for {user_id}: {e}")
            raise EntitlementLookupError(str(e)) from e

        plan, source, trial = plan_from_record(record)
        resolved = ResolvedPlan(plan=plan, user_id=user_id, entitlement_source=source, trial=trial)
        with self._lock:
            self._cache[user_id] = (now, resolved)
        return resolved

    def resolve_or_free(self, principal: Principal) -> ResolvedPlan:
        """Like ``resolve`` but degrades to the free plan on lookup failure."""
        try:
            return self.resolve(principal)
        except EntitlementLookupError:
            return ResolvedPlan(
                plan=Plan.FREE,
                user_id=principal.user_id,
                error="entitlement_unavailable",
            )

    def invalidate(self, user_id: Optional[str] = None) -> None:
        with self._lock:
            if user_id is None:
                self._cache.clear()
            else:
                self._cache.pop(user_id, None)
