"""
Constants for the opportunity engine.

Contains market side pairings, plan limits, tier rules and wire-format names.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Final


# =============================================================================
# MARKET SIDES
# =============================================================================
class Side(str, Enum):
    """Sides of a two-way market."""

    OVER = "over"
    UNDER = "under"
    HOME = "home"
    AWAY = "away"
    YES = "yes"
    NO = "no"


# Side A -> side B. Arbitrage and de-vig only pair sides listed here.
SIDE_PAIRS: Final[dict[Side, Side]] = {
    Side.OVER: Side.UNDER,
    Side.HOME: Side.AWAY,
    Side.YES: Side.NO,
}

COMPLEMENT: Final[dict[Side, Side]] = {
    **SIDE_PAIRS,
    **{b: a for a, b in SIDE_PAIRS.items()},
}


class OpportunityKind(str, Enum):
    """Kinds of detected opportunities."""

    ARB = "arb"
    EV = "ev"


class Mode(str, Enum):
    """Whether an opportunity is on a pregame or in-play market."""

    PREMATCH = "prematch"
    LIVE = "live"


class ViewMode(str, Enum):
    """Mode requested by a subscription."""

    PREMATCH = "prematch"
    LIVE = "live"
    ALL = "all"


def parse_view_mode(value: str | None) -> ViewMode:
    """Parse a client mode parameter. Accepts "pregame" for prematch; unknown values mean all."""
    if not value:
        return ViewMode.ALL
    value = value.strip().lower()
    if value == "pregame":
        return ViewMode.PREMATCH
    try:
        return ViewMode(value)
    except ValueError:
        return ViewMode.ALL


# =============================================================================
# PLANS AND TIERS
# =============================================================================
class Tier(str, Enum):
    """Entitlement tier gating visibility."""

    FREE = "free"
    PRO = "pro"


class Plan(str, Enum):
    """Subscription plans as stored in the entitlement source."""

    ANONYMOUS = "anonymous"
    FREE = "free"
    SCOUT = "scout"
    SHARP = "sharp"
    ELITE = "elite"


@dataclass(frozen=True)
class PlanLimits:
    """Visibility limits attached to a plan."""

    tier: Tier
    max_results: int
    has_live: bool
    max_roi_bps: float | None  # None = no ceiling


PLAN_LIMITS: Final[dict[Plan, PlanLimits]] = {
    Plan.ANONYMOUS: PlanLimits(Tier.FREE, max_results=100, has_live=False, max_roi_bps=100.0),
    Plan.FREE: PlanLimits(Tier.FREE, max_results=100, has_live=False, max_roi_bps=100.0),
    Plan.SCOUT: PlanLimits(Tier.FREE, max_results=100, has_live=False, max_roi_bps=100.0),
    Plan.SHARP: PlanLimits(Tier.PRO, max_results=1000, has_live=False, max_roi_bps=None),
    Plan.ELITE: PlanLimits(Tier.PRO, max_results=1000, has_live=True, max_roi_bps=None),
}

# Aliases seen in the billing tables
PLAN_ALIASES: Final[dict[str, Plan]] = {
    "anonymous": Plan.ANONYMOUS,
    "free": Plan.FREE,
    "scout": Plan.SCOUT,
    "sharp": Plan.SHARP,
    "hit_rate": Plan.SHARP,
    "elite": Plan.ELITE,
    "pro": Plan.ELITE,
    "premium": Plan.ELITE,
    "admin": Plan.ELITE,
    "edge": Plan.ELITE,
    "unlimited": Plan.ELITE,
}

FREE_FILTERED_REASON: Final[str] = "Free users limited to pregame opportunities with ROI <= 1%"
NO_LIVE_FILTERED_REASON: Final[str] = "Sharp plan: pregame opportunities only (upgrade to Elite for live)"


def normalize_plan(name: str | None) -> Plan:
    """Map a stored plan name onto a known plan, defaulting to free."""
    if not name:
        return Plan.FREE
    return PLAN_ALIASES.get(name.strip().lower(), Plan.FREE)


# =============================================================================
# WIRE FORMAT
# =============================================================================
ROWS_FORMAT: Final[int] = 2

SSE_EVENT_HELLO: Final[str] = "hello"
SSE_EVENT_UPDATE: Final[str] = "update"
SSE_EVENT_AUTH_EXPIRED: Final[str] = "auth_expired"
SSE_EVENT_ENTITLEMENT_ERROR: Final[str] = "entitlement_error"
