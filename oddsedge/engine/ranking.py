"""
Per-subscription ranking and visibility rules.

Turns the shared list of opportunities into what one client may see:
hidden edges removed, counts taken, tier rules applied, sorted and capped.
"""
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

from oddsedge.config.constants import (
    FREE_FILTERED_REASON,
    NO_LIVE_FILTERED_REASON,
    PLAN_LIMITS,
    Mode,
    Plan,
    PlanLimits,
    Tier,
    ViewMode,
)

from .opportunity import Opportunity


@dataclass(frozen=True)
class HiddenEdge:
    """A user's hide of one opportunity id."""

    edge_key: str
    auto_unhide_at: Optional[datetime] = None

    def is_active(self, now: datetime) -> bool:
        """Hidden until manually unhidden, or until ``auto_unhide_at`` passes."""
        if self.auto_unhide_at is None:
            return True
        unhide_at = self.auto_unhide_at
        if unhide_at.tzinfo is None:
            unhide_at = unhide_at.replace(tzinfo=timezone.utc)
        return unhide_at > now


def active_hidden_ids(hidden: Iterable[HiddenEdge], now: datetime) -> frozenset[str]:
    return frozenset(h.edge_key for h in hidden if h.is_active(now))


@dataclass(frozen=True)
class ViewRequest:
    """What one subscription asked for, plus the server-resolved plan."""

    plan: Plan = Plan.ANONYMOUS
    mode: ViewMode = ViewMode.ALL
    event_id: Optional[str] = None
    limit: Optional[int] = None
    cursor: int = 0
    hidden: tuple[HiddenEdge, ...] = ()
    now: Optional[datetime] = None

    @property
    def limits(self) -> PlanLimits:
        return PLAN_LIMITS[self.plan]

    @property
    def tier(self) -> Tier:
        return self.limits.tier

    @property
    def effective_limit(self) -> int:
        """Requested limit clamped to the plan maximum."""
        maximum = self.limits.max_results
        if self.limit is None or self.limit <= 0:
            return maximum
        return min(self.limit, maximum)


@dataclass(frozen=True)
class RankedView:
    """Ranked, filtered and capped opportunities for one subscription."""

    rows: tuple[Opportunity, ...]
    counts: dict[str, int] = field(default_factory=dict)
    filtered_count: int = 0
    filtered_reason: Optional[str] = None
    plan: Plan = Plan.ANONYMOUS
    limit: int = 0
    cursor: int = 0
    has_more: bool = False

    @property
    def ids(self) -> list[str]:
        return [o.id for o in self.rows]

    @property
    def by_id(self) -> dict[str, Opportunity]:
        return {o.id: o for o in self.rows}

    @property
    def next_cursor(self) -> Optional[int]:
        return self.cursor + self.limit if self.has_more else None


def sort_key(opportunity: Opportunity) -> tuple:
    """ROI descending, then earliest event start, then id."""
    start = opportunity.event_start.timestamp() if opportunity.event_start else math.inf
    return (-opportunity.roi_bps, start, opportunity.id)


def count_by_mode(opportunities: Iterable[Opportunity]) -> dict[str, int]:
    counts = {"all": 0, "pregame": 0, "live": 0}
    for opp in opportunities:
        counts["all"] += 1
        if opp.mode == Mode.LIVE:
            counts["live"] += 1
        else:
            counts["pregame"] += 1
    return counts


def _matches_mode(opportunity: Opportunity, mode: ViewMode) -> bool:
    if mode == ViewMode.ALL:
        return True
    return opportunity.mode.value == mode.value


def _tier_allows(opportunity: Opportunity, limits: PlanLimits) -> bool:
    if opportunity.is_live and not limits.has_live:
        return False
    if limits.max_roi_bps is not None and opportunity.roi_bps > limits.max_roi_bps:
        return False
    return True


def _filtered_reason(limits: PlanLimits) -> str:
    if limits.tier == Tier.FREE:
        return FREE_FILTERED_REASON
    return NO_LIVE_FILTERED_REASON


def rank(opportunities: Iterable[Opportunity], view: ViewRequest) -> RankedView:
    """
    Apply one subscription's view to the shared opportunities.

    Order of operations: event filter, hidden edges, counts, mode, tier
    rules, sort, page. Counts therefore reflect everything the user has not
    hidden, independent of tier and limit, while ``filtered_count`` reports
    how many rows the plan withheld.
    """
    now = view.now or datetime.now(timezone.utc)
    hidden_ids = active_hidden_ids(view.hidden, now)

    candidates = [
        o
        for o in opportunities
        if (view.event_id is None or o.event_id == view.event_id) and o.id not in hidden_ids
    ]
    counts = count_by_mode(candidates)

    limits = view.limits
    visible = []
    filtered = 0
    for opp in candidates:
        if not _matches_mode(opp, view.mode):
            continue
        if not _tier_allows(opp, limits):
            filtered += 1
            continue
        visible.append(opp)

    visible.sort(key=sort_key)
    limit = view.effective_limit
    cursor = max(0, view.cursor)

    return RankedView(
        rows=tuple(visible[cursor : cursor + limit]),
        counts=counts,
        filtered_count=filtered,
        filtered_reason=_filtered_reason(limits) if filtered else None,
        plan=view.plan,
        limit=limit,
        cursor=cursor,
        has_more=cursor + limit < len(visible),
    )
