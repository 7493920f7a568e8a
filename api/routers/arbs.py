"""Arbitrage opportunity endpoints."""

from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from fastapi import APIRouter, Depends, Query, Response

from api.routers.deps import get_app_state, get_plan, get_principal
from api.state import AppState
from oddsedge.accounts.entitlements import ResolvedPlan
from oddsedge.accounts.sessions import Principal
from oddsedge.config.constants import ROWS_FORMAT, OpportunityKind, Plan, parse_view_mode
from oddsedge.engine.opportunity import Opportunity
from oddsedge.engine.ranking import RankedView, ViewRequest, rank

router = APIRouter()

TEASER_DEFAULT_LIMIT = 10
TEASER_MAX_LIMIT = 20


def ranked_view(
    app_state: AppState,
    opportunities: Iterable[Opportunity],
    plan: Plan,
    principal: Optional[Principal] = None,
    mode: Optional[str] = None,
    event_id: Optional[str] = None,
    limit: Optional[int] = None,
    cursor: int = 0,
) -> RankedView:
    """Rank opportunities for one caller, applying their hidden edges."""
    hidden = ()
    if principal is not None and principal.authenticated:
        hidden = app_state.repository.get_hidden_edges(principal.user_id)
    return rank(
        opportunities,
        ViewRequest(
            plan=plan,
            mode=parse_view_mode(mode),
            event_id=event_id,
            limit=limit,
            cursor=cursor,
            hidden=hidden,
            now=datetime.now(timezone.utc),
        ),
    )


def view_payload(view: RankedView, resolved: ResolvedPlan, version: int, mode: str) -> dict[str, Any]:
    """Full ranked view in the REST response shape."""
    limits = resolved.limits
    payload: dict[str, Any] = {
        "format": ROWS_FORMAT,
        "v": version,
        "mode": mode,
        "ids": view.ids,
        "rows": [o.to_row() for o in view.rows],
        "plan": resolved.plan.value,
        "limits": {
            "maxResults": limits.max_results,
            "hasLive": limits.has_live,
            "maxRoiBps": limits.max_roi_bps,
            "limit": view.limit,
        },
        "counts": view.counts,
        "cursor": view.cursor,
        "hasMore": view.has_more,
        "nextCursor": view.next_cursor,
    }
    if view.filtered_count:
        payload["filteredCount"] = view.filtered_count
        payload["filteredReason"] = view.filtered_reason
    if resolved.error:
        payload["error"] = resolved.error
    return payload


@router.get("/arbs/counts")
def get_counts(
    event_id: Optional[str] = Query(None, description="Restrict to one event"),
    app_state: AppState = Depends(get_app_state),
    principal: Principal = Depends(get_principal),
) -> dict[str, int]:
    """
    Opportunity counts by mode.

    Counts ignore plan limits, so they show what an upgrade would unlock.
    """
    snapshot = app_state.engine.latest
    view = ranked_view(
        app_state,
        snapshot.of_kind(OpportunityKind.ARB),
        Plan.ELITE,
        principal=principal,
        event_id=event_id,
    )
    return view.counts


@router.get("/arbs/teaser")
def get_teaser(
    limit: int = Query(TEASER_DEFAULT_LIMIT, ge=1, description="Number of rows"),
    app_state: AppState = Depends(get_app_state),
) -> dict[str, Any]:
    """Free-tier preview of the top arbs. Public, without deep links."""
    snapshot = app_state.engine.latest
    view = ranked_view(
        app_state,
        snapshot.of_kind(OpportunityKind.ARB),
        Plan.FREE,
        limit=min(limit, TEASER_MAX_LIMIT),
    )
    return {
        "format": ROWS_FORMAT,
        "v": snapshot.version,
        "rows": [o.to_row(include_links=False) for o in view.rows],
        "counts": view.counts,
    }


@router.get("/arbs/rows")
def get_rows(
    ids: str = Query(..., description="Comma separated opportunity ids"),
    app_state: AppState = Depends(get_app_state),
    resolved: ResolvedPlan = Depends(get_plan),
) -> dict[str, Any]:
    """
    Rows by id from the current snapshot.

    Ids that no longer exist, or that the caller's plan may not see, are
    reported in ``missing``.
    """
    snapshot = app_state.engine.latest
    requested = [i for i in (part.strip() for part in ids.split(",")) if i]
    found = [snapshot.by_id[i] for i in requested if i in snapshot.by_id]
    view = ranked_view(app_state, found, resolved.plan)
    visible = view.by_id

    return {
        "format": ROWS_FORMAT,
        "v": snapshot.version,
        "rows": [visible[i].to_row() for i in requested if i in visible],
        "missing": [i for i in requested if i not in visible],
    }


@router.get("/arbs")
def get_arbs(
    mode: str = Query("all", description="prematch, pregame, live or all"),
    event_id: Optional[str] = Query(None, description="Restrict to one event"),
    limit: Optional[int] = Query(None, description="Maximum rows, clamped to the plan maximum"),
    cursor: int = Query(0, ge=0, description="Offset into the ranked list"),
    v: int = Query(0, description="Version the caller already has"),
    app_state: AppState = Depends(get_app_state),
    principal: Principal = Depends(get_principal),
    resolved: ResolvedPlan = Depends(get_plan),
) -> Any:
    """
    Ranked arbitrage opportunities for the caller's plan.

    Returns 304 when ``v`` matches the current snapshot version.
    """
    snapshot = app_state.engine.latest
    if v and v == snapshot.version:
        return Response(status_code=304, headers={"Cache-Control": "no-store"})

    view = ranked_view(
        app_state,
        snapshot.of_kind(OpportunityKind.ARB),
        resolved.plan,
        principal=principal,
        mode=mode,
        event_id=event_id,
        limit=limit,
        cursor=cursor,
    )
    return view_payload(view, resolved, snapshot.version, parse_view_mode(mode).value)
