"""Positive-EV opportunity endpoints."""

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from api.routers.arbs import ranked_view, view_payload
from api.routers.deps import get_app_state, get_plan, get_principal
from api.state import AppState
from oddsedge.accounts.entitlements import ResolvedPlan
from oddsedge.accounts.sessions import Principal
from oddsedge.config.constants import OpportunityKind, parse_view_mode

router = APIRouter()


@router.get("/ev")
def get_ev(
    model_id: Optional[str] = Query(None, description="One of the caller's EV models"),
    mode: str = Query("all", description="prematch, pregame, live or all"),
    event_id: Optional[str] = Query(None, description="Restrict to one event"),
    limit: Optional[int] = Query(None, description="Maximum rows, clamped to the plan maximum"),
    app_state: AppState = Depends(get_app_state),
    principal: Principal = Depends(get_principal),
    resolved: ResolvedPlan = Depends(get_plan),
) -> dict[str, Any]:
    """
    Ranked positive-EV opportunities.

    Without ``model_id`` the default sharp-book consensus is used. A custom
    model is evaluated against the same tick snapshot as everyone else.
    """
    snapshot = app_state.engine.latest

    if model_id:
        if not principal.authenticated:
            raise HTTPException(status_code=401, detail="Sign in to use a custom EV model")
        config = app_state.repository.get_ev_model(principal.user_id, model_id)
        if config is None:
            raise HTTPException(status_code=404, detail=f"EV model {model_id} not found")
        opportunities = app_state.engine.ev_for_model(config, snapshot)
        model_name = config.name
    else:
        opportunities = snapshot.of_kind(OpportunityKind.EV)
        model_name = app_state.detector.default_ev_config.name

    view = ranked_view(
        app_state,
        opportunities,
        resolved.plan,
        principal=principal,
        mode=mode,
        event_id=event_id,
        limit=limit,
    )
    payload = view_payload(view, resolved, snapshot.version, parse_view_mode(mode).value)
    payload["model"] = {"id": model_id, "name": model_name}
    return payload


@router.get("/ev/models")
def list_models(
    app_state: AppState = Depends(get_app_state),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    """The caller's active EV models."""
    if not principal.authenticated:
        return {"models": []}
    models = app_state.repository.list_ev_models(principal.user_id)
    return {
        "models": [
            {
                "id": m.model_id,
                "name": m.name,
                "sharp_books": list(m.sharp_books),
                "sports": list(m.sports),
                "markets": list(m.markets),
                "market_type": m.market_type,
                "fallback_mode": m.fallback_mode,
                "min_books_reference": m.min_books_reference,
            }
            for m in models
        ]
    }
