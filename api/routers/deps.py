"""Shared request dependencies: app state, caller identity and plan."""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from api.state import AppState
from oddsedge.accounts.entitlements import ANONYMOUS_PLAN, ResolvedPlan
from oddsedge.accounts.sessions import Principal, extract_bearer_token


def get_app_state(request: Request) -> AppState:
    app_state = request.app.state.app_state
    if not app_state.is_initialized:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return app_state


def get_principal(
    app_state: AppState = Depends(get_app_state),
    authorization: Optional[str] = Header(None),
) -> Principal:
    """
    Caller identity from the bearer token.

    Raises:
        SessionExpiredError: mapped to ``401 {"error": "auth_expired"}``
    """
    return app_state.validator.validate(extract_bearer_token(authorization))


def get_plan(
    app_state: AppState = Depends(get_app_state),
    principal: Principal = Depends(get_principal),
) -> ResolvedPlan:
    """Server-resolved plan. A failed lookup degrades to free with an error."""
    if not principal.authenticated:
        return ANONYMOUS_PLAN
    return app_state.entitlements.resolve_or_free(principal)
