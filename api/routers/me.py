"""Signed-in caller's plan."""

import asyncio
from typing import Any, Optional

from fastapi import APIRouter, Header, HTTPException, Request

from oddsedge.accounts.entitlements import ANONYMOUS_PLAN
from oddsedge.accounts.sessions import SessionExpiredError, extract_bearer_token
from oddsedge.config.constants import Plan

router = APIRouter()


@router.get("/me/plan")
async def get_my_plan(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> dict[str, Any]:
    """
    Current plan, as resolved by the server.

    Never fails on an expired session: the stream client calls this before
    reconnecting and needs ``authenticated: false`` to know it must sign in.
    """
    app_state = request.app.state.app_state
    if not app_state.is_initialized:
        raise HTTPException(status_code=503, detail="Service not initialized")

    token = extract_bearer_token(authorization)
    try:
        principal = await asyncio.to_thread(app_state.validator.validate, token)
    except SessionExpiredError:
        return {"plan": Plan.FREE.value, "authenticated": False, "error": "auth_expired"}

    if not principal.authenticated:
        data = ANONYMOUS_PLAN.to_dict()
        data["plan"] = Plan.FREE.value
        return data

    resolved = await asyncio.to_thread(app_state.entitlements.resolve_or_free, principal)
    return resolved.to_dict()
