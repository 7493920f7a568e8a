"""Server-sent event streams of ranked opportunities."""

import asyncio
import logging
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Header, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from oddsedge.accounts.sessions import Principal, SessionExpiredError, extract_bearer_token
from oddsedge.config.constants import SSE_EVENT_AUTH_EXPIRED, OpportunityKind, parse_view_mode
from oddsedge.streaming.sse import PING, format_sse
from oddsedge.streaming.subscriptions import Subscription

logger = logging.getLogger(__name__)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def _expired_stream() -> AsyncIterator[str]:
    yield format_sse(SSE_EVENT_AUTH_EXPIRED, {"error": "auth_expired"})


async def _subscription_stream(
    request: Request, sub: Subscription, keepalive_seconds: float
) -> AsyncIterator[str]:
    """
    Relay a subscription's deliveries, with keepalive comments in between.

    The subscription is removed from the hub as soon as the client goes
    away or a terminal event has been sent.
    """
    hub = sub.hub
    pending: Optional[asyncio.Future] = None
    try:
        while not sub.closed:
            if pending is None:
                pending = asyncio.ensure_future(sub.next_delivery())
            done, _ = await asyncio.wait({pending}, timeout=keepalive_seconds)
            if not done:
                if await request.is_disconnected():
                    break
                yield PING
                continue

            updates = pending.result()
            pending = None
            if not updates:
                break
            for update in updates:
                yield format_sse(update.event, update.data)
            if any(u.terminal for u in updates):
                break
    finally:
        if pending is not None:
            pending.cancel()
        hub.disconnect(sub.id)
        logger.debug(f"Stream for subscription {sub.id} closed")


async def _open_stream(
    request: Request,
    authorization: Optional[str],
    kind: OpportunityKind,
    mode: str,
    event_id: Optional[str],
    limit: Optional[int],
    model_id: Optional[str] = None,
) -> StreamingResponse:
    app_state = request.app.state.app_state
    if not app_state.is_initialized:
        raise HTTPException(status_code=503, detail="Service not initialized")

    token = extract_bearer_token(authorization)
    try:
        principal: Principal = await asyncio.to_thread(app_state.validator.validate, token)
    except SessionExpiredError:
        return StreamingResponse(_expired_stream(), media_type="text/event-stream", headers=SSE_HEADERS)

    ev_model = None
    if model_id and principal.authenticated:
        ev_model = await asyncio.to_thread(
            app_state.repository.get_ev_model, principal.user_id, model_id
        )
        if ev_model is None:
            raise HTTPException(status_code=404, detail=f"EV model {model_id} not found")

    sub = app_state.hub.connect(
        principal,
        mode=parse_view_mode(mode),
        event_id=event_id,
        limit=limit,
        kind=kind,
        ev_model=ev_model,
    )
    return StreamingResponse(
        _subscription_stream(request, sub, app_state.settings.tick.keepalive_seconds),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/sse/arbs")
async def stream_arbs(
    request: Request,
    mode: str = Query("all", description="prematch, pregame, live or all"),
    event_id: Optional[str] = Query(None, description="Restrict to one event"),
    limit: Optional[int] = Query(None, description="Maximum rows, clamped to the plan maximum"),
    authorization: Optional[str] = Header(None),
):
    """
    Live arbitrage stream.

    Events: ``hello`` once, ``update`` with row deltas, ``entitlement_error``
    when the plan could not be checked, ``auth_expired`` before the stream
    ends on an expired session. ``: ping`` comments keep idle connections open.
    """
    return await _open_stream(request, authorization, OpportunityKind.ARB, mode, event_id, limit)


@router.get("/sse/ev")
async def stream_ev(
    request: Request,
    model_id: Optional[str] = Query(None, description="One of the caller's EV models"),
    mode: str = Query("all", description="prematch, pregame, live or all"),
    event_id: Optional[str] = Query(None, description="Restrict to one event"),
    limit: Optional[int] = Query(None, description="Maximum rows, clamped to the plan maximum"),
    authorization: Optional[str] = Header(None),
):
    """Live positive-EV stream, optionally through one of the caller's models."""
    return await _open_stream(
        request, authorization, OpportunityKind.EV, mode, event_id, limit, model_id=model_id
    )
