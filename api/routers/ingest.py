"""Push ingestion of sportsbook quotes."""

import logging
import secrets
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from api.routers.deps import get_app_state
from api.state import AppState
from oddsedge.database.schemas import IngestRequest, IngestResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def require_ingest_key(
    app_state: AppState = Depends(get_app_state),
    x_ingest_key: Optional[str] = Header(None),
) -> None:
    """Reject callers without the shared ingest key. No key configured means ingestion is off."""
    expected = app_state.settings.ingest_api_key
    if not expected:
        raise HTTPException(status_code=403, detail="Ingestion is disabled")
    if not x_ingest_key or not secrets.compare_digest(x_ingest_key, expected):
        raise HTTPException(status_code=401, detail="Invalid ingest key")


@router.post(
    "/ingest/quotes",
    response_model=IngestResponse,
    dependencies=[Depends(require_ingest_key)],
)
def ingest_quotes(
    body: IngestRequest,
    app_state: AppState = Depends(get_app_state),
) -> dict[str, Any]:
    """
    Ingest a batch of quotes.

    Quotes land in the store immediately and are picked up by the next
    tick. Malformed and out-of-order quotes are counted, not errors.
    """
    store = app_state.store
    accepted, rejected = store.ingest_batch(q.to_raw() for q in body.quotes)
    total_rejected = sum(rejected.values())
    if total_rejected:
        logger.debug(f"Ingest: {accepted} accepted, {total_rejected} rejected {rejected}")
    return {
        "accepted": accepted,
        "rejected": total_rejected,
        "store_size": len(store),
        "rejected_by_reason": rejected,
    }


@router.delete("/ingest/events/{event_id}", dependencies=[Depends(require_ingest_key)])
def remove_event(event_id: str, app_state: AppState = Depends(get_app_state)) -> dict[str, Any]:
    """Drop every quote for an event, e.g. once it has settled."""
    removed = app_state.store.remove_event(event_id)
    return {"event_id": event_id, "removed": removed}
