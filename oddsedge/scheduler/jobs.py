"""
Background job definitions for the scheduler.

Each job is an async function that performs a specific task:
- run_tick: Snapshot quotes, detect opportunities, publish to subscribers
- poll_odds: Pull quotes from the polling feeds into the quote store
- sweep_quotes: Drop quotes older than the maximum age
- health_check: Monitor feed health
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)


async def run_tick(engine: Any) -> Optional[dict]:
    """
    Run one detection tick.

    Args:
        engine: TickEngine instance

    Returns:
        Tick stats, or None if the tick was skipped
    """
    snapshot = await engine.run_tick()
    if snapshot is None:
        return None
    return engine.stats()


async def poll_odds(feeds: list[Any], store: Any) -> dict[str, int]:
    """
    Poll every available feed into the quote store.

    A failing feed is logged and skipped so the others still land.

    Args:
        feeds: BaseQuoteFeed instances
        store: QuoteStore instance

    Returns:
        Accepted quote count per feed
    """
    from oddsedge.data.sources.base import DataSourceError

    accepted: dict[str, int] = {}
    failures: list[str] = []
    for feed in feeds:
        if not feed.is_available:
            logger.debug(f"Feed {feed.source_name} unavailable, skipping")
            continue
        try:
            accepted[feed.source_name] = await feed.poll_into(store)
        except DataSourceError as e:
            logger.error(f"Poll failed for {feed.source_name}: {e}")
            failures.append(feed.source_name)

    total = sum(accepted.values())
    logger.info(f"Odds poll: {total} quotes accepted from {len(accepted)} feeds")
    if failures and not accepted:
        raise RuntimeError(f"All feeds failed: {', '.join(failures)}")
    return accepted


async def sweep_quotes(store: Any) -> int:
    """Remove stale quotes so they stop contributing to detection."""
    removed = store.sweep(datetime.now(timezone.utc))
    if removed:
        logger.debug(f"Swept {removed} stale quotes")
    return removed


async def health_check(feeds: list[Any]) -> dict[str, str]:
    """
    Periodic health monitoring of all feeds.

    Returns:
        Status per feed name
    """
    status = {}
    for feed in feeds:
        health = await feed.health_check()
        status[feed.source_name] = health.status.value
        if health.status.value not in ("healthy", "disabled"):
            logger.warning(f"Feed {feed.source_name} {health.status.value}: {health.error_message}")
    return status
