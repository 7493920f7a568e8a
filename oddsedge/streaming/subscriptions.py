"""
Server-side subscriptions.

Each connected client owns a Subscription with a single-slot mailbox.
``SubscriptionHub.publish`` drops the newest tick snapshot into every
mailbox without waiting, so a slow client only ever skips intermediate
ticks and never holds up the tick engine. The subscription re-derives the
caller's session and plan on every delivery, then ranks and diffs the
snapshot for that caller alone.
"""
import asyncio
import itertools
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from oddsedge.accounts.entitlements import (
    ANONYMOUS_PLAN,
    EntitlementLookupError,
    ResolvedPlan,
)
from oddsedge.accounts.sessions import Principal, SessionExpiredError
from oddsedge.betting.value_detector import EvModelConfig
from oddsedge.config.constants import (
    ROWS_FORMAT,
    SSE_EVENT_AUTH_EXPIRED,
    SSE_EVENT_ENTITLEMENT_ERROR,
    SSE_EVENT_HELLO,
    SSE_EVENT_UPDATE,
    OpportunityKind,
    Plan,
    Tier,
    ViewMode,
)
from oddsedge.engine.changes import diff
from oddsedge.engine.opportunity import Opportunity, TickSnapshot
from oddsedge.engine.ranking import ViewRequest, rank


@dataclass(frozen=True)
class Update:
    """One server-sent event."""

    event: str
    data: dict[str, Any]

    @property
    def terminal(self) -> bool:
        """The stream ends after this event."""
        return self.event == SSE_EVENT_AUTH_EXPIRED


@dataclass
class Subscription:
    """
    One connected client.

    Server owned, never persisted. ``last_rows`` holds exactly what was
    delivered last and is the baseline for the next diff.
    """

    id: int
    principal: Principal
    mode: ViewMode = ViewMode.ALL
    event_id: Optional[str] = None
    limit: Optional[int] = None
    kind: OpportunityKind = OpportunityKind.ARB
    ev_model: Optional[EvModelConfig] = None
    hub: Any = None

    plan: ResolvedPlan = ANONYMOUS_PLAN
    last_rows: dict[str, Opportunity] = field(default_factory=dict)
    last_counts: Optional[dict[str, int]] = None
    delivered_version: int = 0
    last_delivered_at: Optional[float] = None
    closed: bool = False
    hello_sent: bool = False

    _pending: Optional[TickSnapshot] = field(default=None, repr=False)
    _wakeup: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def tier(self) -> Tier:
        return self.plan.tier

    @property
    def realtime(self) -> bool:
        """Pro tier watching live markets gets every tick."""
        return (
            self.plan.tier == Tier.PRO
            and self.plan.limits.has_live
            and self.mode != ViewMode.PREMATCH
        )

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def offer(self, snapshot: TickSnapshot) -> None:
        """Replace whatever is waiting with the newest snapshot."""
        if self.closed:
            return
        self._pending = snapshot
        self._wakeup.set()

    def close(self) -> None:
        self.closed = True
        self._wakeup.set()

    def _interval(self) -> float:
        if self.realtime or self.hub is None:
            return 0.0
        return self.hub.slow_interval_seconds

    async def next_delivery(self) -> list[Update]:
        """
        Wait until a snapshot is due and build the events for it.

        Returns an empty list once the subscription is closed. Safe to
        cancel: the pending snapshot is only taken after the last wait.
        """
        if not self.hello_sent:
            self.hello_sent = True
            return await asyncio.to_thread(self.hub.build_hello, self)

        while not self.closed:
            await self._wakeup.wait()
            if self.closed:
                break

            if self.last_delivered_at is not None:
                remaining = self.last_delivered_at + self._interval() - self.hub.clock()
                if remaining > 0:
                    await asyncio.sleep(remaining)
                    if self.closed:
                        break

            snapshot = self._pending
            self._pending = None
            self._wakeup.clear()
            if snapshot is None:
                continue

            updates = await asyncio.to_thread(self.hub.build_delivery, self, snapshot)
            if updates:
                return updates
        return []


class SubscriptionHub:
    """
    Registry of connected subscriptions.

    Example:
        >>> hub = SubscriptionHub(engine=engine, validator=validator, entitlements=service)
        >>> sub = hub.connect(principal, mode=ViewMode.LIVE)
        >>> updates = await sub.next_delivery()   # hello
        >>> updates = await sub.next_delivery()   # first full update
        >>> hub.disconnect(sub.id)
    """

    def __init__(
        self,
        engine: Any = None,
        validator: Any = None,
        entitlements: Any = None,
        repository: Any = None,
        slow_interval_seconds: float = 15.0,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.engine = engine
        self.validator = validator
        self.entitlements = entitlements
        self.repository = repository
        self.slow_interval_seconds = slow_interval_seconds
        self.clock = clock
        self.wall_clock = wall_clock
        self._subscriptions: dict[int, Subscription] = {}
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._subscriptions)

    def connect(
        self,
        principal: Principal,
        mode: ViewMode = ViewMode.ALL,
        event_id: Optional[str] = None,
        limit: Optional[int] = None,
        kind: OpportunityKind = OpportunityKind.ARB,
        ev_model: Optional[EvModelConfig] = None,
    ) -> Subscription:
        sub = Subscription(
            id=next(self._ids),
            principal=principal,
            mode=mode,
            event_id=event_id,
            limit=limit,
            kind=kind,
            ev_model=ev_model,
            hub=self,
        )
        self._subscriptions[sub.id] = sub
        if self.engine is not None and self.engine.latest.version > 0:
            sub.offer(self.engine.latest)
        logger.debug(f"Subscription {sub.id} connected ({len(self)} active)")
        return sub

    def disconnect(self, sub_id: int) -> None:
        sub = self._subscriptions.pop(sub_id, None)
        if sub is not None:
            sub.close()
            logger.debug(f"Subscription {sub_id} disconnected ({len(self)} active)")

    def publish(self, snapshot: TickSnapshot) -> None:
        """Hand a new snapshot to every subscription. Never blocks."""
        for sub in list(self._subscriptions.values()):
            sub.offer(snapshot)

    def close_all(self) -> None:
        for sub_id in list(self._subscriptions):
            self.disconnect(sub_id)

    # ------------------------------------------------------------------
    # Delivery building. Runs in a worker thread: repository calls block.
    # ------------------------------------------------------------------
    def _authorize(self, sub: Subscription) -> list[Update]:
        """
        Re-check the session and plan. Returns events to send first.

        Raises:
            SessionExpiredError: when the session is no longer valid
        """
        if self.validator is not None:
            sub.principal = self.validator.revalidate(sub.principal)

        if not sub.principal.authenticated:
            sub.plan = ANONYMOUS_PLAN
            return []
        if self.entitlements is None:
            sub.plan = ResolvedPlan(plan=Plan.FREE, user_id=sub.principal.user_id)
            return []

        already_degraded = sub.plan.error is not None
        try:
            sub.plan = self.entitlements.resolve(sub.principal)
            return []
        except EntitlementLookupError:
            sub.plan = ResolvedPlan(
                plan=Plan.FREE,
                user_id=sub.principal.user_id,
                error="entitlement_unavailable",
            )
            if already_degraded:
                return []
            return [
                Update(
                    SSE_EVENT_ENTITLEMENT_ERROR,
                    {"error": "entitlement_unavailable", "plan": Plan.FREE.value},
                )
            ]

    def _expired(self, sub: Subscription) -> list[Update]:
        sub.close()
        self._subscriptions.pop(sub.id, None)
        return [Update(SSE_EVENT_AUTH_EXPIRED, {"error": "auth_expired"})]

    def build_hello(self, sub: Subscription) -> list[Update]:
        try:
            events = self._authorize(sub)
        except SessionExpiredError:
            return self._expired(sub)

        events.append(
            Update(
                SSE_EVENT_HELLO,
                {
                    "format": ROWS_FORMAT,
                    "v": self.engine.version if self.engine is not None else 0,
                    "plan": sub.plan.plan.value,
                    "tier": sub.tier.value,
                    "authenticated": sub.principal.authenticated,
                    "mode": sub.mode.value,
                    "kind": sub.kind.value,
                    "realtime": sub.realtime,
                },
            )
        )
        return events

    def opportunities_for(self, sub: Subscription, snapshot: TickSnapshot) -> tuple[Opportunity, ...]:
        if sub.kind == OpportunityKind.EV and sub.ev_model is not None and self.engine is not None:
            return self.engine.ev_for_model(sub.ev_model, snapshot)
        return snapshot.of_kind(sub.kind)

    def build_delivery(self, sub: Subscription, snapshot: TickSnapshot) -> list[Update]:
        """
        Rank and diff one snapshot for one subscription.

        Returns no events when nothing visible changed.
        """
        try:
            events = self._authorize(sub)
        except SessionExpiredError:
            return self._expired(sub)

        hidden = ()
        if sub.principal.authenticated and self.repository is not None:
            try:
                hidden = self.repository.get_hidden_edges(sub.principal.user_id)
            except SQLAlchemyError as e:
                logger.warning(f"Hidden edge lookup failed for {sub.principal.user_id}: {e}")

        view = rank(
            self.opportunities_for(sub, snapshot),
            ViewRequest(
                plan=sub.plan.plan,
                mode=sub.mode,
                event_id=sub.event_id,
                limit=sub.limit,
                hidden=hidden,
                now=self.wall_clock(),
            ),
        )
        changes = diff(sub.last_rows, view.rows)

        sub.delivered_version = snapshot.version
        sub.last_delivered_at = self.clock()

        if changes.is_empty and view.counts == sub.last_counts and not events:
            return []

        changed = set(changes.changed_ids)
        events.append(
            Update(
                SSE_EVENT_UPDATE,
                {
                    "v": snapshot.version,
                    "ids": view.ids,
                    "rows": [o.to_row() for o in view.rows if o.id in changed],
                    "added": list(changes.added),
                    "changes": changes.to_wire(),
                    "counts": view.counts,
                    "filteredCount": view.filtered_count,
                    "filteredReason": view.filtered_reason,
                    "plan": sub.plan.plan.value,
                    "mode": sub.mode.value,
                },
            )
        )
        sub.last_rows = view.by_id
        sub.last_counts = view.counts

        if changes.removed:
            logger.debug(f"Subscription {sub.id}: {len(changes.removed)} rows dropped at v{snapshot.version}")
        return events
