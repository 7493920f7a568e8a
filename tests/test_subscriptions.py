"""Tests for server-side subscriptions and the hub."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from oddsedge.accounts.entitlements import EntitlementService, ResolvedPlan
from oddsedge.accounts.sessions import ANONYMOUS, Principal, SessionExpiredError
from oddsedge.config.constants import Plan, ViewMode
from oddsedge.engine.opportunity import TickSnapshot
from oddsedge.engine.ranking import HiddenEdge
from oddsedge.engine.tick import TickEngine
from oddsedge.streaming.subscriptions import SubscriptionHub

USER = Principal(user_id="u1", token="t1")


class FakeEntitlements:
    def __init__(self, plan: Plan):
        self.plan = plan

    def resolve(self, principal):
        return ResolvedPlan(plan=self.plan, user_id=principal.user_id)


class ExpiringValidator:
    """Accepts the session until ``expired`` is set."""

    def __init__(self):
        self.expired = False

    def revalidate(self, principal):
        if self.expired:
            raise SessionExpiredError("session expired")
        return principal


class BrokenRepository:
    def get_entitlement(self, user_id):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    def get_hidden_edges(self, user_id):
        raise OperationalError("SELECT", {}, Exception("database is locked"))


class HiddenEdgeRepository:
    def __init__(self, *hidden):
        self.hidden = hidden

    def get_hidden_edges(self, user_id):
        return self.hidden


class WallClock:
    def __init__(self, start):
        self.current = start

    def __call__(self):
        return self.current


@pytest.fixture
def make_hub(arb_store):
    def _make(plan=Plan.ELITE, validator=None, entitlements=None, repository=None, wall_clock=None):
        hub = SubscriptionHub(
            validator=validator,
            entitlements=entitlements or FakeEntitlements(plan),
            repository=repository,
            slow_interval_seconds=15.0,
        )
        if wall_clock is not None:
            hub.wall_clock = wall_clock
        engine = TickEngine(arb_store, hub=hub)
        hub.engine = engine
        return hub, engine

    return _make


async def deliver(sub):
    return await asyncio.wait_for(sub.next_delivery(), timeout=2)


class TestSubscription:
    """Tests for one subscription's delivery loop."""

    async def test_hello_first(self, make_hub):
        hub, _ = make_hub()
        sub = hub.connect(USER)

        (hello,) = await deliver(sub)

        assert hello.event == "hello"
        assert hello.data["plan"] == "elite"
        assert hello.data["tier"] == "pro"
        assert hello.data["realtime"] is True
        assert hello.data["authenticated"] is True

    async def test_first_update_after_tick(self, make_hub, now):
        """Test that a subscriber joining after a tick gets the current rows."""
        hub, engine = make_hub()
        snapshot = await engine.run_tick(now)
        sub = hub.connect(USER)

        await deliver(sub)
        (update,) = await deliver(sub)

        assert update.event == "update"
        assert update.data["v"] == snapshot.version
        assert update.data["ids"] == [snapshot.opportunities[0].id]
        assert len(update.data["rows"]) == 1
        assert update.data["added"] == update.data["ids"]
        assert update.data["counts"] == {"all": 1, "pregame": 1, "live": 0}

    async def test_update_carries_changed_rows_only(self, make_hub, arb_store, make_raw, now):
        """Test that an unchanged row is listed in ids but not resent."""
        arb_store.ingest_many(
            [make_raw("bookx", "over", 110, event_id="evt2"), make_raw("booky", "under", 105, event_id="evt2")]
        )
        hub, engine = make_hub()
        await engine.run_tick(now)
        sub = hub.connect(USER)
        await deliver(sub)
        await deliver(sub)

        later = now + timedelta(seconds=1)
        arb_store.ingest(make_raw("bookx", "over", 125, timestamp=later))
        snapshot = await engine.run_tick(later)
        (update,) = await deliver(sub)

        changed = next(o for o in snapshot.opportunities if o.event_id == "evt1")
        assert len(update.data["ids"]) == 2
        assert [row["id"] for row in update.data["rows"]] == [changed.id]
        assert update.data["changes"][changed.id]["roi"] == "up"
        assert update.data["added"] == []

    async def test_free_plan_filtered(self, make_hub, now):
        hub, engine = make_hub(plan=Plan.FREE)
        await engine.run_tick(now)
        sub = hub.connect(USER)
        await deliver(sub)

        (update,) = await deliver(sub)

        assert update.data["ids"] == []
        assert update.data["filteredCount"] == 1
        assert update.data["counts"]["all"] == 1

    async def test_disconnect_ends_delivery(self, make_hub):
        hub, _ = make_hub()
        sub = hub.connect(USER)
        await deliver(sub)

        waiting = asyncio.create_task(sub.next_delivery())
        await asyncio.sleep(0)
        hub.disconnect(sub.id)

        assert await asyncio.wait_for(waiting, timeout=2) == []
        assert len(hub) == 0

    async def test_hidden_edge_reappears_on_unchanged_tick(self, make_hub, now):
        """Test that an expired hide is lifted on the next tick even when quotes did not move."""
        repository = HiddenEdgeRepository()
        clock = WallClock(now)
        hub, engine = make_hub(repository=repository, wall_clock=clock)
        snapshot = await engine.run_tick(now)
        opp_id = snapshot.opportunities[0].id
        repository.hidden = (HiddenEdge(opp_id, now + timedelta(seconds=30)),)
        sub = hub.connect(USER)
        await deliver(sub)

        (update,) = await deliver(sub)
        assert update.data["ids"] == []

        clock.current = now + timedelta(minutes=1)
        await engine.run_tick(now)
        (update,) = await deliver(sub)

        assert update.data["v"] == snapshot.version
        assert update.data["ids"] == [opp_id]
        assert update.data["added"] == [opp_id]

    async def test_session_expiry_on_unchanged_tick(self, make_hub, now):
        validator = ExpiringValidator()
        hub, engine = make_hub(validator=validator)
        await engine.run_tick(now)
        sub = hub.connect(USER)
        await deliver(sub)
        await deliver(sub)

        validator.expired = True
        await engine.run_tick(now)
        (event,) = await deliver(sub)

        assert event.event == "auth_expired"
        assert sub.closed

    async def test_downgrade_on_unchanged_tick(self, make_hub, now):
        """Test that a plan change applies on the next tick without a price move."""
        entitlements = FakeEntitlements(Plan.ELITE)
        hub, engine = make_hub(entitlements=entitlements)
        await engine.run_tick(now)
        sub = hub.connect(USER)
        await deliver(sub)
        (update,) = await deliver(sub)
        assert len(update.data["ids"]) == 1

        entitlements.plan = Plan.FREE
        await engine.run_tick(now)
        (update,) = await deliver(sub)

        assert update.data["plan"] == "free"
        assert update.data["ids"] == []
        assert update.data["filteredCount"] == 1


class TestBuildDelivery:
    """Tests for SubscriptionHub.build_delivery."""

    async def test_nothing_changed(self, make_hub, now):
        hub, engine = make_hub()
        snapshot = await engine.run_tick(now)
        sub = hub.connect(USER)

        assert hub.build_delivery(sub, snapshot)
        assert hub.build_delivery(sub, snapshot) == []

    async def test_session_expiry_is_terminal(self, make_hub, now):
        """Test that an expired session ends the stream with auth_expired."""
        validator = ExpiringValidator()
        hub, engine = make_hub(validator=validator)
        snapshot = await engine.run_tick(now)
        sub = hub.connect(USER)
        hub.build_delivery(sub, snapshot)

        validator.expired = True
        (update,) = hub.build_delivery(sub, snapshot)

        assert update.event == "auth_expired"
        assert update.terminal
        assert sub.closed
        assert len(hub) == 0

    async def test_entitlement_lookup_failure(self, make_hub, now):
        """Test that a database error degrades to the free plan with an error event."""
        hub, engine = make_hub(entitlements=EntitlementService(BrokenRepository()))
        snapshot = await engine.run_tick(now)
        sub = hub.connect(USER)

        events = hub.build_delivery(sub, snapshot)

        assert [e.event for e in events] == ["entitlement_error", "update"]
        assert events[0].data == {"error": "entitlement_unavailable", "plan": "free"}
        assert sub.plan.plan == Plan.FREE
        assert events[1].data["ids"] == []
        assert hub.build_delivery(sub, snapshot) == []

    async def test_hidden_edge_lookup_failure(self, make_hub, now):
        """Test that a database error delivers rows without hide exclusions."""
        hub, engine = make_hub(repository=BrokenRepository())
        snapshot = await engine.run_tick(now)
        sub = hub.connect(USER)

        (update,) = hub.build_delivery(sub, snapshot)

        assert update.data["ids"] == [snapshot.opportunities[0].id]

    async def test_anonymous(self, make_hub, now):
        hub, engine = make_hub()
        snapshot = await engine.run_tick(now)
        sub = hub.connect(ANONYMOUS)

        (update,) = hub.build_delivery(sub, snapshot)
        assert update.data["plan"] == "anonymous"
        assert update.data["filteredReason"] is not None


class TestCadence:
    """Tests for realtime versus throttled delivery."""

    @pytest.mark.parametrize(
        "plan,mode,realtime",
        [
            (Plan.ELITE, ViewMode.ALL, True),
            (Plan.ELITE, ViewMode.LIVE, True),
            (Plan.ELITE, ViewMode.PREMATCH, False),
            (Plan.SHARP, ViewMode.ALL, False),
            (Plan.FREE, ViewMode.ALL, False),
        ],
    )
    def test_realtime(self, plan, mode, realtime):
        hub = SubscriptionHub(slow_interval_seconds=15.0)
        sub = hub.connect(USER, mode=mode)
        sub.plan = ResolvedPlan(plan=plan, user_id="u1")

        assert sub.realtime is realtime
        assert sub._interval() == (0.0 if realtime else 15.0)

    def test_latest_snapshot_wins(self, store):
        """Test that a slow subscriber only keeps the newest snapshot."""
        hub = SubscriptionHub()
        sub = hub.connect(USER)
        first = TickSnapshot.build(1, store.snapshot(), [])
        second = TickSnapshot.build(2, store.snapshot(), [])

        hub.publish(first)
        hub.publish(second)

        assert sub._pending is second

    def test_closed_subscription_ignores_offers(self, store):
        hub = SubscriptionHub()
        sub = hub.connect(USER)
        hub.disconnect(sub.id)

        hub.publish(TickSnapshot.build(1, store.snapshot(), []))
        assert not sub.has_pending
