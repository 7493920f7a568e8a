"""Tests for sessions, entitlements and the account repository."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from oddsedge.accounts.entitlements import (
    ANONYMOUS_PLAN,
    EntitlementLookupError,
    EntitlementService,
    plan_from_record,
)
from oddsedge.accounts.sessions import (
    ANONYMOUS,
    Principal,
    SessionExpiredError,
    SessionValidator,
    extract_bearer_token,
)
from oddsedge.config.constants import Plan, Tier, normalize_plan
from oddsedge.database.models import EvModel, UserHiddenEdge


def entitlement(plan, source="subscription", **kwargs):
    return SimpleNamespace(
        current_plan=plan,
        entitlement_source=source,
        trial_used=kwargs.get("trial_used"),
        trial_started_at=kwargs.get("trial_started_at"),
        trial_ends_at=kwargs.get("trial_ends_at"),
    )


class CountingRepository:
    """Entitlement source that counts lookups."""

    def __init__(self, plan="elite", fail=False):
        self.plan = plan
        self.fail = fail
        self.calls = 0

    def get_entitlement(self, user_id):
        self.calls += 1
        if self.fail:
            raise OperationalError("SELECT", {}, Exception("connection refused"))
        return entitlement(self.plan)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestBearerToken:
    """Tests for Authorization header parsing."""

    @pytest.mark.parametrize(
        "header,token",
        [
            ("Bearer abc", "abc"),
            ("Bearer   abc  ", "abc"),
            ("Bearer ", None),
            ("Basic abc", None),
            (None, None),
        ],
    )
    def test_extract(self, header, token):
        assert extract_bearer_token(header) == token


class TestSessionValidator:
    """Tests for SessionValidator against the sessions table."""

    def test_valid_session(self, repository, add_user):
        add_user("u1", "t1")
        principal = SessionValidator(repository).validate("t1")

        assert principal.user_id == "u1"
        assert principal.authenticated

    def test_no_token_is_anonymous(self, repository):
        assert SessionValidator(repository).validate(None) is ANONYMOUS

    def test_unknown_token(self, repository):
        with pytest.raises(SessionExpiredError):
            SessionValidator(repository).validate("nope")

    def test_expired_session(self, repository, add_user):
        add_user("u1", "t1", expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
        with pytest.raises(SessionExpiredError):
            SessionValidator(repository).validate("t1")

    def test_revalidate_picks_up_expiry(self, repository, add_user):
        """Test that a long-lived connection notices its session ran out."""
        add_user("u1", "t1", expires_at=datetime.now(timezone.utc) + timedelta(minutes=5))
        validator = SessionValidator(repository)
        principal = validator.validate("t1")

        later = datetime.now(timezone.utc) + timedelta(minutes=10)
        with pytest.raises(SessionExpiredError):
            validator.revalidate(principal, now=later)

    def test_revalidate_anonymous(self, repository):
        assert SessionValidator(repository).revalidate(ANONYMOUS) is ANONYMOUS


class TestPlans:
    """Tests for plan names and entitlement records."""

    @pytest.mark.parametrize(
        "name,plan",
        [
            ("elite", Plan.ELITE),
            ("PRO", Plan.ELITE),
            ("hit_rate", Plan.SHARP),
            ("scout", Plan.SCOUT),
            ("something", Plan.FREE),
            (None, Plan.FREE),
        ],
    )
    def test_normalize_plan(self, name, plan):
        assert normalize_plan(name) == plan

    def test_missing_record_is_free(self):
        plan, source, trial = plan_from_record(None)
        assert plan == Plan.FREE
        assert source is None

    def test_grant_is_elite(self):
        plan, source, _ = plan_from_record(entitlement("free", source="grant"))
        assert plan == Plan.ELITE
        assert source == "grant"

    def test_trial(self):
        ends = datetime(2026, 11, 1, tzinfo=timezone.utc)
        _, _, trial = plan_from_record(entitlement("sharp", source="trial", trial_used=True, trial_ends_at=ends))

        assert trial.is_trial_active
        assert trial.to_dict()["trial_ends_at"] == ends.isoformat()


class TestEntitlementService:
    """Tests for plan resolution and its TTL cache."""

    def test_anonymous(self):
        service = EntitlementService(CountingRepository())
        assert service.resolve(ANONYMOUS) is ANONYMOUS_PLAN

    def test_resolve(self):
        resolved = EntitlementService(CountingRepository("sharp")).resolve(Principal("u1", "t1"))

        assert resolved.plan == Plan.SHARP
        assert resolved.tier == Tier.PRO
        assert resolved.to_dict()["userId"] == "u1"

    def test_cache_ttl(self):
        """Test that lookups are cached for the TTL and then refreshed."""
        repo = CountingRepository("elite")
        clock = FakeClock()
        service = EntitlementService(repo, cache_ttl_seconds=30, clock=clock)
        user = Principal("u1", "t1")

        service.resolve(user)
        clock.now = 29
        service.resolve(user)
        assert repo.calls == 1

        repo.plan = "free"
        clock.now = 31
        assert service.resolve(user).plan == Plan.FREE
        assert repo.calls == 2

    def test_invalidate(self):
        repo = CountingRepository()
        service = EntitlementService(repo)
        service.resolve(Principal("u1", "t1"))
        service.invalidate("u1")
        service.resolve(Principal("u1", "t1"))
        assert repo.calls == 2

    def test_lookup_failure(self):
        service = EntitlementService(CountingRepository(fail=True))
        user = Principal("u1", "t1")

        with pytest.raises(EntitlementLookupError):
            service.resolve(user)

        fallback = service.resolve_or_free(user)
        assert fallback.plan == Plan.FREE
        assert fallback.error == "entitlement_unavailable"


class TestRepository:
    """Tests for Repository queries."""

    def test_entitlement_missing(self, repository):
        assert repository.get_entitlement("ghost") is None

    def test_entitlement(self, repository, add_user):
        add_user("u1", "t1", plan="elite")
        record = repository.get_entitlement("u1")
        assert record.current_plan == "elite"

    def test_hidden_edges(self, repository, db_engine, now):
        with Session(db_engine) as session:
            session.add_all(
                [
                    UserHiddenEdge(user_id="u1", edge_key="a", hidden_at=now),
                    UserHiddenEdge(
                        user_id="u1", edge_key="b", hidden_at=now, auto_unhide_at=now + timedelta(hours=1)
                    ),
                    UserHiddenEdge(user_id="u2", edge_key="c", hidden_at=now),
                ]
            )
            session.commit()

        edges = sorted(repository.get_hidden_edges("u1"), key=lambda e: e.edge_key)

        assert [e.edge_key for e in edges] == ["a", "b"]
        assert edges[0].auto_unhide_at is None
        assert edges[1].auto_unhide_at == now + timedelta(hours=1)

    def test_ev_model(self, repository, db_engine):
        """Test that only the owner's active models are returned."""
        with Session(db_engine) as session:
            session.add_all(
                [
                    EvModel(
                        id="m1",
                        user_id="u1",
                        name="Sharp NBA",
                        sport="NBA, nfl",
                        sharp_books=["Pinnacle", "Circa"],
                        book_weights={"Pinnacle": 60, "Circa": 40},
                        min_books_reference=2,
                    ),
                    EvModel(id="m2", user_id="u1", name="Off", sharp_books=["pinnacle"], is_active=False),
                ]
            )
            session.commit()

        config = repository.get_ev_model("u1", "m1")

        assert config.name == "Sharp NBA"
        assert config.sharp_books == ("pinnacle", "circa")
        assert config.book_weights == {"pinnacle": 60.0, "circa": 40.0}
        assert config.sports == ("nba", "nfl")
        assert repository.get_ev_model("u2", "m1") is None
        assert repository.get_ev_model("u1", "m2") is None
        assert [m.model_id for m in repository.list_ev_models("u1")] == ["m1"]

    def test_ping(self, repository):
        assert repository.ping()
