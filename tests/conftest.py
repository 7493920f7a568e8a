"""Shared fixtures."""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from sqlalchemy.orm import Session

from oddsedge.config.constants import Mode, OpportunityKind, Side
from oddsedge.data.quote_store import QuoteStore, RawQuote
from oddsedge.database.models import AuthSession, Entitlement, init_db
from oddsedge.database.repository import Repository
from oddsedge.engine.opportunity import Leg, Opportunity

NOW = datetime(2026, 10, 18, 18, 0, tzinfo=timezone.utc)
KICKOFF = NOW + timedelta(hours=2)


@pytest.fixture
def now():
    """Fixed reference time."""
    return NOW


@pytest.fixture
def make_raw():
    """Factory for raw quotes on a totals market by default."""

    def _make(
        sportsbook: str,
        side: str,
        price: Optional[float],
        event_id: str = "evt1",
        market: str = "totals",
        line: Optional[float] = 45.5,
        timestamp=NOW,
        is_live: bool = False,
        event_start=KICKOFF,
        **kwargs,
    ) -> RawQuote:
        return RawQuote(
            sportsbook=sportsbook,
            event_id=event_id,
            market=market,
            side=side,
            timestamp=timestamp,
            american_price=price,
            line=line,
            event_start=event_start,
            is_live=is_live,
            sport=kwargs.pop("sport", "basketball_nba"),
            league=kwargs.pop("league", "NBA"),
            description=kwargs.pop("description", "Celtics @ Knicks"),
            **kwargs,
        )

    return _make


@pytest.fixture
def store():
    """Empty quote store with a 5 minute age limit."""
    return QuoteStore(max_quote_age_seconds=300)


@pytest.fixture
def arb_store(store, make_raw):
    """Store holding one cross-book arb: over +110 at bookx, under +105 at booky."""
    store.ingest_many(
        [
            make_raw("bookx", "over", 110),
            make_raw("bookx", "under", -130),
            make_raw("booky", "over", -120),
            make_raw("booky", "under", 105),
        ]
    )
    return store


@pytest.fixture
def make_opp():
    """Factory for opportunities without going through detection."""

    def _make(
        opp_id: str,
        roi_bps: float,
        mode: Mode = Mode.PREMATCH,
        event_id: str = "evt1",
        event_start: Optional[datetime] = KICKOFF,
        price_a: int = 110,
        price_b: int = 105,
        book_a: str = "bookx",
        book_b: str = "booky",
    ) -> Opportunity:
        return Opportunity(
            id=opp_id,
            kind=OpportunityKind.ARB,
            roi_bps=roi_bps,
            mode=mode,
            event_id=event_id,
            market="totals",
            side_a=Leg(Side.OVER, book_a, price_a, 100 / (price_a + 100), deep_link="https://a"),
            side_b=Leg(Side.UNDER, book_b, price_b, 100 / (price_b + 100), deep_link="https://b"),
            line=45.5,
            event_start=event_start,
        )

    return _make


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'oddsedge.db'}"


@pytest.fixture
def db_engine(db_url):
    engine = init_db(db_url)
    yield engine
    engine.dispose()


@pytest.fixture
def repository(db_engine):
    return Repository(db_engine)


@pytest.fixture
def add_user(db_engine):
    """Insert a session (and optionally an entitlement) for a user."""

    def _add(
        user_id: str,
        token: str,
        plan: Optional[str] = None,
        source: Optional[str] = "subscription",
        expires_at: Optional[datetime] = None,
    ) -> None:
        with Session(db_engine) as session:
            session.add(
                AuthSession(
                    token=token,
                    user_id=user_id,
                    expires_at=expires_at or datetime.now(timezone.utc) + timedelta(hours=1),
                )
            )
            if plan is not None:
                session.add(
                    Entitlement(user_id=user_id, current_plan=plan, entitlement_source=source)
                )
            session.commit()

    return _add
