"""
Read access to the externally written tables.

Returns plain frozen records so callers never hold ORM instances
outside a session.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from oddsedge.betting.value_detector import EvModelConfig
from oddsedge.engine.ranking import HiddenEdge

from .models import AuthSession, Entitlement, EvModel, UserHiddenEdge


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; stored times are UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class SessionRecord:
    token: str
    user_id: str
    expires_at: datetime


@dataclass(frozen=True)
class EntitlementRecord:
    user_id: str
    current_plan: Optional[str]
    entitlement_source: Optional[str]
    trial_started_at: Optional[datetime]
    trial_ends_at: Optional[datetime]
    trial_used: Optional[bool]


def ev_model_to_config(row: EvModel) -> EvModelConfig:
    """Build a detector config from a stored EV model."""
    sports = tuple(s.strip().lower() for s in (row.sport or "").split(",") if s.strip())
    return EvModelConfig(
        name=row.name,
        model_id=row.id,
        sharp_books=tuple(b.lower() for b in (row.sharp_books or ())),
        book_weights={k.lower(): float(v) for k, v in row.book_weights.items()}
        if row.book_weights
        else None,
        min_books_reference=row.min_books_reference,
        fallback_mode=row.fallback_mode or "hide",
        fallback_weights={k.lower(): float(v) for k, v in row.fallback_weights.items()}
        if row.fallback_weights
        else None,
        sports=sports,
        markets=tuple(row.markets) if row.markets else (),
        market_type=row.market_type or "all",
    )


class Repository:
    """
    Query helpers over the account and preference tables.

    Every method opens its own short session, so writes made by other
    services are visible on the next call.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)

    def get_session(self, token: str) -> Optional[SessionRecord]:
        with self._sessions() as session:
            row = session.get(AuthSession, token)
            if row is None:
                return None
            return SessionRecord(row.token, row.user_id, as_utc(row.expires_at))

    def get_entitlement(self, user_id: str) -> Optional[EntitlementRecord]:
        with self._sessions() as session:
            row = session.get(Entitlement, user_id)
            if row is None:
                return None
            return EntitlementRecord(
                user_id=row.user_id,
                current_plan=row.current_plan,
                entitlement_source=row.entitlement_source,
                trial_started_at=as_utc(row.trial_started_at),
                trial_ends_at=as_utc(row.trial_ends_at),
                trial_used=row.trial_used,
            )

    def get_hidden_edges(self, user_id: str) -> tuple[HiddenEdge, ...]:
        with self._sessions() as session:
            rows = session.scalars(
                select(UserHiddenEdge).where(UserHiddenEdge.user_id == user_id)
            ).all()
            return tuple(HiddenEdge(r.edge_key, as_utc(r.auto_unhide_at)) for r in rows)

    def get_ev_model(self, user_id: str, model_id: str) -> Optional[EvModelConfig]:
        """A user's active EV model, or None if missing, inactive or not theirs."""
        with self._sessions() as session:
            row = session.scalars(
                select(EvModel).where(
                    EvModel.id == model_id,
                    EvModel.user_id == user_id,
                    EvModel.is_active.is_(True),
                )
            ).first()
            return ev_model_to_config(row) if row is not None else None

    def list_ev_models(self, user_id: str) -> list[EvModelConfig]:
        with self._sessions() as session:
            rows = session.scalars(
                select(EvModel)
                .where(EvModel.user_id == user_id, EvModel.is_active.is_(True))
                .order_by(EvModel.name)
            ).all()
            return [ev_model_to_config(r) for r in rows]

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        return True
