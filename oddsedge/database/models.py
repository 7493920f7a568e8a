"""
SQLAlchemy ORM models for the tables the engine reads.

These tables are written by the account and preference services; the
engine only reads them: hidden edges, EV models, entitlements and sessions.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class UserHiddenEdge(Base):
    """An opportunity a user has hidden from their views."""

    __tablename__ = "user_hidden_edges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    edge_key: Mapped[str] = mapped_column(String(64), nullable=False)  # opportunity id
    hidden_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # Null = hidden until manually unhidden
    auto_unhide_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (Index("ix_hidden_edges_user_edge", "user_id", "edge_key", unique=True),)


class EvModel(Base):
    """A user's custom EV model."""

    __tablename__ = "user_ev_models"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Comma-separated sport keys, e.g. "nba,nfl"
    sport: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    markets: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    market_type: Mapped[str] = mapped_column(String(10), nullable=False, default="all")  # all, player, game

    sharp_books: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    book_weights: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)  # null = equal
    fallback_mode: Mapped[str] = mapped_column(String(20), nullable=False, default="hide")
    fallback_weights: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    min_books_reference: Mapped[int] = mapped_column(Integer, nullable=False, default=2)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class Entitlement(Base):
    """Authoritative plan per user (subscription, trial or grant)."""

    __tablename__ = "current_entitlements"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    current_plan: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    entitlement_source: Mapped[Optional[str]] = mapped_column(
        String(20), nullable=True
    )  # subscription, trial, grant
    trial_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    trial_ends_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    trial_used: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)


class AuthSession(Base):
    """Bearer token issued by the auth service."""

    __tablename__ = "user_sessions"

    token: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def get_engine(database_url: str) -> Engine:
    """
    Get SQLAlchemy engine for database operations.

    SQLite connections are shared with the threadpool that runs sync
    endpoints, so same-thread checking is disabled for them.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, connect_args=connect_args)


def init_db(database_url: str) -> Engine:
    """
    Create any missing tables.

    Args:
        database_url: SQLAlchemy database URL

    Returns:
        The engine the tables were created on
    """
    engine = get_engine(database_url)
    Base.metadata.create_all(engine)
    return engine
