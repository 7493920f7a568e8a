"""Tests for quote normalization and the quote store."""

import math
from datetime import datetime, timedelta, timezone

import pytest

from oddsedge.config.constants import Side
from oddsedge.data.quote_store import (
    QuoteRejected,
    RawQuote,
    RejectReason,
    normalize_quote,
    to_utc,
)


class TestNormalizeQuote:
    """Tests for normalize_quote."""

    def test_valid_quote(self, make_raw, now):
        """Test that a valid raw quote is converted."""
        quote = normalize_quote(make_raw("DraftKings", "Over", -110))

        assert quote.sportsbook == "draftkings"
        assert quote.side == Side.OVER
        assert quote.american_price == -110
        assert quote.implied_probability == pytest.approx(110 / 210)
        assert quote.observed_at == now
        assert quote.line == 45.5

    def test_decimal_price(self, make_raw):
        """Test that decimal odds are converted to American."""
        raw = make_raw("bookx", "over", None, decimal_price=2.5)
        assert normalize_quote(raw).american_price == 150

    @pytest.mark.parametrize(
        "price,reason",
        [
            (0, RejectReason.INVALID_PRICE),
            (50, RejectReason.INVALID_PRICE),
            (-99, RejectReason.INVALID_PRICE),
            (math.nan, RejectReason.NON_FINITE_PRICE),
            (math.inf, RejectReason.NON_FINITE_PRICE),
            (None, RejectReason.MISSING_FIELD),
        ],
    )
    def test_rejects_bad_price(self, make_raw, price, reason):
        """Test that unusable prices are rejected with a reason."""
        with pytest.raises(QuoteRejected) as exc_info:
            normalize_quote(make_raw("bookx", "over", price))
        assert exc_info.value.reason == reason

    def test_rejects_non_finite_line(self, make_raw):
        with pytest.raises(QuoteRejected) as exc_info:
            normalize_quote(make_raw("bookx", "over", -110, line=math.inf))
        assert exc_info.value.reason == RejectReason.NON_FINITE_LINE

    def test_rejects_unknown_side(self, make_raw):
        with pytest.raises(QuoteRejected) as exc_info:
            normalize_quote(make_raw("bookx", "draw", 250))
        assert exc_info.value.reason == RejectReason.UNKNOWN_SIDE

    def test_rejects_missing_timestamp(self, make_raw):
        with pytest.raises(QuoteRejected) as exc_info:
            normalize_quote(make_raw("bookx", "over", -110, timestamp=None))
        assert exc_info.value.reason == RejectReason.BAD_TIMESTAMP


class TestToUtc:
    """Tests for timestamp coercion."""

    def test_naive_is_utc(self):
        assert to_utc(datetime(2026, 1, 1, 12)).tzinfo == timezone.utc

    def test_iso_string_with_z(self):
        assert to_utc("2026-01-01T12:00:00Z") == datetime(2026, 1, 1, 12, tzinfo=timezone.utc)

    def test_epoch_seconds_and_millis(self):
        """Test that epoch seconds and milliseconds give the same time."""
        seconds = 1_767_268_800
        assert to_utc(seconds) == to_utc(seconds * 1000)


class TestQuoteStore:
    """Tests for QuoteStore ingestion and snapshots."""

    def test_newer_quote_replaces_older(self, store, make_raw, now):
        store.ingest(make_raw("bookx", "over", -110, timestamp=now))
        assert store.ingest(make_raw("bookx", "over", 105, timestamp=now + timedelta(seconds=1)))

        snapshot = store.snapshot(now + timedelta(seconds=1))
        (group,) = snapshot.groups
        assert [q.american_price for q in group.quotes(Side.OVER)] == [105]

    def test_stale_quote_rejected(self, store, make_raw, now):
        """Test that an older-or-equal timestamp never overwrites a newer quote."""
        store.ingest(make_raw("bookx", "over", -110, timestamp=now))
        revision = store.revision

        assert not store.ingest(make_raw("bookx", "over", 150, timestamp=now - timedelta(seconds=5)))
        assert not store.ingest(make_raw("bookx", "over", 150, timestamp=now))

        (group,) = store.snapshot(now).groups
        assert group.quotes(Side.OVER)[0].american_price == -110
        assert store.revision == revision
        assert store.rejected_counts[RejectReason.STALE.value] == 2

    def test_rejected_quotes_counted(self, store, make_raw):
        store.ingest(make_raw("bookx", "over", 50))
        store.ingest(make_raw("bookx", "sideways", -110))

        assert len(store) == 0
        assert store.rejected_counts == {"invalid_price": 1, "unknown_side": 1}

    def test_ingest_batch_reports_reasons(self, store, make_raw, now):
        accepted, rejected = store.ingest_batch(
            [
                make_raw("bookx", "over", -110),
                make_raw("booky", "under", -110),
                make_raw("bookx", "over", -105, timestamp=now - timedelta(seconds=1)),
                make_raw("bookz", "over", 0),
            ]
        )
        assert accepted == 2
        assert rejected == {"stale": 1, "invalid_price": 1}

    def test_snapshot_excludes_old_quotes(self, store, make_raw, now):
        """Test that quotes past the age limit are left out of snapshots."""
        store.ingest(make_raw("bookx", "over", -110, timestamp=now - timedelta(seconds=600)))
        store.ingest(make_raw("booky", "under", -110, timestamp=now))

        snapshot = store.snapshot(now)
        assert snapshot.quote_count == 1
        assert len(store) == 2

    def test_sweep_removes_old_quotes(self, store, make_raw, now):
        store.ingest(make_raw("bookx", "over", -110, timestamp=now - timedelta(seconds=600)))
        store.ingest(make_raw("booky", "under", -110, timestamp=now))

        assert store.sweep(now) == 1
        assert len(store) == 1

    def test_remove_event(self, store, make_raw):
        store.ingest(make_raw("bookx", "over", -110, event_id="evt1"))
        store.ingest(make_raw("bookx", "over", -110, event_id="evt2"))

        assert store.remove_event("evt1") == 1
        assert {g.event_id for g in store.snapshot().groups} <= {"evt2"}

    def test_groups_by_market_and_line(self, store, make_raw, now):
        """Test that different lines are different markets."""
        store.ingest_many(
            [
                make_raw("bookx", "over", -110, line=45.5),
                make_raw("booky", "under", -110, line=45.5),
                make_raw("bookx", "over", -120, line=44.5),
            ]
        )
        groups = store.snapshot(now).groups

        assert [g.line for g in groups] == [44.5, 45.5]
        assert groups[1].books == frozenset({"bookx", "booky"})

    def test_group_is_live_if_any_quote_is_live(self, store, make_raw, now):
        store.ingest(make_raw("bookx", "over", -110))
        store.ingest(make_raw("booky", "under", -110, is_live=True))

        (group,) = store.snapshot(now).groups
        assert group.is_live

    def test_raw_quote_defaults(self):
        raw = RawQuote("bookx", "evt1", "totals", "over", "2026-01-01T00:00:00Z", american_price=-110)
        assert normalize_quote(raw).line is None
