"""
Tick engine.

Once per tick, snapshot the quote store, run detection and publish an
immutable TickSnapshot that every subscription shares.
"""
import asyncio
import threading
import time
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Optional

from loguru import logger

from oddsedge.betting.value_detector import EvModelConfig
from oddsedge.config.constants import OpportunityKind
from oddsedge.data.quote_store import QuoteStore

from .detector import OpportunityDetector
from .opportunity import Opportunity, TickSnapshot


class TickEngine:
    """
    Produces one TickSnapshot per tick.

    A tick that starts while another is still computing is skipped.
    Re-running a tick over unchanged quotes keeps the current snapshot and
    version, so clients polling with ``v`` see no change. The snapshot is
    still published to the hub on every completed tick.

    Example:
        >>> engine = TickEngine(store, OpportunityDetector(), hub=hub)
        >>> snapshot = await engine.run_tick()
        >>> snapshot.version
        1
    """

    def __init__(
        self,
        store: QuoteStore,
        detector: Optional[OpportunityDetector] = None,
        hub: Any = None,
        ev_memo_size: int = 64,
    ):
        self.store = store
        self.detector = detector or OpportunityDetector()
        self.hub = hub
        self.ev_memo_size = ev_memo_size

        self._latest = TickSnapshot.empty()
        self._running = False
        self._ticks = 0
        self._skipped = 0
        self._ev_memo: OrderedDict[tuple[int, tuple], tuple[Opportunity, ...]] = OrderedDict()
        self._memo_lock = threading.Lock()

    @property
    def latest(self) -> TickSnapshot:
        return self._latest

    @property
    def version(self) -> int:
        return self._latest.version

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def skipped_ticks(self) -> int:
        return self._skipped

    def stats(self) -> dict[str, Any]:
        latest = self._latest
        return {
            "version": latest.version,
            "computed_at": latest.computed_at.isoformat(),
            "duration_ms": round(latest.duration_ms, 2),
            "opportunities": len(latest.opportunities),
            "quotes": latest.quotes.quote_count,
            "ticks": self._ticks,
            "skipped_ticks": self._skipped,
        }

    def compute(self, now: Optional[datetime] = None) -> TickSnapshot:
        """
        Run detection against the current quotes.

        Returns the previous snapshot unchanged when neither the quotes nor
        the opportunities differ from it.
        """
        started = time.perf_counter()
        now = now or datetime.now(timezone.utc)
        quotes = self.store.snapshot(now)
        opportunities = self.detector.detect(quotes)
        duration_ms = (time.perf_counter() - started) * 1000

        previous = self._latest
        if (
            previous.version > 0
            and quotes.groups == previous.quotes.groups
            and tuple(opportunities) == previous.opportunities
        ):
            return previous

        return TickSnapshot.build(
            version=previous.version + 1,
            quotes=quotes,
            opportunities=opportunities,
            duration_ms=duration_ms,
            computed_at=now,
        )

    async def run_tick(self, now: Optional[datetime] = None) -> Optional[TickSnapshot]:
        """
        Compute and publish one tick.

        Returns:
            The current snapshot, or None if the tick was skipped because
            the previous one is still running
        """
        if self._running:
            self._skipped += 1
            logger.warning(f"Tick skipped: previous tick still running ({self._skipped} skipped)")
            return None

        self._running = True
        try:
            snapshot = await asyncio.to_thread(self.compute, now)
        finally:
            self._running = False

        self._ticks += 1
        if snapshot is not self._latest:
            self._latest = snapshot
            self._prune_memo(snapshot.version)
            logger.debug(
                f"Tick v{snapshot.version}: {len(snapshot.opportunities)} opportunities "
                f"from {snapshot.quotes.quote_count} quotes in {snapshot.duration_ms:.1f}ms"
            )

        # published every tick: subscribers re-check session, plan and hidden edges
        if self.hub is not None:
            self.hub.publish(snapshot)
        return snapshot

    def ev_for_model(
        self, config: EvModelConfig, snapshot: Optional[TickSnapshot] = None
    ) -> tuple[Opportunity, ...]:
        """
        EV opportunities for a user model against a tick's quotes.

        Memoized per (snapshot version, model fingerprint), so any number of
        subscribers sharing a model cost one detection pass per tick.
        """
        snapshot = snapshot or self._latest
        if config.fingerprint == self.detector.default_ev_config.fingerprint:
            return snapshot.of_kind(OpportunityKind.EV)

        key = (snapshot.version, config.fingerprint)
        with self._memo_lock:
            cached = self._ev_memo.get(key)
            if cached is not None:
                self._ev_memo.move_to_end(key)
                return cached

        result = tuple(self.detector.detect_ev(snapshot.quotes, config))
        with self._memo_lock:
            self._ev_memo[key] = result
            while len(self._ev_memo) > self.ev_memo_size:
                self._ev_memo.popitem(last=False)
        return result

    def _prune_memo(self, version: int) -> None:
        with self._memo_lock:
            for key in [k for k in self._ev_memo if k[0] < version]:
                del self._ev_memo[key]
