"""
Application state management for FastAPI.

Holds shared state across the application:
- Quote store and polling feeds
- Tick engine and subscription hub
- Repository, session validator and entitlement service
- Scheduler orchestrator
"""

import logging
import traceback
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)


class AppState:
    """
    Centralized application state.

    Initializes and manages lifecycle of all major components.
    """

    def __init__(self, settings: Any = None, start_scheduler: bool = True):
        self.settings = settings
        self.start_scheduler = start_scheduler

        self.db_engine = None
        self.repository = None
        self.validator = None
        self.entitlements = None
        self.store = None
        self.detector = None
        self.engine = None
        self.hub = None
        self.feeds: list = []
        self.scheduler = None

        self._initialized = False
        self._init_error: Optional[str] = None
        self._started_at: Optional[datetime] = None

    async def initialize(self) -> None:
        """Initialize all application components."""
        if self._initialized:
            return

        try:
            # Import here to avoid circular imports
            from oddsedge.accounts import EntitlementService, SessionValidator
            from oddsedge.config.settings import get_settings
            from oddsedge.data.quote_store import QuoteStore
            from oddsedge.data.sources.odds_api import OddsAPIClient
            from oddsedge.database.models import init_db
            from oddsedge.database.repository import Repository
            from oddsedge.engine.detector import OpportunityDetector
            from oddsedge.engine.tick import TickEngine
            from oddsedge.scheduler.orchestrator import SchedulerOrchestrator
            from oddsedge.streaming.subscriptions import SubscriptionHub

            if self.settings is None:
                self.settings = get_settings()
            logger.info("Settings loaded")

            self.db_engine = init_db(self.settings.database_url)
            self.repository = Repository(self.db_engine)
            self.validator = SessionValidator(self.repository)
            self.entitlements = EntitlementService(
                self.repository,
                cache_ttl_seconds=self.settings.entitlements.cache_ttl_seconds,
            )
            logger.info("Repository initialized")

            self.store = QuoteStore(
                max_quote_age_seconds=self.settings.tick.max_quote_age_seconds,
            )
            self.detector = OpportunityDetector.from_settings(self.settings)
            self.hub = SubscriptionHub(
                validator=self.validator,
                entitlements=self.entitlements,
                repository=self.repository,
                slow_interval_seconds=self.settings.tick.slow_delivery_interval_seconds,
            )
            self.engine = TickEngine(self.store, self.detector, hub=self.hub)
            self.hub.engine = self.engine
            logger.info("Tick engine initialized")

            odds_client = OddsAPIClient.from_settings(self.settings)
            if odds_client.enabled:
                self.feeds.append(odds_client)
            logger.info(f"Feeds configured: {[f.source_name for f in self.feeds] or 'none (push only)'}")

            self.scheduler = SchedulerOrchestrator(
                settings=self.settings,
                engine=self.engine,
                store=self.store,
                feeds=self.feeds,
            )
            if self.start_scheduler:
                self.scheduler.start()
                logger.info("Scheduler started")

            self._initialized = True
            self._started_at = datetime.now(timezone.utc)
            logger.info("All components initialized successfully")

        except Exception as e:
            self._init_error = f"{type(e).__name__}: {e}\n{traceback.format_exc()}"
            logger.error(f"Failed to initialize components: {self._init_error}")
            # Keep serving health endpoints so the failure is visible
            self._initialized = False

    async def shutdown(self) -> None:
        """Gracefully shutdown all components."""
        if self.scheduler:
            self.scheduler.stop()
        if self.hub:
            self.hub.close_all()
        for feed in self.feeds:
            await feed.close()
        if self.db_engine is not None:
            self.db_engine.dispose()
        logger.info("Components shut down")

    @property
    def is_initialized(self) -> bool:
        """Check if all components are initialized."""
        return self._initialized

    def get_health_status(self) -> dict:
        """Get health status of all components."""
        status = {
            "initialized": self._initialized,
            "settings": self.settings is not None,
            "repository": self.repository is not None,
            "engine": self.engine is not None,
            "scheduler": self.scheduler is not None,
            "scheduler_running": self.scheduler.is_running if self.scheduler else False,
            "quotes_in_store": len(self.store) if self.store is not None else 0,
            "subscriptions": len(self.hub) if self.hub is not None else 0,
            "feeds": {f.source_name: f.get_health().status.value for f in self.feeds},
            "started_at": self._started_at.isoformat() if self._started_at else None,
        }
        if self.engine is not None:
            status["tick"] = self.engine.stats()
        if self._init_error:
            status["init_error"] = self._init_error
        return status
