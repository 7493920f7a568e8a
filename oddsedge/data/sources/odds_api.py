"""
The Odds API feed.

Polls current odds for the configured sports and converts each bookmaker
outcome into a RawQuote for the quote store.

Features async HTTP with rate limiting and credit tracking.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional

import aiohttp

from oddsedge.config.constants import Side
from oddsedge.data.quote_store import RawQuote

from .base import (
    AuthenticationError,
    BaseQuoteFeed,
    DataSourceError,
    FeedHealth,
    FeedStatus,
    RateLimitError,
)

# Markets we know how to split into two complementary sides
SUPPORTED_MARKETS = ("h2h", "spreads", "totals")


def transform_event(
    event: dict[str, Any],
    fetched_at: Optional[datetime] = None,
) -> list[RawQuote]:
    """
    Convert one Odds API event into raw quotes.

    The Odds API returns:
    {
        "id": "abc123",
        "sport_key": "americanfootball_nfl",
        "sport_title": "NFL",
        "commence_time": "2024-09-08T17:00:00Z",
        "home_team": "Kansas City Chiefs",
        "away_team": "Denver Broncos",
        "bookmakers": [
            {
                "key": "draftkings",
                "last_update": "2024-09-08T12:00:00Z",
                "markets": [
                    {
                        "key": "spreads",
                        "outcomes": [
                            {"name": "Kansas City Chiefs", "point": -3.5, "price": -110},
                            {"name": "Denver Broncos", "point": 3.5, "price": -110}
                        ]
                    }
                ]
            }
        ]
    }

    Spreads are keyed on the home team's line so both sides of the same
    spread land in the same market: the away outcome at +3.5 is stored as
    line -3.5, side away.
    """
    fetched_at = fetched_at or datetime.now(timezone.utc)
    home = event.get("home_team", "")
    away = event.get("away_team", "")
    commence = event.get("commence_time")
    is_live = False
    if commence:
        start = datetime.fromisoformat(commence.replace("Z", "+00:00"))
        is_live = start <= fetched_at

    quotes = []
    for bookmaker in event.get("bookmakers", []):
        book_key = bookmaker.get("key", "")
        for market in bookmaker.get("markets", []):
            market_key = market.get("key")
            if market_key not in SUPPORTED_MARKETS:
                continue
            outcomes = market.get("outcomes", [])
            if market_key == "h2h" and len(outcomes) != 2:
                # three-way moneyline: home and away are not complements
                continue
            timestamp = market.get("last_update") or bookmaker.get("last_update") or fetched_at

            for outcome in outcomes:
                name = outcome.get("name", "")
                point = outcome.get("point")
                line: Optional[float] = None

                if market_key == "totals":
                    side = name.lower()
                    line = point
                elif name == home:
                    side = Side.HOME.value
                    line = point if market_key == "spreads" else None
                elif name == away:
                    side = Side.AWAY.value
                    if market_key == "spreads" and point is not None:
                        line = -point
                else:
                    continue

                quotes.append(
                    RawQuote(
                        sportsbook=book_key,
                        event_id=event.get("id", ""),
                        market=market_key,
                        side=side,
                        timestamp=timestamp,
                        american_price=outcome.get("price"),
                        line=line,
                        deep_link=outcome.get("link") or market.get("link") or bookmaker.get("link"),
                        sport=event.get("sport_key", ""),
                        league=event.get("sport_title", ""),
                        event_start=commence,
                        is_live=is_live,
                        description=f"{away} @ {home}",
                    )
                )
    return quotes


class OddsAPIClient(BaseQuoteFeed):
    """
    Async client for The Odds API.

    The Odds API provides odds from 40+ bookmakers across sports. This
    client handles:
    - Async HTTP requests with connection pooling
    - Rate limiting to stay within API quotas
    - Credit tracking via response headers
    - Retry logic with exponential backoff (from BaseQuoteFeed)

    Credit costs:
    - Odds request: 1 credit per region per market per sport
    """

    BASE_URL = "https://api.the-odds-api.com/v4"

    def __init__(
        self,
        api_key: str,
        sports: list[str],
        base_url: str | None = None,
        enabled: bool = True,
        regions: list[str] | None = None,
        markets: list[str] | None = None,
        bookmakers: list[str] | None = None,
    ):
        super().__init__(source_name="odds_api", enabled=enabled)

        self.api_key = api_key
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.sports = sports
        self.regions = regions or ["us"]
        self.markets = markets or list(SUPPORTED_MARKETS)
        self.bookmakers = bookmakers or []

        # API credit tracking
        self._remaining_credits: int | None = None
        self._used_credits: int | None = None
        self._last_credit_check: datetime | None = None

        # Rate limiting
        self._request_semaphore = asyncio.Semaphore(5)
        self._last_request_time: datetime | None = None
        self._min_request_interval = 0.2

        self._session: aiohttp.ClientSession | None = None

        if not api_key:
            self.logger.warning("No API key provided - odds API will be disabled")
            self.enabled = False

    @classmethod
    def from_settings(cls, settings) -> "OddsAPIClient":
        odds = settings.odds_api
        return cls(
            api_key=odds.api_key or "",
            sports=odds.sports,
            base_url=odds.base_url,
            enabled=bool(odds.api_key),
            regions=odds.regions,
            markets=odds.markets,
            bookmakers=odds.bookmakers,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=30)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def health_check(self) -> FeedHealth:
        """Check if The Odds API is accessible."""
        if not self.enabled:
            return FeedHealth(
                source_name=self.source_name,
                status=FeedStatus.DISABLED,
                error_message="API key not configured",
            )

        try:
            session = await self._get_session()
            async with session.get(
                f"{self.base_url}/sports", params={"apiKey": self.api_key}
            ) as response:
                self._update_credits(response.headers)

                if response.status == 200:
                    return FeedHealth(
                        source_name=self.source_name,
                        status=FeedStatus.HEALTHY,
                        last_success=datetime.now(timezone.utc),
                    )
                if response.status == 401:
                    return FeedHealth(
                        source_name=self.source_name,
                        status=FeedStatus.UNHEALTHY,
                        error_message="Invalid API key",
                    )
                return FeedHealth(
                    source_name=self.source_name,
                    status=FeedStatus.DEGRADED,
                    error_message=f"HTTP {response.status}",
                )

        except aiohttp.ClientError as e:
            return FeedHealth(
                source_name=self.source_name,
                status=FeedStatus.UNHEALTHY,
                error_message=str(e),
            )

    def _update_credits(self, headers) -> None:
        """Update credit tracking from response headers."""
        if "x-requests-remaining" in headers:
            self._remaining_credits = int(float(headers["x-requests-remaining"]))
        if "x-requests-used" in headers:
            self._used_credits = int(float(headers["x-requests-used"]))
        self._last_credit_check = datetime.now(timezone.utc)

        if self._remaining_credits is not None and self._remaining_credits < 100:
            self.logger.warning(f"Low API credits! Only {self._remaining_credits} remaining")

    def get_credit_status(self) -> dict:
        return {
            "remaining": self._remaining_credits,
            "used": self._used_credits,
            "last_checked": self._last_credit_check.isoformat() if self._last_credit_check else None,
        }

    async def _rate_limit(self) -> None:
        """Enforce a minimum interval between requests."""
        if self._last_request_time:
            elapsed = (datetime.now(timezone.utc) - self._last_request_time).total_seconds()
            if elapsed < self._min_request_interval:
                await asyncio.sleep(self._min_request_interval - elapsed)
        self._last_request_time = datetime.now(timezone.utc)

    async def _make_request(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        """
        Make an authenticated request to The Odds API.

        Raises:
            AuthenticationError: On an invalid key
            RateLimitError: When rate limited
            DataSourceError: On other API or connection errors
        """
        url = f"{self.base_url}/{endpoint}"
        request_params = {"apiKey": self.api_key}
        if params:
            request_params.update(params)

        async with self._request_semaphore:
            await self._rate_limit()
            session = await self._get_session()

            try:
                async with session.get(url, params=request_params) as response:
                    self._update_credits(response.headers)

                    if response.status == 200:
                        return await response.json()

                    if response.status == 401:
                        raise AuthenticationError(self.source_name, "Invalid API key")

                    if response.status == 429:
                        retry_after = response.headers.get("Retry-After", "60")
                        raise RateLimitError(self.source_name, retry_after_seconds=int(retry_after))

                    error_text = await response.text()
                    raise DataSourceError(
                        f"API error {response.status}: {error_text}",
                        self.source_name,
                        retry_allowed=response.status != 422,
                    )

            except aiohttp.ClientError as e:
                raise DataSourceError(
                    f"Connection error: {e}",
                    self.source_name,
                    original_error=e,
                    retry_allowed=True,
                ) from e

    async def get_sport_odds(self, sport: str) -> list[dict]:
        """Get current odds for every upcoming and live event of one sport."""
        params = {
            "regions": ",".join(self.regions),
            "markets": ",".join(self.markets),
            "oddsFormat": "american",
            "includeLinks": "true",
        }
        if self.bookmakers:
            params["bookmakers"] = ",".join(self.bookmakers)

        data = await self._make_request(f"sports/{sport}/odds", params)
        self.logger.debug(f"Received odds for {len(data)} {sport} events")
        return data

    async def _fetch_impl(self) -> list[RawQuote]:
        fetched_at = datetime.now(timezone.utc)
        quotes: list[RawQuote] = []
        for sport in self.sports:
            for event in await self.get_sport_odds(sport):
                quotes.extend(transform_event(event, fetched_at))
        return quotes
