#!/usr/bin/env python3
"""
oddsedge - Main Application Entry Point.

Real-time opportunity detection service that:
1. Ingests sportsbook quotes (polled feeds and pushed batches)
2. Detects arbitrage and positive-EV opportunities on every tick
3. Streams per-user ranked deltas over SSE

Usage:
    oddsedge                      # Serve on 0.0.0.0:8000
    oddsedge --port 9000          # Custom port
    oddsedge --no-scheduler       # API only, no ticks or polling
    oddsedge --init-db            # Create missing tables and exit
"""

import argparse
import logging
import sys

logger = logging.getLogger(__name__)


def main() -> None:
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        description="oddsedge - arbitrage and EV opportunity streaming",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    oddsedge                      Serve with default settings
    oddsedge --port 9000          Serve on port 9000
    oddsedge --no-scheduler       Serve without background jobs
    oddsedge --debug              Enable debug logging
        """,
    )
    parser.add_argument("--host", default="0.0.0.0", help="Bind address")
    parser.add_argument("--port", type=int, default=8000, help="Bind port")
    parser.add_argument(
        "--no-scheduler",
        action="store_true",
        help="Disable the tick, polling and sweep jobs",
    )
    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create missing database tables and exit",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    import uvicorn

    from api.main import configure_logging, create_app
    from oddsedge.config.settings import get_settings
    from oddsedge.database.models import init_db

    settings = get_settings()
    if args.debug:
        settings.debug = True
    configure_logging(settings)

    if args.init_db:
        init_db(settings.database_url)
        logger.info(f"Database ready at {settings.database_url}")
        sys.exit(0)

    app = create_app(settings, start_scheduler=not args.no_scheduler)
    uvicorn.run(app, host=args.host, port=args.port, log_level="debug" if args.debug else "info")


if __name__ == "__main__":
    main()
