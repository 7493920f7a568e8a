"""
FastAPI backend for oddsedge.

Provides HTTP endpoints for:
- Ranked arbitrage and EV opportunities
- Live SSE streams of opportunity deltas
- Plan lookup and quote ingestion
- Health checks and scheduler control
"""
