"""
Opportunity engine.

Per-tick snapshot model, ranking and change tracking. The tick engine and
detector live in ``oddsedge.engine.tick`` and ``oddsedge.engine.detector``.
"""

from .opportunity import Leg, Opportunity, TickSnapshot, make_opportunity_id
from .changes import ChangeSet, Direction, diff
from .ranking import HiddenEdge, RankedView, ViewRequest, count_by_mode, rank

__all__ = [
    "Leg",
    "Opportunity",
    "TickSnapshot",
    "make_opportunity_id",
    "ChangeSet",
    "Direction",
    "diff",
    "HiddenEdge",
    "RankedView",
    "ViewRequest",
    "count_by_mode",
    "rank",
]
