"""
Tick-to-tick change tracking.

Compares the rows last delivered to a subscription with the rows about to
be delivered. Removed ids are not reported explicitly: a client drops any
row whose id is missing from the new id list.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional, Sequence

from .opportunity import Opportunity


class Direction(str, Enum):
    UP = "up"
    DOWN = "down"


@dataclass(frozen=True)
class ChangeSet:
    """Result of diffing two deliveries."""

    added: tuple[str, ...] = ()
    updated: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()
    changes: Mapping[str, Mapping[str, Direction]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.updated or self.removed)

    @property
    def changed_ids(self) -> tuple[str, ...]:
        """Ids whose full row must be sent (new or updated)."""
        return self.added + self.updated

    def to_wire(self) -> dict[str, dict[str, str]]:
        return {
            opp_id: {name: direction.value for name, direction in fields.items()}
            for opp_id, fields in self.changes.items()
        }


def _direction(old: Optional[float], new: Optional[float]) -> Optional[Direction]:
    if old is None or new is None or old == new:
        return None
    return Direction.UP if new > old else Direction.DOWN


def _legs(opportunity: Opportunity) -> tuple:
    side_b = opportunity.side_b
    return (
        opportunity.side_a.sportsbook,
        opportunity.side_a.american_price,
        side_b.sportsbook if side_b else None,
        side_b.american_price if side_b else None,
    )


def diff(previous: Mapping[str, Opportunity], current: Sequence[Opportunity]) -> ChangeSet:
    """
    Keyed diff between the previous delivery and the current rows.

    Args:
        previous: Rows last delivered, keyed by id
        current: Rows about to be delivered, in display order

    Returns:
        ChangeSet with added ids, updated ids plus per-field directions
        for ``roi``, ``side_a`` and ``side_b``, and removed ids
    """
    added: list[str] = []
    updated: list[str] = []
    changes: dict[str, dict[str, Direction]] = {}
    seen: set[str] = set()

    for opp in current:
        seen.add(opp.id)
        old = previous.get(opp.id)
        if old is None:
            added.append(opp.id)
            continue

        old_values = old.tracked_values()
        directions = {}
        for name, value in opp.tracked_values().items():
            direction = _direction(old_values.get(name), value)
            if direction is not None:
                directions[name] = direction

        if directions:
            changes[opp.id] = directions
        if directions or _legs(old) != _legs(opp):
            updated.append(opp.id)

    removed = tuple(opp_id for opp_id in previous if opp_id not in seen)
    return ChangeSet(
        added=tuple(added),
        updated=tuple(updated),
        removed=removed,
        changes=changes,
    )
