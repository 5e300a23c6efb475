"""
Column type unification.

Reduces the per-row type observations collected for one column into a
single declared type plus a nullability flag.
"""

from dataclasses import dataclass
from typing import Mapping

from insightdeck.ingest.type_detector import ColumnType


@dataclass(frozen=True)
class UnifiedType:
    type: ColumnType
    nullable: bool


def unify_types(observations: Mapping[ColumnType, int]) -> UnifiedType:
    """
    Pick one column type from a multiset of observed tags.

    ``observations`` maps each tag to the number of rows that produced it.
    Nulls only drive ``nullable``; among the remaining tags the one seen in
    the most rows wins, and a tie for first place falls back to STRING.

    Args:
        observations: Tag -> row count

    Returns:
        UnifiedType for the column
    """
    counts = {tag: n for tag, n in observations.items() if n > 0}
    if not counts:
        # Header-only input: nothing was observed at all
        return UnifiedType(ColumnType.UNKNOWN, nullable=False)

    nullable = ColumnType.NULL in counts
    counts.pop(ColumnType.NULL, None)

    if not counts:
        return UnifiedType(ColumnType.NULL, nullable=nullable)

    if len(counts) == 1:
        (only,) = counts
        return UnifiedType(only, nullable=nullable)

    best = max(counts.values())
    leaders = [tag for tag, n in counts.items() if n == best]
    if len(leaders) > 1:
        return UnifiedType(ColumnType.STRING, nullable=nullable)
    return UnifiedType(leaders[0], nullable=nullable)
