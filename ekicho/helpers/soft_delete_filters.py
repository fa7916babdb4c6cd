"""
Soft delete helpers for visit records.

A visit document with ``is_deleted`` set still exists in the store but must
not count as "visited". Use these helpers wherever visits are turned into
the in-memory map so the rule is applied in one place.

Usage examples:
    visits = decode_all(StationVisit, snapshots)
    state.update(visits=index_active_visits(visits))
"""

from collections.abc import Iterable

from ekicho.models import StationVisit


def is_active_visit(visit: StationVisit) -> bool:
    """Whether the visit counts as visited (not soft deleted)."""
    return not visit.is_deleted


def exclude_deleted(visits: Iterable[StationVisit]) -> list[StationVisit]:
    """Drop soft-deleted visits, preserving order."""
    return [visit for visit in visits if is_active_visit(visit)]


def index_active_visits(visits: Iterable[StationVisit]) -> dict[str, StationVisit]:
    """
    Map station id to visit for every non-deleted visit.

    When two documents name the same station the later one wins.
    """
    return {visit.station_id: visit for visit in exclude_deleted(visits)}
