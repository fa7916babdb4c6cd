"""
Derived view state: pure functions of the synced collections.

Nothing here stores state or has side effects, so every function can be
called again on each change.
"""

from collections.abc import Collection, Iterable, Mapping, Set
from dataclasses import dataclass

from ekicho.models import Line, Station
from ekicho.state.store import SyncState


@dataclass(frozen=True)
class ProgressInfo:
    """Visited share of the stations referenced by all lines."""

    visited_count: int
    total_count: int
    percentage: float  # 0.0 - 1.0


@dataclass(frozen=True)
class DerivedViewState:
    """Everything the presentation layer reads, computed from a SyncState."""

    total_progress: ProgressInfo
    per_line_visited_counts: Mapping[str, int]  # keyed by line_id
    filtered_lines: list[Line]
    all_companies: list[str]


def all_companies(lines: Iterable[Line]) -> list[str]:
    """Sorted, de-duplicated company names; lines without a company count as "Other"."""
    return sorted({line.company_name for line in lines})


def filtered_lines(
    lines: list[Line],
    selected: Collection[str] | None,
    companies: list[str] | None = None,
) -> list[Line]:
    """
    Lines whose company is selected.

    Args:
        lines: All loaded lines
        selected: Selected company names; None while the selection is not loaded
        companies: Precomputed all_companies(lines), if the caller has it

    Returns:
        ``[]`` for an empty selection, ``lines`` itself when nothing is
        deselected (or the selection is not loaded yet), else the lines whose
        company_name is selected
    """
    if selected is None:
        return lines
    if not selected:
        return []
    if companies is None:
        companies = all_companies(lines)
    if len(selected) == len(companies):
        return lines
    return [line for line in lines if line.company_name in selected]


def visited_station_count(line: Line, visited_ids: Set[str]) -> int:
    """Number of distinct stations on ``line`` that have been visited."""
    return len({station_id for station_id in line.station_ids if station_id in visited_ids})


def total_progress(
    lines: Iterable[Line],
    stations: Mapping[str, Station],
    visited_ids: Set[str],
) -> ProgressInfo:
    """
    Overall progress across every line, regardless of company selection.

    The denominator is the set of distinct station ids referenced by any line
    that resolve to a loaded station; dangling references are not counted.
    """
    referenced = {station_id for line in lines for station_id in line.station_ids}
    valid_ids = {station_id for station_id in referenced if station_id in stations}
    visited_count = sum(1 for station_id in valid_ids if station_id in visited_ids)
    total_count = len(valid_ids)
    percentage = visited_count / total_count if total_count > 0 else 0.0
    return ProgressInfo(visited_count=visited_count, total_count=total_count, percentage=percentage)


def compute_view_state(
    lines: list[Line],
    stations: Mapping[str, Station],
    visited_ids: Set[str],
    selected: Collection[str] | None,
) -> DerivedViewState:
    """Compute the full derived view state from its inputs."""
    companies = all_companies(lines)
    return DerivedViewState(
        total_progress=total_progress(lines, stations, visited_ids),
        per_line_visited_counts={line.line_id: visited_station_count(line, visited_ids) for line in lines},
        filtered_lines=filtered_lines(lines, selected, companies),
        all_companies=companies,
    )


def view_state_from(state: SyncState) -> DerivedViewState:
    """Shortcut for compute_view_state over a SyncState snapshot."""
    return compute_view_state(state.lines, state.stations, state.visited_station_ids, state.selected_companies)
