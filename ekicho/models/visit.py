"""Station visit record."""

from datetime import UTC, datetime

from ekicho.models.base import DocumentModel


class StationVisit(DocumentModel):
    """
    A user's record of having been to a station.

    Stored at ``users/{uid}/visits/{station_id}``, so there is at most one
    visit per (user, station) pair.
    """

    user_id: str
    station_id: str
    visited_at: datetime

    photo_urls: list[str] = []
    recommendation_text: str | None = None
    recommendation_url: str | None = None

    is_public: bool = False
    flagged: bool = False
    is_deleted: bool = False


def new_visit(user_id: str, station_id: str, visited_at: datetime | None = None) -> StationVisit:
    """
    Build a fresh visit with empty optional fields and all flags cleared.

    Args:
        user_id: Owner of the visit
        station_id: Visited station (also the document key)
        visited_at: Visit time, defaults to now (UTC)
    """
    return StationVisit(
        user_id=user_id,
        station_id=station_id,
        visited_at=visited_at or datetime.now(UTC),
        photo_urls=[],
    )
