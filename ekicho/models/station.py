"""Station record."""

from ekicho.models.base import DocumentModel


class Station(DocumentModel):
    """
    A physical stop.

    ``line_ids`` is informational only; line membership is defined by
    ``Line.station_ids``.
    """

    station_id: str
    name: str
    city_id: str
    line_ids: list[str] = []
    lat: float | None = None
    lng: float | None = None
    is_active: bool = True

    @property
    def has_location(self) -> bool:
        return self.lat is not None and self.lng is not None
