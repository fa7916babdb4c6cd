"""Transit line record."""

from ekicho.models.base import DocumentModel

OTHER_COMPANY = "Other"


class Line(DocumentModel):
    """A transit route: an ordered list of station references."""

    line_id: str
    name: str
    company: str = ""
    city_id: str

    line_symbol: str = ""
    color_name: str = ""
    color_hex: str = ""
    shape: str = ""
    icon_asset_name: str = ""

    station_ids: list[str]
    is_active: bool = True

    @property
    def company_name(self) -> str:
        """Operating company, or "Other" when the record has none."""
        return self.company or OTHER_COMPANY

    @property
    def symbol(self) -> str | None:
        return self.line_symbol or None

    @property
    def icon(self) -> str | None:
        return self.icon_asset_name or None
