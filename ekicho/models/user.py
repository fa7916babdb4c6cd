"""User profile record."""

from datetime import datetime

from ekicho.models.base import DocumentModel


class User(DocumentModel):
    """
    User profile stored at ``users/{uid}``.

    The document key is the identity provider's user id.
    """

    display_name: str
    email: str
    auth_provider: str
    current_city_id: str

    home_stations: dict[str, str] = {}  # city id -> station id
    auxiliary_stations: dict[str, dict[str, str]] = {}  # city id -> label -> station id

    created_at: datetime | None = None
    last_active_at: datetime | None = None
