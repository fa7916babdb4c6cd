"""Record models for documents stored in the cloud database."""

from ekicho.models.base import DocumentModel, decode_document
from ekicho.models.line import OTHER_COMPANY, Line
from ekicho.models.station import Station
from ekicho.models.user import User
from ekicho.models.visit import StationVisit, new_visit

__all__ = [
    "OTHER_COMPANY",
    "DocumentModel",
    "Line",
    "Station",
    "StationVisit",
    "User",
    "decode_document",
    "new_visit",
]
