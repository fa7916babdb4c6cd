"""Base record model shared by all persisted document shapes."""

from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError

from ekicho.core.errors import DecodeError

DocumentModelT = TypeVar("DocumentModelT", bound="DocumentModel")


class DocumentModel(BaseModel):
    """
    Base class for records stored as documents.

    Documents written by other clients may carry extra fields; they are
    ignored rather than rejected.
    """

    model_config = ConfigDict(extra="ignore")

    def to_document(self) -> dict[str, Any]:
        """Serialize to the field mapping written to the document store."""
        return self.model_dump(mode="python")


def decode_document(
    model: type[DocumentModelT],
    document_id: str,
    data: Mapping[str, Any] | None,
) -> DocumentModelT:
    """
    Decode raw document data into a record model.

    Args:
        model: DocumentModel subclass to validate against
        document_id: Document key, used for error reporting
        data: Raw field mapping from the store

    Returns:
        Validated model instance

    Raises:
        DecodeError: If the data is missing or does not match the model
    """
    if data is None:
        raise DecodeError(model.__name__, document_id, "document has no data")
    try:
        return model.model_validate(dict(data))
    except ValidationError as e:
        raise DecodeError(model.__name__, document_id, f"{e.error_count()} validation error(s)") from e
