"""Domain exceptions shared across the sync core."""


class EkichoError(Exception):
    """Base exception for sync core errors."""

    pass


class DocumentStoreError(EkichoError):
    """
    Raised when a document database read, write or listener fails.

    Services catch this and surface ``user_message`` through the shared
    state's ``error`` field instead of propagating it.
    """

    def __init__(self, operation: str, path: str, cause: Exception | None = None) -> None:
        self.operation = operation
        self.path = path
        self.cause = cause
        detail = str(cause) if cause is not None else "unknown error"
        super().__init__(f"Document store {operation} failed for '{path}': {detail}")

    @property
    def user_message(self) -> str:
        """Short description suitable for display."""
        return str(self.cause) if self.cause is not None else "unknown error"


class AuthError(EkichoError):
    """Raised when an ID token cannot be verified or the session cannot change state."""

    pass


class DecodeError(EkichoError):
    """
    Raised when a document does not match its expected record shape.

    Collections skip documents that raise this; it is never shown to the user.
    """

    def __init__(self, model_name: str, document_id: str, reason: str) -> None:
        self.model_name = model_name
        self.document_id = document_id
        super().__init__(f"Could not decode {model_name} '{document_id}': {reason}")


class NotAuthenticatedError(EkichoError):
    """Raised when an operation needs a signed-in user and there is none."""

    def __init__(self) -> None:
        super().__init__("User not authenticated")
