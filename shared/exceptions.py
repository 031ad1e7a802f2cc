"""Error taxonomy shared by the ingestion, retrieval and answering pipeline."""


class RAGError(Exception):
    """Base class for all errors raised by the document chat pipeline."""


class InvalidConfig(RAGError, ValueError):
    """Raised for unusable configuration values (e.g. chunk overlap >= chunk size)."""


class EmptyInput(RAGError, ValueError):
    """Raised when there is no usable text (or question) to work with."""


class NotFound(RAGError, LookupError):
    """Raised when a document, session or chunk set does not exist."""

    def __init__(self, kind: str, key: str):
        super().__init__(f"{kind} '{key}' not found.")
        self.kind = kind
        self.key = key


class DimensionMismatch(RAGError, ValueError):
    """Raised when a vector does not match the dimensionality of the index."""


class ProviderFailure(RAGError):
    """Raised when an embedding or completion call fails or times out."""


class PersistenceFailure(RAGError):
    """Raised when the backing store is unavailable or a write fails."""
