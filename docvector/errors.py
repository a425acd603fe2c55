# docvector/errors.py
"""Exception classes for the retrieval pipeline."""


class DocVectorError(Exception):
    """Base exception for all pipeline errors."""
    pass


class InvalidArgument(DocVectorError, ValueError):
    """Raised when a caller passes malformed parameters or empty required fields."""
    pass


class ExtractionFailed(DocVectorError):
    """Raised when a source document cannot be read or parsed."""
    pass


class ServiceUnavailable(DocVectorError):
    """Raised when the vector store backend is unreachable, unconfigured or missing its index."""
    pass


class EmbeddingFailed(DocVectorError):
    """Raised when the embedding backend cannot process a piece of text."""
    pass
