# src/docmapper/base/exceptions.py


class MappingError(Exception):
    """Raised when a class cannot be mapped or a document cannot be resolved to a class."""

    def __init__(self, message: str = "The class could not be mapped."):
        super().__init__(message)


# --- Validation Exceptions ---
class ValidationError(TypeError):
    """Base class for query, update and index validation errors."""


class InvalidPathError(ValidationError, AttributeError):
    """Error raised when a field path does not exist or cannot be traversed."""


class ValueTypeError(ValidationError, TypeError):
    """Error raised when a value is incompatible with a field or an operator."""


class QueryError(ValueError):
    """Raised when a query or update builder is used incorrectly."""

    def __init__(self, message: str = "The query is not valid."):
        super().__init__(message)


# --- Write Exceptions ---
class ConcurrentModificationError(Exception):
    """Raised when a versioned entity was updated by another writer since it was read."""

    def __init__(self, message: str = "The entity was concurrently updated."):
        super().__init__(message)


class UpdateError(Exception):
    """Raised when an update that must affect a document matched nothing."""

    def __init__(self, message: str = "Nothing updated"):
        super().__init__(message)
