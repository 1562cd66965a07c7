class ValidationError(ValueError):
    """Malformed input, rejected before anything is written."""


class NotFoundError(ValueError):
    """A referenced month, category, transaction or template does not exist."""


class ConflictError(ValueError):
    """The write would break a referential or uniqueness rule."""


class StorageError(RuntimeError):
    """The storage layer failed while committing a unit of work."""
