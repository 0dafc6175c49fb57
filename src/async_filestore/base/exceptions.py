# src/async_filestore/base/exceptions.py


class ObjectNotFoundException(Exception):
    """Exception raised when an object with the specified identifier does not exist."""

    def __init__(self, message: str = "The requested object was not found."):
        super().__init__(message)


class KeyAlreadyExistsException(Exception):
    """Exception raised when trying to insert a document that would violate a unique constraint."""

    def __init__(self, message: str = "An object with the same key already exists."):
        super().__init__(message)


class UnsupportedOperatorException(ValueError):
    """Exception raised for an update or query operator outside the supported set."""

    def __init__(self, message: str = "Unsupported operator."):
        super().__init__(message)


class ProjectionValidationException(ValueError):
    """Exception raised when a projection mixes inclusion and exclusion."""

    def __init__(
        self, message: str = "Projection cannot mix inclusion and exclusion."
    ):
        super().__init__(message)


class NotConnectedException(RuntimeError):
    def __init__(self, message: str = "No database is open on this store."):
        super().__init__(message)
