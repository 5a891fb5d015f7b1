"""
Domain error taxonomy.

Services raise these instead of returning sentinels; ``forum.main``
renders each one as a JSON response using its ``status_code``.
"""


class DomainError(Exception):
    status_code: int = 400

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message or self.__class__.__name__


class NotFound(DomainError):
    status_code = 404


class Unauthorized(DomainError):
    status_code = 401


class Conflict(DomainError):
    status_code = 409


class StoreFailure(DomainError):
    """A backing store call errored or an atomic unit was aborted."""

    status_code = 503


class FieldValidationError(DomainError):
    """One or more input fields were rejected; carries ``{field, message}`` pairs."""

    status_code = 400

    def __init__(self, errors: list[dict]) -> None:
        super().__init__("Invalid input")
        self.errors = errors
