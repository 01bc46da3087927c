"""Business rule failures raised by the lending services.

All are local, synchronous and non-retryable. Persistence failures
(``sqlite3.Error``) are not part of this hierarchy.
"""


class LendingError(Exception):
    pass


class NotFoundError(LendingError):
    pass


class ValidationError(LendingError):
    pass


class ConflictError(LendingError):
    pass


class UnavailableError(LendingError):
    pass


class LimitExceededError(LendingError):
    pass


class AuthorizationError(LendingError):
    pass


class StateError(LendingError):
    pass


class ExpiredError(LendingError):
    pass


class DeliveryError(LendingError):
    """Notification could not be handed to the mail server."""
