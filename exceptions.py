class ChatError(Exception):
    """Base class for errors raised by the chat core."""


class StoreUnavailable(ChatError):
    """The store could not be reached or rejected a command. Retryable."""

    def __init__(self, operation: str, cause: Exception = None):
        self.operation = operation
        self.cause = cause
        message = f"Store unavailable during {operation}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class ConcurrentUpdate(ChatError):
    """An optimistic update kept losing to concurrent writers. Retryable."""

    def __init__(self, key: str, attempts: int):
        self.key = key
        self.attempts = attempts
        super().__init__(f"Gave up updating {key} after {attempts} conflicting attempts")


class PreconditionConflict(ChatError):
    """A join/leave precondition did not hold. Reported to the caller."""

    detail = "Precondition failed"

    def __init__(self, user: str):
        self.user = user
        super().__init__(f"{self.detail}: {user}")


class UserAlreadyExists(PreconditionConflict):
    detail = "User already exist"


class UserNotFound(PreconditionConflict):
    detail = "User does not exist"
