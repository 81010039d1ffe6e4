"""Error taxonomy for the migration toolkit."""

from typing import Optional


class LiveMigrateError(Exception):
    """Base class for all toolkit errors."""

    retryable = False
    error_type = "system"

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class InvalidArgumentError(LiveMigrateError, ValueError):
    """A caller passed a malformed parameter."""

    error_type = "argument"


class NullEntityError(LiveMigrateError):
    """The raw record handed to a normalizer was None."""

    error_type = "data"

    def __init__(self, entity: str):
        self.entity = entity
        super().__init__(f"{entity} data is null or undefined")


class EmptyParticipantsError(LiveMigrateError):
    """A conversation has no extractable participant identifiers."""

    error_type = "data"

    def __init__(self, conversation_id: Optional[str] = None):
        self.conversation_id = conversation_id
        super().__init__("Conversation must have at least one participant")


class NotInitializedError(LiveMigrateError, RuntimeError):
    """The migration registry was used before initialize()."""

    def __init__(self, message: str = "Migration registry not initialized"):
        super().__init__(message)


class StoreError(LiveMigrateError):
    """The document store rejected or failed an operation."""

    error_type = "store"


class TransientStoreError(StoreError):
    """Network or timeout failure; safe to retry."""

    retryable = True
    error_type = "network"


class PermanentWriteError(StoreError):
    """The store refused a write (schema or permission violation)."""

    error_type = "write"


class UnsupportedQueryError(StoreError):
    """The store cannot serve the query shape (e.g. missing index)."""

    error_type = "query"


class EmergencyStopTriggered(LiveMigrateError):
    """Run-level termination signal raised when a run must halt."""

    error_type = "emergency_stop"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Emergency stop triggered: {reason}")


def is_retryable(error: BaseException) -> bool:
    """Whether the engine may retry an operation that raised ``error``."""
    if isinstance(error, LiveMigrateError):
        return error.retryable
    # Anything else came out of a caller-supplied transform.
    return True


def error_type_of(error: BaseException) -> str:
    """Category used when summarising migration errors."""
    if isinstance(error, LiveMigrateError):
        return error.error_type
    return "transform"
