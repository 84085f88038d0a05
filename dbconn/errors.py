"""Error taxonomy shared by the options builder, token cache and connection."""

from __future__ import annotations

from enum import Enum


class DatabaseError(RuntimeError):
    """Base error for database connectivity failures."""

    kind = "database"

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


class ConfigurationError(DatabaseError):
    """Raised when the selected backend is missing a required setting."""

    kind = "configuration"

    def __init__(self, backend_tag: str, field: str, message: str | None = None) -> None:
        super().__init__(message or f"Database setting '{field}' is required for backend '{backend_tag}'")
        self.backend_tag = backend_tag
        self.field = field


class UnsupportedBackendError(DatabaseError):
    """Raised for a backend selector outside the supported set."""

    kind = "unsupported_backend"

    def __init__(self, backend_tag: str) -> None:
        super().__init__(f"Database type currently not supported: '{backend_tag}'")
        self.backend_tag = backend_tag


class ConnectionTimeoutError(DatabaseError):
    """Raised when opening a Postgres connection exceeds the configured timeout."""

    kind = "connection_timeout"

    def __init__(self, configured_timeout_ms: int, *, cause: BaseException | None = None) -> None:
        super().__init__(
            f"Could not establish database connection within the configured timeout of "
            f"{configured_timeout_ms} ms. Please ensure the database is configured correctly "
            f"and the server is reachable. You can increase the timeout by setting "
            f"'postgresdb.connection_timeout_ms'.",
            cause=cause,
        )
        self.configured_timeout_ms = configured_timeout_ms


class ConnectionNotInitializedError(DatabaseError):
    """Raised when a database operation runs before ``init()`` succeeded."""

    kind = "not_initialized"

    def __init__(self) -> None:
        super().__init__(
            "Database connection is not initialized. The init() method must be called "
            "before attempting database operations."
        )


class AuthPhase(str, Enum):
    """Stage of the cloud credential flow in which a failure happened."""

    INITIALIZATION = "initialization"
    TOKEN_ACQUISITION = "token_acquisition"
    TOKEN_REFRESH = "token_refresh"


class AuthenticationError(DatabaseError):
    """Raised for any Azure credential failure."""

    kind = "authentication"

    def __init__(self, message: str, *, phase: AuthPhase, cause: BaseException | None = None) -> None:
        super().__init__(f"Azure authentication failed during {phase.value}: {message}", cause=cause)
        self.phase = phase


__all__ = [
    "AuthPhase",
    "AuthenticationError",
    "ConfigurationError",
    "ConnectionNotInitializedError",
    "ConnectionTimeoutError",
    "DatabaseError",
    "UnsupportedBackendError",
]
