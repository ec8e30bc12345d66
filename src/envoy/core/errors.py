"""Custom exception types for the Envoy agent.

Error messages should say what failed, where it failed, why it failed and,
where possible, how to fix it.
"""


class EnvoyError(Exception):
    """Base exception for all Envoy errors."""

    pass


class ConfigValidationError(EnvoyError):
    """Raised when config.yaml fails Pydantic validation.

    Includes specific field errors with actionable messages.
    """

    pass


class ConfigLoadError(EnvoyError):
    """Raised when config.yaml cannot be loaded (file not found, YAML parse error)."""

    pass


class DatabaseError(EnvoyError):
    """Raised when SQLite operations fail."""

    pass


class ModelError(EnvoyError):
    """Raised when the language model backend fails to produce a reply.

    Attributes:
        status_code: HTTP status code from the provider (if available)
        model: Model identifier the request was made against
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        model: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.model = model


class GatewayError(EnvoyError):
    """Raised when the action/search gateway cannot be reached or returns an error.

    Attributes:
        status_code: HTTP status code from the gateway (if available)
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ActionNotPendingError(EnvoyError):
    """Raised when approving an action that is unknown or already resolved.

    Attributes:
        action_id: The pending action ID that was requested
    """

    def __init__(self, action_id: str):
        super().__init__(f"Action {action_id} not found or not pending")
        self.action_id = action_id
