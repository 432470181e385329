"""Exceptions raised while preparing and running a proxied session.

Each error carries the process exit code the CLI uses when it aborts.
"""


class ShellError(Exception):
    """Base exception for all cloudsql-shell errors."""

    exit_code = 1

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message


class ArgumentError(ShellError):
    """Raised when command-line input is missing or malformed."""

    exit_code = 2


class MissingConfiguration(ShellError):
    """Raised when project or region cannot be resolved."""

    exit_code = 78

    def __init__(self, field: str):
        super().__init__(
            f"No {field} configured; pass --{field} or set a gcloud default",
        )
        self.field = field


class IdentityResolutionError(ShellError):
    """Raised when the database user cannot be derived from credentials."""

    exit_code = 77


class ProxyStartError(ShellError):
    """Raised when the proxy cannot be spawned or dies before it is ready."""

    exit_code = 69


class ProxyStartTimeout(ProxyStartError):
    """Raised when the proxy socket does not appear in time."""

    exit_code = 75

    def __init__(self, socket_path: str, timeout_seconds: float):
        super().__init__(
            f"Proxy socket {socket_path} did not appear after {timeout_seconds:g}s",
            {"socket_path": socket_path, "timeout_seconds": timeout_seconds},
        )
        self.socket_path = socket_path
        self.timeout_seconds = timeout_seconds


class SubcommandError(ShellError):
    """Raised when the subcommand cannot be executed at all."""

    exit_code = 127
