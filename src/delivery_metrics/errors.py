"""Exception hierarchy for the delivery metrics engine.

Each error carries the process exit code the command-line entry point
returns when it escapes orchestration.
"""

EXIT_OK = 0
EXIT_UNEXPECTED = 1


class DeliveryMetricsError(Exception):
    """Base exception for all recoverable delivery metrics errors."""

    exit_code = EXIT_UNEXPECTED


class ConfigurationError(DeliveryMetricsError):
    """Raised when runtime configuration values are missing or invalid."""

    exit_code = 2


class AuthenticationError(DeliveryMetricsError):
    """Raised when the GitHub token is missing or rejected."""

    exit_code = 3


class ApiError(DeliveryMetricsError):
    """Raised when a GitHub request fails or returns an unexpected response."""

    exit_code = 4


class DataValidationError(DeliveryMetricsError):
    """Raised when a GitHub payload lacks fields required to build a record."""

    exit_code = 5
