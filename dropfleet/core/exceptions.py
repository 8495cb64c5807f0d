"""Custom exception hierarchy for dropfleet.

All dropfleet-specific exceptions inherit from DropfleetError, enabling
callers to catch every dropfleet failure with a single except clause.
"""

from __future__ import annotations


class DropfleetError(Exception):
    """Base exception for all dropfleet errors."""


class ConfigurationError(DropfleetError):
    """Raised for invalid configuration or missing required settings."""

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(f"{field}: {message}" if field else message)


class ProvisioningError(DropfleetError):
    """Raised when droplet provisioning fails."""


class CapacityExceededError(ProvisioningError):
    """Raised when a fleet or template cap has been reached.

    Never retried by the fallback chain.
    """

    def __init__(self, scope: str, count: int, cap: int) -> None:
        self.scope = scope
        self.count = count
        self.cap = cap
        super().__init__(f"Instance cap reached for {scope}: {count}/{cap}")


class ChainExhaustedError(ProvisioningError):
    """Raised when every resource config of a template failed."""

    def __init__(self, node_name: str, sizes: tuple[str, ...]) -> None:
        self.node_name = node_name
        self.sizes = sizes
        super().__init__(
            f"All droplet sizes failed for {node_name}: {', '.join(sizes)}"
        )


class RemoteAPIError(ProvisioningError):
    """Raised when a DigitalOcean API call fails."""

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        self.reason = reason
        super().__init__(f"DigitalOcean API {operation} failed: {reason}")


class LaunchError(DropfleetError):
    """Raised when a created droplet cannot be reached."""

    def __init__(self, node_name: str, reason: str = "unknown") -> None:
        self.node_name = node_name
        self.reason = reason
        super().__init__(f"Could not launch {node_name}: {reason}")
