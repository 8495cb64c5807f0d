from dropfleet.core.exceptions import (
    CapacityExceededError,
    ChainExhaustedError,
    ConfigurationError,
    DropfleetError,
    LaunchError,
    ProvisioningError,
    RemoteAPIError,
)

__all__ = [
    "CapacityExceededError",
    "ChainExhaustedError",
    "ConfigurationError",
    "DropfleetError",
    "LaunchError",
    "ProvisioningError",
    "RemoteAPIError",
]
