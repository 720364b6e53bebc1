"""Domain-specific errors for lumenhub."""


class HubError(Exception):
    """Base error for lumenhub."""


class DeviceUnknown(HubError):
    """Raised when an id is not present in the device registry."""


class DeviceNotConnected(HubError):
    """Raised when an operation needs a live link the device does not have."""


class CharacteristicNotFound(HubError):
    """Raised when no characteristic matches the requested UUID or capability."""


class AdapterNotReady(HubError):
    """Raised when the radio adapter did not become ready in time."""


class WriteFailed(HubError):
    """Raised when the adapter rejected a characteristic write."""


class ReadFailed(HubError):
    """Raised when the adapter failed to read a characteristic."""


class EncodingUnsupported(HubError):
    """Raised when a command type has no mapping for a profile's encoding."""


class PeripheralNotFound(HubError):
    """Raised when a known device has no cached radio handle; scan first."""


class ConnectionFailed(HubError):
    """Raised when the adapter could not establish a link."""
