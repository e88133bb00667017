"""Domain-specific errors for devbuild."""


class DevbuildError(Exception):
    """Base error for devbuild."""


class ConfigurationError(DevbuildError):
    """Raised for invalid configuration, unknown providers or dependency cycles."""


class NotFoundError(ConfigurationError):
    """Raised when a registry lookup names something that is not registered."""


class AcquisitionError(DevbuildError):
    """Raised when resolving, downloading or extracting an asset fails."""


class WatchBackendError(DevbuildError):
    """Raised when the filesystem watch primitive fails."""


class ProviderRuntimeError(DevbuildError):
    """Raised when a provider build or watch fails."""
