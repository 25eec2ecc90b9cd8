"""Exceptions raised by the widget engine and its collaborators."""


class ConfigurationError(ValueError):
    """Raised when the widget is initialised with missing or invalid options."""


class TransientNetworkError(RuntimeError):
    """A remote call failed in a way the caller may retry."""


class StorageUnavailableError(RuntimeError):
    """Durable key-value storage cannot be read or written."""


class ChannelDisconnected(ConnectionError):
    """The real-time transport dropped an active subscription."""
