"""
ds18b20-remote error types.

Only FrameError (and its DecryptError subclass) is fatal to a connection.
Everything else is absorbed by the component that raised it.
"""


class RemoteError(Exception):
    """Base class for all ds18b20-remote errors."""


class ConfigError(RemoteError):
    """Required configuration is missing or invalid. Fatal at startup."""


class FrameError(RemoteError):
    """An inbound frame could not be decrypted or parsed."""


class DecryptError(FrameError):
    """Ciphertext is corrupt, tampered with, or encrypted with another key."""


class SensorBusError(RemoteError):
    """The 1-wire bus could not be enumerated."""
