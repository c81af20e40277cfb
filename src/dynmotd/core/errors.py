from __future__ import annotations


class DynmotdError(Exception):
    """Base class for errors raised by dynmotd."""


class FatalAssemblyError(DynmotdError):
    """Raised when no meaningful banner can be produced at all."""


class FetchFailed(DynmotdError):
    """Raised by the welcome-text transport; never escapes the provider."""


class ConfigError(DynmotdError):
    """Raised for configuration values that cannot be interpreted."""


class InstallError(DynmotdError):
    """Raised when the login script cannot be installed or removed."""
