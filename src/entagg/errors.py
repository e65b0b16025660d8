"""Exception types raised across the entagg package."""


class EntaggError(Exception):
    """Base class for all entagg errors."""


class EntitySourceError(EntaggError):
    """An entity file could not be read or holds malformed entities."""


class StoreError(EntaggError):
    """The SQLite store could not be opened, written or queried."""


class ConfigError(EntaggError):
    """A query specification file is missing or invalid."""
