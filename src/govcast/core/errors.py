"""Exception types shared by the core and its adapters."""

from __future__ import annotations


class GovcastError(Exception):
    """Base class for all govcast errors."""


class ConfigValidationError(GovcastError):
    """Configuration is missing or malformed. Fatal at startup."""


class UpstreamFetchError(GovcastError):
    """A chain endpoint, content gateway or Warpcast call failed."""


class CacheCorruptionError(GovcastError, ValueError):
    """A stored cache value could not be decoded."""


class TaskHandlerError(GovcastError):
    """The send operation reported an unsuccessful result."""
