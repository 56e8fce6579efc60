from __future__ import annotations


class PrloadError(Exception):
    """Base class for harness failures (as opposed to failed checks)."""


class ConfigError(PrloadError, ValueError):
    """Raised when the run configuration is inconsistent."""


class ThresholdSyntaxError(PrloadError, ValueError):
    """Raised when a threshold expression cannot be parsed."""


class TargetUnavailableError(PrloadError):
    """Raised when the target API never reports healthy."""


__all__ = [
    "PrloadError",
    "ConfigError",
    "ThresholdSyntaxError",
    "TargetUnavailableError",
]
