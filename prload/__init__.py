"""
Fixed-arrival-rate workload generator for the team / pull-request API.

This package seeds a deterministic set of teams and users, drives a weighted mix
of read and write scenarios against the service at a constant arrival rate, and
evaluates latency and error-rate thresholds once the run has drained.
"""

from .errors import ConfigError, PrloadError, TargetUnavailableError, ThresholdSyntaxError
from .main import main

__all__ = [
    "ConfigError",
    "PrloadError",
    "TargetUnavailableError",
    "ThresholdSyntaxError",
    "main",
]
