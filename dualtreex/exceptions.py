from __future__ import annotations


class DualTreexError(Exception):
    """Base class for errors raised by dualtreex."""


class IncompatibleMetricError(DualTreexError, ValueError):
    """The distance metric cannot be used with the requested index structure."""


class DimensionMismatchError(DualTreexError, ValueError):
    """Query vectors do not match the dimensionality of the indexed vectors."""


__all__ = [
    "DualTreexError",
    "IncompatibleMetricError",
    "DimensionMismatchError",
]
