"""
Exceptions raised by Topkapi sketches.

Every exception also derives from the built-in exception that a plain
stream summary would raise for the same mistake, so existing handlers for
``ValueError`` and ``TypeError`` keep working.
"""

from typing import Tuple


class TopKapiError(Exception):
    """Base class for all errors raised by this package."""


class InvalidParameter(TopKapiError, ValueError):
    """Raised when a sizing parameter, weight or query argument is out of range."""


class IncompatibleSketches(TopKapiError, ValueError):
    """Raised when two sketches with different grid shapes are merged."""

    def __init__(self, shape: Tuple[int, int], other_shape: Tuple[int, int]):
        self.shape = shape
        self.other_shape = other_shape
        super().__init__(
            f"Cannot merge sketches with different dimensions: "
            f"({shape[0]}x{shape[1]}) and ({other_shape[0]}x{other_shape[1]})"
        )


class UnhashableKey(TopKapiError, TypeError):
    """Raised when a key cannot be hashed and so cannot be routed to a bucket."""

    def __init__(self, key: object):
        self.key_type = type(key).__name__
        super().__init__(f"Key of type {self.key_type!r} is not hashable")
