"""
Error Types
===========

Exceptions raised inside the processing core.

None of these are globally fatal. Each is recovered at the tick boundary:
    - PrimitiveError: stage falls back to passthrough
    - ScratchAllocationError: the cycle is dropped, next tick proceeds
    - SourceError: the source reports "not ready" until it recovers
"""


class ToonstreamError(Exception):
    """Base class for all toonstream errors."""
    pass


class PrimitiveError(ToonstreamError):
    """Raised when an image primitive fails or returns an empty result."""
    pass


class ScratchAllocationError(ToonstreamError):
    """Raised when a per-tick scratch buffer cannot be acquired."""
    pass


class SourceError(ToonstreamError):
    """Raised when a frame source cannot be opened."""
    pass
