"""
Scratch Arena
=============

Per-tick ownership of temporary pixel buffers.

Every intermediate buffer created while processing a frame is tracked
by an arena. Leaving the arena's `with` block drops all references it
holds, on success and on every error path, so no scratch buffer
outlives the tick (or stage invocation) that created it.

An optional byte budget bounds peak scratch memory; exceeding it is
reported as ScratchAllocationError. Child arenas created with scope()
draw on their parent's budget, so nested stages share one limit.
"""

from typing import List, Optional

import numpy as np

from toonstream.errors import ScratchAllocationError


class ScratchArena:
    """
    Scoped container for temporary buffers.

    Example:
        with ScratchArena(max_bytes=64 * 1024 * 1024) as arena:
            small = arena.track(resize(image, 320, 240))
            with arena.scope() as stage_arena:
                gray = stage_arena.track(to_gray(small))
                result = stage_arena.detach(gray)   # ownership passes to caller
            # gray's siblings released here, budget shared with `arena`
        # small released here
    """

    def __init__(
        self,
        max_bytes: Optional[int] = None,
        parent: Optional["ScratchArena"] = None,
    ) -> None:
        if max_bytes is not None and max_bytes <= 0:
            raise ValueError("max_bytes must be positive")

        self.max_bytes = max_bytes
        self.parent = parent
        self._buffers: List[np.ndarray] = []
        self._live_bytes: int = 0
        self.peak_bytes: int = 0
        self.released_total: int = 0

    @property
    def live_count(self) -> int:
        """Buffers currently held."""
        return len(self._buffers)

    @property
    def live_bytes(self) -> int:
        """Bytes currently held by this arena (children excluded)."""
        return self._live_bytes

    def scope(self) -> "ScratchArena":
        """Child arena whose buffers count against this arena's budget."""
        return ScratchArena(parent=self)

    def track(self, buffer: np.ndarray) -> np.ndarray:
        """
        Take ownership of a buffer produced elsewhere.

        Raises:
            ScratchAllocationError: If the buffer exceeds the budget
        """
        self._check_budget(self._live_bytes + buffer.nbytes)
        self._buffers.append(buffer)
        self._live_bytes += buffer.nbytes
        self._note_usage(self._live_bytes)
        return buffer

    def detach(self, buffer: np.ndarray) -> np.ndarray:
        """Stop tracking a buffer so it survives release()."""
        for i, held in enumerate(self._buffers):
            if held is buffer:
                del self._buffers[i]
                self._live_bytes -= buffer.nbytes
                break
        return buffer

    def release(self) -> int:
        """
        Drop every tracked buffer.

        Returns:
            Number of buffers released.
        """
        released = len(self._buffers)
        self._buffers.clear()
        self._live_bytes = 0
        self.released_total += released
        return released

    def _check_budget(self, requested: int) -> None:
        # `requested` is what this arena would hold; ancestors add their own
        if self.parent is not None:
            self.parent._check_budget(self.parent._live_bytes + requested)
            return
        if self.max_bytes is not None and requested > self.max_bytes:
            raise ScratchAllocationError(
                f"Scratch budget exceeded: {requested} > {self.max_bytes} bytes"
            )

    def _note_usage(self, held: int) -> None:
        self.peak_bytes = max(self.peak_bytes, held)
        if self.parent is not None:
            self.parent._note_usage(self.parent._live_bytes + held)

    def __enter__(self) -> "ScratchArena":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
