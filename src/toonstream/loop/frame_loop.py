"""
Frame Loop
==========

Single-threaded, cooperatively scheduled driver of the pipeline.

Each tick performs at most one unit of work:

    poll -> skip decision -> downsample -> CartoonizeStage
         -> (upsample) -> Renderer -> timing sample -> QualityController

States:
    IDLE        no source attached
    POLLING     source attached, no ready frame this tick
    SKIPPING    tick consumed without processing (frame skip)
    PROCESSING  CartoonizeStage running
    RENDERING   output handed to the renderer (tick completed a cycle)
    STOPPED     source withdrawn or loop torn down

Key Design Decisions:
    - One tick per scheduling opportunity; no work spans ticks
    - Suspension happens only between ticks (asyncio wait on a stop event)
    - All scratch buffers of a tick, including the stage's intermediates,
      count against one ScratchArena budget released on every exit path
    - Tier, frame skip and parameters are snapshotted at cycle start
    - No failure inside a tick stops the loop
"""

import asyncio
import logging
import math
import time
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

import numpy as np

from toonstream.control.quality import QualityController
from toonstream.errors import ScratchAllocationError
from toonstream.loop.renderer import Renderer
from toonstream.models.filters import FilterParameters
from toonstream.models.quality import QualityTier
from toonstream.processing.cartoonize import CartoonizeStage
from toonstream.processing.scratch import ScratchArena
from toonstream.stream.frame import Frame
from toonstream.stream.source import FrameSource


logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    """FrameLoop states."""

    IDLE = "IDLE"
    POLLING = "POLLING"
    SKIPPING = "SKIPPING"
    PROCESSING = "PROCESSING"
    RENDERING = "RENDERING"
    STOPPED = "STOPPED"


class LoopMetrics:
    """Metrics for FrameLoop observability."""

    __slots__ = (
        "ticks",
        "frames_processed",
        "frames_skipped",
        "not_ready_polls",
        "fallbacks",
        "dropped_cycles",
        "errors",
        "resolution_changes",
        "last_processing_ms",
        "peak_scratch_bytes",
    )

    def __init__(self) -> None:
        self.ticks: int = 0
        self.frames_processed: int = 0
        self.frames_skipped: int = 0
        self.not_ready_polls: int = 0
        self.fallbacks: int = 0
        self.dropped_cycles: int = 0
        self.errors: int = 0
        self.resolution_changes: int = 0
        self.last_processing_ms: float = 0.0
        self.peak_scratch_bytes: int = 0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "ticks": self.ticks,
            "frames_processed": self.frames_processed,
            "frames_skipped": self.frames_skipped,
            "not_ready_polls": self.not_ready_polls,
            "fallbacks": self.fallbacks,
            "dropped_cycles": self.dropped_cycles,
            "errors": self.errors,
            "resolution_changes": self.resolution_changes,
            "last_processing_ms": round(self.last_processing_ms, 2),
            "peak_scratch_bytes": self.peak_scratch_bytes,
        }


class FrameLoop:
    """
    Scheduling driver for the cartoon pipeline.

    Attributes:
        stage: CartoonizeStage invoked once per processed cycle
        controller: QualityController owning tier and frame skip
        renderer: Output sink
        refresh_hz: Scheduling opportunities per second
        scratch_budget: Optional per-tick scratch byte budget
        metrics: Operational metrics

    Example:
        loop = FrameLoop(
            stage=CartoonizeStage(OpenCVPrimitives()),
            controller=QualityController(DeviceClass.detect()),
            renderer=FrameStore(),
            source=CaptureFrameSource("0"),
        )

        task = loop.start()
        ...
        await loop.stop()
    """

    def __init__(
        self,
        stage: CartoonizeStage,
        controller: QualityController,
        renderer: Renderer,
        params: Optional[FilterParameters] = None,
        source: Optional[FrameSource] = None,
        refresh_hz: float = 60.0,
        scratch_budget: Optional[int] = None,
        log_every_n_frames: int = 30,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        """
        Initialize frame loop.

        Args:
            stage: Stylization stage
            controller: Quality controller
            renderer: Output sink
            params: Initial filter parameters (defaults to "normal")
            source: Initial frame source (None = IDLE)
            refresh_hz: Tick rate of the scheduler
            scratch_budget: Per-tick scratch byte budget (None = unbounded)
            log_every_n_frames: Status logging interval
            clock: Monotonic clock in seconds, used for latency samples
        """
        if refresh_hz <= 0:
            raise ValueError("refresh_hz must be > 0")

        self.stage = stage
        self.controller = controller
        self.renderer = renderer
        self.refresh_hz = refresh_hz
        self.scratch_budget = scratch_budget
        self.log_every_n_frames = log_every_n_frames
        self._clock = clock
        self._primitives = stage.primitives

        self._params: FilterParameters = params or FilterParameters()
        self._show_original: bool = False

        self._source: Optional[FrameSource] = source
        self._state: LoopState = LoopState.POLLING if source is not None else LoopState.IDLE
        self._skip_counter: int = 0

        # Sizing cache, reset whenever the native resolution changes
        self._output_size: Optional[Tuple[int, int]] = None
        self._processing_sizes: Dict[QualityTier, Tuple[int, int]] = {}

        self._stop_event: asyncio.Event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        # Cancelled by withdraw_source, awaited by stop()
        self._retired_task: Optional[asyncio.Task] = None
        # Set by start(), cleared by stop(); attach_source reschedules while set
        self._scheduled: bool = False

        self.metrics = LoopMetrics()

        logger.info(
            f"FrameLoop initialized: refresh={refresh_hz:.0f}Hz, "
            f"scratch_budget={scratch_budget}, state={self._state.value}"
        )

    # -------------------------------------------------------------------------
    # Configuration surface
    # -------------------------------------------------------------------------

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def parameters(self) -> FilterParameters:
        return self._params

    @property
    def show_original(self) -> bool:
        return self._show_original

    @property
    def output_size(self) -> Optional[Tuple[int, int]]:
        """Current output (native) resolution as (width, height)."""
        return self._output_size

    @property
    def has_source(self) -> bool:
        return self._source is not None

    def set_parameters(self, params: FilterParameters) -> None:
        """Replace filter parameters; read at the next cycle start."""
        self._params = params
        logger.info(f"Filter parameters updated: {params.model_dump()}")

    def set_show_original(self, enabled: bool) -> None:
        """Toggle presenting unfiltered frames."""
        self._show_original = enabled
        logger.info(f"Show original: {enabled}")

    def attach_source(self, source: FrameSource) -> None:
        """
        Attach a frame source and resume polling.

        Any previous source is closed. Cached sizing is reset so the next
        processed frame uses the new source's resolution.

        If the loop was started and a withdrawal cancelled its task, a new
        task is scheduled on the running event loop. A loop that was never
        started (or was stopped with stop()) only changes state; call
        start() to run it.
        """
        if self._source is not None and self._source is not source:
            self._source.close()
        self._source = source
        self._reset_sizing()
        self._skip_counter = 0
        self._state = LoopState.POLLING
        self._stop_event.clear()
        logger.info("Frame source attached")

        if self._scheduled and (self._task is None or self._task.done()):
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                logger.warning("No running event loop, call start() to resume ticking")
                return
            self.start()

    def withdraw_source(self) -> None:
        """
        Withdraw the source and stop the loop.

        Cancels the pending scheduled tick; no cycle runs afterwards.
        """
        source = self._source
        self._source = None
        self._enter_stopped()
        if source is not None:
            source.close()
        logger.info("Frame source withdrawn")

    def processing_size(self, tier: QualityTier) -> Optional[Tuple[int, int]]:
        """
        Processing resolution for a tier at the current output size.

        Native size scaled by the tier factor, rounded down, at least 1px.
        """
        if self._output_size is None:
            return None

        cached = self._processing_sizes.get(tier)
        if cached is None:
            width, height = self._output_size
            cached = (
                max(1, int(math.floor(width * tier.scale))),
                max(1, int(math.floor(height * tier.scale))),
            )
            self._processing_sizes[tier] = cached
        return cached

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------

    def start(self) -> asyncio.Task:
        """Schedule the loop on the running event loop."""
        if self._task is not None and not self._task.done():
            return self._task

        if self._state is LoopState.STOPPED:
            self._state = LoopState.POLLING if self._source is not None else LoopState.IDLE
        self._stop_event.clear()

        self._scheduled = True
        self._task = asyncio.create_task(self.run(), name="frame_loop")
        return self._task

    async def run(self) -> None:
        """
        Tick once per scheduling opportunity until stopped.

        Between ticks control returns to the event loop for one refresh
        interval; setting the stop event ends the wait immediately.
        """
        interval = 1.0 / self.refresh_hz
        logger.info(f"FrameLoop running ({interval * 1000:.1f}ms per tick)")

        while self._state is not LoopState.STOPPED:
            self.tick()

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                # Stop event was set
                break
            except asyncio.TimeoutError:
                pass

        logger.info(
            f"FrameLoop stopped after {self.metrics.ticks} ticks, "
            f"{self.metrics.frames_processed} frames processed"
        )

    async def stop(self) -> None:
        """Stop the loop and wait for the scheduled task to finish."""
        self._scheduled = False
        self._enter_stopped()

        task = self._retired_task
        self._retired_task = None
        if task is not None and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _enter_stopped(self) -> None:
        self._state = LoopState.STOPPED
        self._stop_event.set()
        self._reset_sizing()
        if self._task is not None:
            if not self._task.done():
                self._task.cancel()
            self._retired_task = self._task
            self._task = None

    # -------------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------------

    def tick(self) -> LoopState:
        """
        Run one tick.

        Returns:
            The state the tick ended in.
        """
        if self._state is LoopState.STOPPED:
            return self._state

        if self._source is None:
            self._state = LoopState.IDLE
            return self._state

        self.metrics.ticks += 1

        with ScratchArena(self.scratch_budget) as arena:
            try:
                self._state = self._run_cycle(self._source, arena)
            except (ScratchAllocationError, MemoryError) as e:
                self.metrics.dropped_cycles += 1
                logger.warning(
                    f"Cycle dropped, scratch memory exhausted "
                    f"(dropped={self.metrics.dropped_cycles}): {e}"
                )
                self._state = LoopState.POLLING
            except Exception as e:
                self.metrics.errors += 1
                logger.error(f"Tick error (errors={self.metrics.errors}): {e}")
                self._state = LoopState.POLLING
            finally:
                self.metrics.peak_scratch_bytes = max(
                    self.metrics.peak_scratch_bytes, arena.peak_bytes
                )

        return self._state

    def _run_cycle(self, source: FrameSource, arena: ScratchArena) -> LoopState:
        result = source.poll()
        frame = result.frame

        # Transient unavailability: retry next tick
        if not result.ready or frame is None or result.width <= 0 or result.height <= 0:
            self.metrics.not_ready_polls += 1
            return LoopState.POLLING

        self._track_resolution(result.width, result.height)

        self._skip_counter += 1
        if self._skip_counter < self.controller.frame_skip:
            self.metrics.frames_skipped += 1
            return LoopState.SKIPPING
        self._skip_counter = 0

        config = self.controller.begin_cycle(self._params, self._show_original)
        self._state = LoopState.PROCESSING

        if config.show_original:
            output = self._passthrough(frame, arena)
        else:
            output = self._stylize(frame, config.tier, config.params, arena)

        self._state = LoopState.RENDERING
        self.renderer.present(output)
        self.metrics.frames_processed += 1

        if self.metrics.frames_processed == 1:
            logger.info(f"First frame rendered: {frame!r}")
        elif self.metrics.frames_processed % self.log_every_n_frames == 0:
            logger.info(
                f"Frame {self.metrics.frames_processed}: "
                f"tier={config.tier.value}, skip={self.controller.frame_skip}, "
                f"processing={self.metrics.last_processing_ms:.1f}ms"
            )

        return LoopState.RENDERING

    def _stylize(
        self,
        frame: Frame,
        tier: QualityTier,
        params: FilterParameters,
        arena: ScratchArena,
    ) -> np.ndarray:
        out_w, out_h = self._output_size
        proc_w, proc_h = self.processing_size(tier)

        # Downsample only when the processing size differs from the frame
        if (proc_w, proc_h) != (frame.width, frame.height):
            work = arena.track(
                self._primitives.resize(frame.image, proc_w, proc_h, linear=True)
            )
        else:
            work = frame.image

        start = self._clock()
        stage_result = self.stage.process(work, params, arena)
        elapsed_ms = (self._clock() - start) * 1000.0

        self.metrics.last_processing_ms = elapsed_ms
        self.controller.record_cycle(elapsed_ms)

        if stage_result.fallback:
            self.metrics.fallbacks += 1

        output = arena.track(stage_result.image)
        if (proc_w, proc_h) != (out_w, out_h):
            output = arena.track(
                self._primitives.resize(output, out_w, out_h, linear=True)
            )
        return output

    def _passthrough(self, frame: Frame, arena: ScratchArena) -> np.ndarray:
        out_w, out_h = self._output_size
        output = arena.track(self._primitives.to_color3(frame.image))
        if (frame.width, frame.height) != (out_w, out_h):
            output = arena.track(
                self._primitives.resize(output, out_w, out_h, linear=True)
            )
        return output

    def _track_resolution(self, width: int, height: int) -> None:
        size = (width, height)
        if self._output_size == size:
            return

        if self._output_size is not None:
            self.metrics.resolution_changes += 1
            logger.info(
                f"Source resolution changed: "
                f"{self._output_size[0]}x{self._output_size[1]} -> {width}x{height}"
            )
        else:
            logger.info(f"Source resolution: {width}x{height}")

        self._reset_sizing()
        self._output_size = size

    def _reset_sizing(self) -> None:
        self._output_size = None
        self._processing_sizes.clear()

    def status(self) -> dict:
        """Display-oriented state signals."""
        size = self._output_size
        processing = self.processing_size(self.controller.tier)
        return {
            "state": self._state.value,
            "tier": self.controller.tier.value,
            "frame_skip": self.controller.frame_skip,
            "processing_ms": round(self.metrics.last_processing_ms, 2),
            "output_size": list(size) if size else None,
            "processing_size": list(processing) if processing else None,
            "show_original": self._show_original,
            "device_class": self.controller.device_class.value,
        }
