"""
Toonstream Main Application
===========================

FastAPI entry point for the real-time cartoon stream service.

The lifespan builds the pipeline (source -> FrameLoop -> FrameStore) and runs
the FrameLoop as an asyncio task on the service's event loop. HTTP handlers
never touch pipeline state mid-tick: they only run between ticks and record
requests that the loop applies at the start of its next cycle.

Endpoints:
    GET  /                        - Service information
    GET  /health                  - Liveness probe
    GET  /ready                   - Readiness probe (frames being rendered?)
    GET  /status                  - Processing time, tier, frame skip, state
    GET  /metrics                 - Loop, stage and controller counters
    GET  /frame.jpg               - Latest rendered frame
    POST /quality/cycle           - Cycle tier HIGH -> MEDIUM -> LOW -> HIGH
    PUT  /quality/{tier}          - Request a specific tier
    PUT  /filters                 - Replace filter parameters
    POST /filters/preset/{name}   - Apply a filter preset
    POST /view/original           - Toggle unfiltered output
    WS   /ws/status               - Status pushed once per second
"""

import asyncio
import logging
import os
import signal
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, Response

from toonstream.config import settings
from toonstream.control import QualityController
from toonstream.loop import FrameLoop, FrameStore
from toonstream.models import FilterParameters, QualityTier
from toonstream.processing import CartoonizeStage, OpenCVPrimitives
from toonstream.stream import CaptureFrameSource


logger = logging.getLogger(__name__)


# =============================================================================
# Global State
# =============================================================================

# Shutdown flag
_shutdown_flag: bool = False

_frame_loop: Optional[FrameLoop] = None
_frame_store: Optional[FrameStore] = None
_loop_task: Optional[asyncio.Task] = None
_startup_time: float = 0.0


# =============================================================================
# Getters
# =============================================================================

def get_frame_loop() -> Optional[FrameLoop]:
    return _frame_loop

def get_frame_store() -> Optional[FrameStore]:
    return _frame_store


def _require_loop() -> FrameLoop:
    frame_loop = get_frame_loop()
    if frame_loop is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")
    return frame_loop


# =============================================================================
# Signal Handlers
# =============================================================================

def _handle_sigterm(signum, frame):
    """Handle SIGTERM for graceful shutdown."""
    global _shutdown_flag
    logger.info("Received SIGTERM, initiating graceful shutdown...")
    _shutdown_flag = True


# =============================================================================
# Pipeline Factory
# =============================================================================

def create_frame_loop(frame_store: FrameStore) -> FrameLoop:
    """Build the processing pipeline from settings."""
    controller = QualityController(
        device_class=settings.quality.resolve_device_class(),
        high_latency_ms=settings.quality.high_latency_ms,
        low_latency_ms=settings.quality.low_latency_ms,
        max_frame_skip=settings.quality.max_frame_skip,
        history_size=settings.quality.history_size,
        initial_tier=settings.quality.initial_tier,
    )

    # Stage intermediates draw on the loop's per-tick budget
    stage = CartoonizeStage(primitives=OpenCVPrimitives())

    source = CaptureFrameSource(
        uri=settings.source.uri,
        requested_width=settings.source.requested_width,
        requested_height=settings.source.requested_height,
        reopen_interval=settings.source.reopen_interval_seconds,
    )

    return FrameLoop(
        stage=stage,
        controller=controller,
        renderer=frame_store,
        params=settings.filters.to_parameters(),
        source=source,
        refresh_hz=settings.loop.refresh_hz,
        scratch_budget=settings.loop.scratch_budget_bytes,
        log_every_n_frames=settings.loop.log_every_n_frames,
    )


# =============================================================================
# Lifespan Management
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager with graceful shutdown."""
    global _frame_loop, _frame_store, _loop_task, _startup_time

    # Register signal handlers
    signal.signal(signal.SIGTERM, _handle_sigterm)

    # Startup
    _startup_time = time.time()
    logger.info(f"Starting {settings.service.name} {settings.service.version}")
    logger.info(f"Video source: {settings.source.uri}")

    _frame_store = FrameStore()
    _frame_loop = create_frame_loop(_frame_store)
    _loop_task = _frame_loop.start()

    logger.info("Frame loop started")

    yield

    # Shutdown
    logger.info("Shutting down gracefully...")

    global _shutdown_flag
    _shutdown_flag = True

    if _frame_loop:
        _frame_loop.withdraw_source()
        await _frame_loop.stop()

    logger.info("Shutdown complete")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="Toonstream",
    description="Real-time cartoon stylization with adaptive quality control",
    version=settings.service.version,
    lifespan=lifespan,
)


# =============================================================================
# HTTP Endpoints
# =============================================================================

@app.get("/")
async def root() -> JSONResponse:
    """Service information endpoint."""
    return JSONResponse({
        "service": "Toonstream",
        "version": settings.service.version,
        "name": settings.service.name,
        "status": "running",
        "source": settings.source.uri,
    })


@app.get("/health")
async def health() -> JSONResponse:
    """
    Liveness probe - is the process alive?

    Always returns 200 if the service is running.
    """
    return JSONResponse({
        "status": "healthy",
        "uptime_seconds": round(time.time() - _startup_time, 1),
    })


@app.get("/ready")
async def ready() -> JSONResponse:
    """
    Readiness probe - is the pipeline rendering frames?

    Returns 200 once at least one frame has been rendered, 503 otherwise.
    """
    frame_loop = get_frame_loop()
    store = get_frame_store()

    has_source = frame_loop.has_source if frame_loop else False
    rendered = store.presented if store else 0

    if frame_loop is not None and rendered > 0:
        return JSONResponse({
            "status": "ready",
            "source_attached": has_source,
            "frames_rendered": rendered,
        })

    return JSONResponse(
        {
            "status": "not_ready",
            "source_attached": has_source,
            "frames_rendered": rendered,
        },
        status_code=503,
    )


@app.get("/status")
async def status() -> JSONResponse:
    """State signals for display: processing time, tier, frame skip."""
    return JSONResponse(_require_loop().status())


@app.get("/metrics")
async def metrics() -> JSONResponse:
    """Detailed metrics for observability."""
    frame_loop = _require_loop()
    return JSONResponse({
        "uptime_seconds": round(time.time() - _startup_time, 1),
        "loop": frame_loop.metrics.to_dict(),
        "stage": frame_loop.stage.get_metrics(),
        "quality": frame_loop.controller.get_metrics(),
        "parameters": frame_loop.parameters.model_dump(),
    })


@app.get("/frame.jpg")
async def frame_jpeg() -> Response:
    """Latest rendered frame as JPEG."""
    store = get_frame_store()
    encoded = store.encode_jpeg(settings.server.jpeg_quality) if store else None

    if encoded is None:
        return JSONResponse(
            {"error": "No frame available yet"},
            status_code=503,
        )

    return Response(content=encoded, media_type="image/jpeg")


@app.post("/quality/cycle")
async def cycle_quality() -> JSONResponse:
    """Request the next quality tier."""
    frame_loop = _require_loop()
    target = frame_loop.controller.cycle_tier()
    return JSONResponse({"requested_tier": target.value})


@app.put("/quality/{tier}")
async def set_quality(tier: QualityTier) -> JSONResponse:
    """Request a specific quality tier."""
    frame_loop = _require_loop()
    frame_loop.controller.request_tier(tier)
    return JSONResponse({"requested_tier": tier.value})


@app.put("/filters")
async def set_filters(params: FilterParameters) -> JSONResponse:
    """Replace filter parameters (validated)."""
    frame_loop = _require_loop()
    frame_loop.set_parameters(params)
    return JSONResponse(params.model_dump())


@app.post("/filters/preset/{name}")
async def apply_preset(name: str) -> JSONResponse:
    """Apply a named filter preset."""
    frame_loop = _require_loop()
    try:
        params = FilterParameters.preset(name)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))

    frame_loop.set_parameters(params)
    return JSONResponse({"preset": name.lower(), **params.model_dump()})


@app.post("/view/original")
async def toggle_original() -> JSONResponse:
    """Toggle between stylized and unfiltered output."""
    frame_loop = _require_loop()
    frame_loop.set_show_original(not frame_loop.show_original)
    return JSONResponse({"show_original": frame_loop.show_original})


# =============================================================================
# WebSocket Endpoints
# =============================================================================

@app.websocket("/ws/status")
async def status_stream(websocket: WebSocket) -> None:
    """WebSocket endpoint for real-time status."""
    await websocket.accept()
    logger.info("Client connected to /ws/status")

    try:
        while not _shutdown_flag:
            frame_loop = get_frame_loop()
            if frame_loop:
                await websocket.send_json(frame_loop.status())
            await asyncio.sleep(1.0)

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.warning(f"WebSocket error: {e}")
    finally:
        logger.info("Client disconnected from /ws/status")


# =============================================================================
# Main Entry Point
# =============================================================================

def run() -> None:
    """Run the service with uvicorn."""
    import uvicorn

    # Cloud Run uses PORT env var
    port = int(os.environ.get("PORT", settings.server.port))

    uvicorn.run(
        "toonstream.main:app",
        host=settings.server.host,
        port=port,
        reload=False,
    )


if __name__ == "__main__":
    run()
