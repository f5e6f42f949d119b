"""
Service API Tests
=================

Tests for the FastAPI control and status surface.

The lifespan is not entered; a FrameLoop over an in-memory source is
installed in place of the camera-backed pipeline.
"""

import pytest
from fastapi.testclient import TestClient

from conftest import RecordingPrimitives, make_edge_image
from toonstream import main
from toonstream.control.quality import QualityController
from toonstream.loop.frame_loop import FrameLoop
from toonstream.loop.renderer import FrameStore
from toonstream.models.quality import DeviceClass, QualityTier
from toonstream.processing.cartoonize import CartoonizeStage
from toonstream.stream.source import SequenceFrameSource


@pytest.fixture
def pipeline(monkeypatch):
    """Install an in-memory pipeline into the service module."""
    store = FrameStore()
    frame_loop = FrameLoop(
        stage=CartoonizeStage(RecordingPrimitives()),
        controller=QualityController(DeviceClass.UNCONSTRAINED),
        renderer=store,
        source=SequenceFrameSource([make_edge_image(64, 48)], repeat=True),
    )
    monkeypatch.setattr(main, "_frame_loop", frame_loop)
    monkeypatch.setattr(main, "_frame_store", store)
    return frame_loop, store


@pytest.fixture
def client():
    """Provide a test client without running the lifespan."""
    return TestClient(main.app)


class TestProbes:
    """Tests for service info and probes."""

    def test_root(self, client):
        """Verify service information."""
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["service"] == "Toonstream"

    def test_health(self, client):
        """Verify liveness always succeeds."""
        assert client.get("/health").json()["status"] == "healthy"

    def test_ready_before_and_after_first_frame(self, client, pipeline):
        """Verify readiness follows rendered frames."""
        frame_loop, _ = pipeline

        assert client.get("/ready").status_code == 503

        frame_loop.tick()
        response = client.get("/ready")

        assert response.status_code == 200
        assert response.json()["frames_rendered"] == 1

    def test_uninitialized_pipeline(self, client, monkeypatch):
        """Verify control endpoints report 503 before startup."""
        monkeypatch.setattr(main, "_frame_loop", None)

        assert client.get("/status").status_code == 503
        assert client.post("/quality/cycle").status_code == 503


class TestStatus:
    """Tests for status and metrics."""

    def test_status(self, client, pipeline):
        """Verify state signals are reported."""
        frame_loop, _ = pipeline
        frame_loop.tick()

        body = client.get("/status").json()

        assert body["state"] == "RENDERING"
        assert body["tier"] == "high"
        assert body["frame_skip"] == 1
        assert body["output_size"] == [64, 48]

    def test_metrics(self, client, pipeline):
        """Verify loop, stage and controller counters are exposed."""
        frame_loop, _ = pipeline
        frame_loop.tick()

        body = client.get("/metrics").json()

        assert body["loop"]["frames_processed"] == 1
        assert body["stage"]["invocations"] == 1
        assert body["quality"]["cycles"] == 1
        assert body["parameters"]["bilateral_d"] == 7


class TestFrameSnapshot:
    """Tests for /frame.jpg."""

    def test_no_frame_yet(self, client, pipeline):
        """Verify 503 before anything is rendered."""
        assert client.get("/frame.jpg").status_code == 503

    def test_latest_frame(self, client, pipeline):
        """Verify the latest output is served as JPEG."""
        frame_loop, _ = pipeline
        frame_loop.tick()

        response = client.get("/frame.jpg")

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/jpeg"
        assert response.content[:2] == b"\xff\xd8"


class TestControls:
    """Tests for quality, filter and view controls."""

    def test_cycle_quality(self, client, pipeline):
        """Verify cycling requests the next tier without applying it."""
        frame_loop, _ = pipeline

        response = client.post("/quality/cycle")

        assert response.json() == {"requested_tier": "medium"}
        assert frame_loop.controller.tier is QualityTier.HIGH

        frame_loop.tick()

        assert frame_loop.controller.tier is QualityTier.MEDIUM

    def test_set_quality(self, client, pipeline):
        """Verify a specific tier can be requested."""
        frame_loop, _ = pipeline

        assert client.put("/quality/low").status_code == 200
        assert frame_loop.controller.pending_tier is QualityTier.LOW

    def test_set_unknown_quality(self, client, pipeline):
        """Verify unknown tiers fail validation."""
        assert client.put("/quality/ultra").status_code == 422

    def test_set_filters(self, client, pipeline):
        """Verify valid parameters replace the current ones."""
        frame_loop, _ = pipeline

        response = client.put("/filters", json={"bilateral_d": 9, "intensity": 0.5})

        assert response.status_code == 200
        assert frame_loop.parameters.bilateral_d == 9
        assert frame_loop.parameters.intensity == 0.5

    def test_set_filters_even_kernel(self, client, pipeline):
        """Verify even kernels are rejected and parameters kept."""
        frame_loop, _ = pipeline

        response = client.put("/filters", json={"median_ksize": 4})

        assert response.status_code == 422
        assert frame_loop.parameters.median_ksize == 5

    def test_apply_preset(self, client, pipeline):
        """Verify presets are applied by name."""
        frame_loop, _ = pipeline

        response = client.post("/filters/preset/sketch")

        assert response.status_code == 200
        assert response.json()["preset"] == "sketch"
        assert frame_loop.parameters.bilateral_d == 3

    def test_unknown_preset(self, client, pipeline):
        """Verify unknown presets return 404."""
        assert client.post("/filters/preset/oil").status_code == 404

    def test_toggle_original(self, client, pipeline):
        """Verify the unfiltered view toggles."""
        frame_loop, _ = pipeline

        assert client.post("/view/original").json() == {"show_original": True}
        assert frame_loop.show_original
        assert client.post("/view/original").json() == {"show_original": False}
