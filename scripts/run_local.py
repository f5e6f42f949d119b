#!/usr/bin/env python3
"""
Local Runner
============

Standalone script to run the cartoon pipeline in an OpenCV window.

This script:
    1. Opens a camera, video file or still image
    2. Runs the FrameLoop for a configurable duration (or until q/ESC)
    3. Logs processing stats every few seconds
    4. Reports a final summary

Usage:
    python scripts/run_local.py --source 0
    python scripts/run_local.py --source clip.mp4 --preset soft --tier medium
    python scripts/run_local.py --image portrait.png --device-class constrained
"""

import argparse
import asyncio
import logging
import os
import sys
import time

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from toonstream.control import QualityController
from toonstream.loop import FrameLoop, WindowRenderer
from toonstream.models import DeviceClass, FilterParameters, QualityTier
from toonstream.processing import CartoonizeStage, OpenCVPrimitives
from toonstream.stream import CaptureFrameSource, SequenceFrameSource


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger(__name__)


async def run_local(
    source_uri: str,
    image_path: str,
    preset: str,
    tier: str,
    device_class: str,
    duration: int,
    report_interval: int,
) -> dict:
    """
    Run the pipeline with a window renderer.

    Args:
        source_uri: Camera index, file path or stream URL
        image_path: Still image to repeat (overrides source_uri)
        preset: Filter preset name
        tier: Initial tier or "auto"
        device_class: "auto", "constrained" or "unconstrained"
        duration: Run time in seconds (0 = until q/ESC)
        report_interval: Seconds between progress reports

    Returns:
        Final metrics dict
    """
    if image_path:
        source = SequenceFrameSource.from_image(image_path)
    else:
        source = CaptureFrameSource(uri=source_uri)

    resolved_class = (
        DeviceClass.detect() if device_class == "auto" else DeviceClass(device_class)
    )
    controller = QualityController(
        device_class=resolved_class,
        initial_tier=None if tier == "auto" else QualityTier(tier),
    )
    renderer = WindowRenderer()
    frame_loop = FrameLoop(
        stage=CartoonizeStage(OpenCVPrimitives()),
        controller=controller,
        renderer=renderer,
        params=FilterParameters.preset(preset),
        source=source,
    )

    logger.info("=" * 60)
    logger.info("Toonstream local run")
    logger.info("=" * 60)
    logger.info(f"Source: {image_path or source_uri}")
    logger.info(f"Preset: {preset}")
    logger.info(f"Device class: {resolved_class.value}")
    logger.info(f"Duration: {duration or 'until q/ESC'}")
    logger.info("Keys: q/ESC quit, t cycle tier, o toggle original")
    logger.info("=" * 60)

    frame_loop.start()

    start_time = time.time()
    last_report_time = start_time

    try:
        while True:
            elapsed = time.time() - start_time

            if duration and elapsed >= duration:
                logger.info(f"Run duration ({duration}s) reached")
                break
            if renderer.quit_requested:
                logger.info("Quit requested")
                break

            # Keyboard controls
            if renderer.last_key == ord("t"):
                controller.cycle_tier()
            elif renderer.last_key == ord("o"):
                frame_loop.set_show_original(not frame_loop.show_original)
            renderer.last_key = -1

            # Report progress
            if time.time() - last_report_time >= report_interval:
                status = frame_loop.status()
                metrics = frame_loop.metrics

                logger.info("-" * 40)
                logger.info(f"Progress Report (elapsed: {elapsed:.0f}s)")
                logger.info(f"  State: {status['state']}")
                logger.info(f"  Frames processed: {metrics.frames_processed}")
                logger.info(f"  Frames skipped: {metrics.frames_skipped}")
                logger.info(f"  Processing: {status['processing_ms']:.1f}ms")
                logger.info(f"  Tier: {status['tier']}, skip: {status['frame_skip']}")
                logger.info(f"  Fallbacks: {metrics.fallbacks}")

                last_report_time = time.time()

            await asyncio.sleep(0.1)

    except KeyboardInterrupt:
        logger.info("Run interrupted by user")
    finally:
        frame_loop.withdraw_source()
        await frame_loop.stop()
        renderer.close()

    # Final report
    total_time = time.time() - start_time
    metrics = frame_loop.metrics
    quality = controller.get_metrics()

    avg_fps = metrics.frames_processed / total_time if total_time > 0 else 0

    logger.info("=" * 60)
    logger.info("FINAL SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Total runtime: {total_time:.1f} seconds")
    logger.info(f"Frames processed: {metrics.frames_processed}")
    logger.info(f"Average output FPS: {avg_fps:.1f}")
    logger.info(f"Mean processing: {quality['mean_ms']}ms")
    logger.info(f"Final tier: {quality['tier']}, frame skip: {quality['frame_skip']}")
    logger.info(f"Fallbacks: {metrics.fallbacks}")
    logger.info(f"Dropped cycles: {metrics.dropped_cycles}")
    logger.info("=" * 60)

    return {
        "duration": total_time,
        "frames_processed": metrics.frames_processed,
        "avg_fps": avg_fps,
        "mean_processing_ms": quality["mean_ms"],
        "tier": quality["tier"],
        "frame_skip": quality["frame_skip"],
    }


def main():
    parser = argparse.ArgumentParser(
        description="Run the cartoon pipeline locally in an OpenCV window"
    )
    parser.add_argument(
        "--source",
        type=str,
        default=os.environ.get("TOON_SOURCE_URI", "0"),
        help="Camera index, video file or stream URL (default: 0)",
    )
    parser.add_argument(
        "--image",
        type=str,
        default="",
        help="Still image to stylize repeatedly (overrides --source)",
    )
    parser.add_argument(
        "--preset",
        type=str,
        default="normal",
        choices=["soft", "normal", "strong", "sketch"],
        help="Filter preset (default: normal)",
    )
    parser.add_argument(
        "--tier",
        type=str,
        default="auto",
        choices=["auto", "high", "medium", "low"],
        help="Initial quality tier (default: seeded from device class)",
    )
    parser.add_argument(
        "--device-class",
        type=str,
        default="auto",
        choices=["auto", "constrained", "unconstrained"],
        help="Device class (default: detected)",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Run duration in seconds (default: until q/ESC)",
    )
    parser.add_argument(
        "--report-interval",
        type=int,
        default=5,
        help="Seconds between progress reports (default: 5)",
    )

    args = parser.parse_args()

    result = asyncio.run(run_local(
        source_uri=args.source,
        image_path=args.image,
        preset=args.preset,
        tier=args.tier,
        device_class=args.device_class,
        duration=args.duration,
        report_interval=args.report_interval,
    ))

    sys.exit(0 if result["frames_processed"] > 0 else 1)


if __name__ == "__main__":
    main()
