"""
Processing Module
=================

Per-frame stylization.

Components:
    - ImagePrimitives: Protocol for pixel-buffer operations
    - OpenCVPrimitives: OpenCV implementation
    - CartoonizeStage: Fixed five-stage cartoon composition
    - ScratchArena: Scoped ownership of intermediate buffers
"""

from toonstream.processing.primitives import ImagePrimitives, OpenCVPrimitives
from toonstream.processing.scratch import ScratchArena
from toonstream.processing.cartoonize import CartoonizeStage, StageResult

__all__ = [
    "ImagePrimitives",
    "OpenCVPrimitives",
    "ScratchArena",
    "CartoonizeStage",
    "StageResult",
]
