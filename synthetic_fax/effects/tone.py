"""
Tone stages - the deterministic steps that take the page from color to 1-bit.

These are toggled on or off per run rather than gated per document; the blur
radius and threshold may still be randomized by the caller.
"""

import logging
from pathlib import Path
from typing import Sequence

from ..engine import RasterEngine
from ..operations import (
    DIFFUSION_METHODS, ORDERED_DITHER_MAPS, WHITE,
    ErrorDiffusionDither, FlattenAlpha, GaussianBlur, Grayscale, OrderedDither, Threshold,
)
from ..scratch import ScratchArena

logger = logging.getLogger(__name__)


def _run(cur: Path, arena: ScratchArena, engine: RasterEngine,
         suffix: str, operations: Sequence) -> Path:
    out = arena.path_for(suffix)
    engine.transform(cur, out, operations)
    arena.release(cur)
    return out


def flatten_alpha(cur: Path, arena: ScratchArena, engine: RasterEngine) -> Path:
    """Drop transparency onto a white background."""
    return _run(cur, arena, engine, "alpha", [FlattenAlpha(WHITE)])


def to_grayscale(cur: Path, arena: ScratchArena, engine: RasterEngine) -> Path:
    return _run(cur, arena, engine, "gray", [Grayscale()])


def blur(cur: Path, arena: ScratchArena, engine: RasterEngine, radius: float) -> Path:
    """Gaussian blur; `radius` is the sigma in pixels."""
    logger.debug("%s: blur sigma=%.3f", arena.name, radius)
    return _run(cur, arena, engine, "blur", [GaussianBlur(float(radius))])


def rasterize(cur: Path, arena: ScratchArena, engine: RasterEngine,
              raster_map: str = "o4x4") -> Path:
    """Ordered dither down to two colors."""
    if raster_map not in ORDERED_DITHER_MAPS:
        raise ValueError(f"Unknown ordered dither map: {raster_map!r}")
    return _run(cur, arena, engine, "rasterized", [OrderedDither(raster_map)])


def diffuse(cur: Path, arena: ScratchArena, engine: RasterEngine,
            method: str = "FloydSteinberg", colors: int = 2) -> Path:
    """Error-diffusion dither to `colors` gray levels."""
    if method not in DIFFUSION_METHODS:
        raise ValueError(f"Unknown diffusion method: {method!r}")
    return _run(cur, arena, engine, "dither", [ErrorDiffusionDither(method, int(colors))])


def threshold(cur: Path, arena: ScratchArena, engine: RasterEngine, percent: float) -> Path:
    return _run(cur, arena, engine, "threshold", [Threshold(float(percent))])
