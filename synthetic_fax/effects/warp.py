"""
Warp effect - pinch or stretch the page from its four corners.

Steps:
    1. Pad the page on a transparent canvas large enough for any corner pull
    2. Pull each corner toward (positive offset) or away from (negative
       offset) the center with a Shepard's distortion
    3. Crop to the distorted content, scale it to fit the original page,
       apply the final scale factor and center it on a white page

The result always has exactly the input dimensions.
"""

import logging
import math
from pathlib import Path
from typing import Optional, Tuple

import numpy as np

from ..engine import RasterEngine
from ..operations import (
    TRANSPARENT, WHITE, Crop, EnsureAlpha, Extent, Resize, ShepardsDistort,
)
from ..sampling import Param, ensure_rng, passes_batch, sample
from ..scratch import ScratchArena

logger = logging.getLogger(__name__)


def clamp_offset(offset: float, width: int, height: int) -> float:
    """Limit the corner pull to half the shorter side minus one pixel."""
    limit = max(0.0, min(width, height) / 2.0 - 1.0)
    return max(-limit, min(limit, float(offset)))


def warp_padding(offset: float) -> int:
    """Padding that keeps every displaced pixel on the canvas.

    Shepard's interpolation averages the corner displacements, so no pixel
    moves further than one corner does: |offset| * sqrt(2).
    """
    return int(math.ceil(abs(offset) * math.sqrt(2.0))) + 2


def corner_controls(width: int, height: int, pad: int, offset: float
                    ) -> Tuple[Tuple[Tuple[float, float], Tuple[float, float]], ...]:
    """(source, destination) control pairs for the four page corners."""
    left, top = float(pad), float(pad)
    right, bottom = float(pad + width), float(pad + height)
    return (
        ((left, top), (left + offset, top + offset)),
        ((right, top), (right - offset, top + offset)),
        ((left, bottom), (left + offset, bottom - offset)),
        ((right, bottom), (right - offset, bottom - offset)),
    )


def apply_warp(cur: Path, arena: ScratchArena, engine: RasterEngine,
               batch_perc: float, offset_px: Param, final_scale: float = 1.0,
               rng: Optional[np.random.Generator] = None) -> Path:
    """Pinch (offset > 0) or stretch (offset < 0) the page corners."""
    rng = ensure_rng(rng)
    if not passes_batch(batch_perc, rng):
        return cur

    w, h = engine.identify(cur)
    off = clamp_offset(sample(offset_px, rng), w, h)
    pad = warp_padding(off)
    padded_w, padded_h = w + 2 * pad, h + 2 * pad

    pad_path = arena.path_for("warp_pad")
    engine.transform(cur, pad_path, [
        EnsureAlpha(),
        Extent(padded_w, padded_h, TRANSPARENT),
        ShepardsDistort(corner_controls(w, h, pad, off)),
    ])

    left, top, right, bottom = engine.content_box(pad_path)
    content_w, content_h = max(1, right - left), max(1, bottom - top)
    fit = min(w / content_w, h / content_h)
    scale = fit * (final_scale if final_scale else 1.0)
    target_w = max(1, int(round(content_w * scale)))
    target_h = max(1, int(round(content_h * scale)))

    out = arena.path_for("warp")
    engine.transform(pad_path, out, [
        Crop((left, top, right, bottom)),
        Resize(target_w, target_h),
        Extent(w, h, WHITE),
    ])
    arena.release(cur)
    arena.release(pad_path)
    logger.debug("%s: warp offset=%.1f pad=%d scale=%.3f", arena.name, off, pad, scale)
    return out
