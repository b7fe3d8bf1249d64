"""
Stripes effect (white) - bands where the scan head lost toner.

A band mask (stripes of random thickness and spacing along one axis) is
ANDed with a patchy noise mask, and the result becomes the alpha channel of a
solid white overlay.
"""

import logging
import math
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from ..engine import RasterEngine
from ..operations import WHITE, Composite, MaskLayer
from ..sampling import ensure_rng, passes_batch, randint
from ..scratch import ScratchArena

logger = logging.getLogger(__name__)

DIRECTIONS = ("horizontal", "vertical")


def build_stripe_mask(width: int, height: int, amount: int,
                      thick_min: int, thick_max: int,
                      spacing_min: int, spacing_max: int,
                      direction: str, rng: np.random.Generator) -> np.ndarray:
    """(height, width) uint8 mask, 255 inside a stripe."""
    if direction not in DIRECTIONS:
        raise ValueError(f"Unknown stripe direction: {direction!r}")
    mask = np.zeros((height, width), dtype=np.uint8)
    length = height if direction == "horizontal" else width

    offset = int(math.floor(rng.random() * length))
    for i in range(int(amount)):
        thickness = randint(rng, thick_min, thick_max)
        spacing = randint(rng, spacing_min, spacing_max) if i < amount - 1 else 0
        offset += spacing
        jitter = int(math.floor((rng.random() * 2 - 1) * spacing))
        pos = max(0, min(length - thickness, offset + jitter))

        if direction == "horizontal":
            mask[pos:pos + thickness, :] = 255
        else:
            mask[:, pos:pos + thickness] = 255
        offset += thickness
    return mask


def build_noise_mask(width: int, height: int, noise_size: float, distort: float,
                     rng: np.random.Generator) -> np.ndarray:
    """(height, width) uint8 mask, 255 where the stripe survives.

    Random keep/erase pixels are blurred into patches about noise_size across
    and re-thresholded at mid-gray so the mask stays binary.
    """
    raw = np.where(rng.random((height, width)) < distort, 0, 255).astype(np.uint8)
    sigma = noise_size / 2.0 if noise_size > 1 else 1.0
    blurred = cv2.GaussianBlur(raw, (0, 0), sigmaX=sigma, sigmaY=sigma)
    return np.where(blurred > 128, 255, 0).astype(np.uint8)


def combine_masks(stripe_mask: np.ndarray, noise_mask: np.ndarray) -> np.ndarray:
    return np.where((stripe_mask == 255) & (noise_mask == 255), 255, 0).astype(np.uint8)


def apply_stripes_white(cur: Path, arena: ScratchArena, engine: RasterEngine,
                        batch_perc: float, amount: int,
                        thick_min: int, thick_max: int,
                        spacing_min: int, spacing_max: int,
                        direction: str = "horizontal", noise_size: float = 1.0,
                        distort: float = 0.0,
                        rng: Optional[np.random.Generator] = None) -> Path:
    rng = ensure_rng(rng)
    if not passes_batch(batch_perc, rng):
        return cur

    w, h = engine.identify(cur)
    stripes = build_stripe_mask(w, h, amount, thick_min, thick_max,
                                spacing_min, spacing_max, direction, rng)
    noise = build_noise_mask(w, h, noise_size, distort, rng)
    final = combine_masks(stripes, noise)
    if not final.any():
        return cur

    out = arena.path_for("stripesW")
    engine.transform(cur, out, [Composite(MaskLayer(final, WHITE))])
    arena.release(cur)
    logger.debug("%s: white stripes cover %.2f%%", arena.name,
                 100.0 * np.count_nonzero(final) / final.size)
    return out
