"""
Stripes effect (black) - clusters of toner speckle, optionally smeared.

Provides:
- Gaussian speckle clouds sampled with Box-Muller inside a cluster box
- Edge fade (1 - max(|dx|, |dy|))^2 with random keep/drop per point
- Scan-line spacing (only every Nth row keeps speckles)
- Motion-blur smear that is longer for clusters near the page center

Each cluster is drawn on its own transparent layer and composited onto the
page in sequence.
"""

import logging
import math
from pathlib import Path
from typing import Optional, Union

import numpy as np

from ..engine import RasterEngine
from ..operations import (
    BLACK, TRANSPARENT, CanvasLayer, Color, Composite, Draw, DrawScript, MotionBlur,
)
from ..sampling import ensure_rng, passes_batch
from ..scratch import ScratchArena

logger = logging.getLogger(__name__)

REGION_FRAC = 0.8
MIN_FADE = 0.05


def gaussian(rng: np.random.Generator, n: int) -> np.ndarray:
    """Box-Muller standard normal samples."""
    u = 1.0 - rng.random(n)
    v = 1.0 - rng.random(n)
    return np.sqrt(-2.0 * np.log(u)) * np.cos(2.0 * np.pi * v)


def speckle_points(box_w: int, box_h: int, density: float, line_spacing: int,
                   rng: np.random.Generator) -> np.ndarray:
    """(N, 2) integer points of one speckle cloud inside a box_w x box_h box."""
    half_w, half_h = box_w // 2, box_h // 2
    count = int(math.floor(math.pi * half_w * half_h * density))
    if count < 1:
        return np.empty((0, 2), dtype=np.int64)

    sigma_x = box_w * REGION_FRAC / 2.0
    sigma_y = box_h * REGION_FRAC / 2.0
    xs = np.clip(np.round(half_w + gaussian(rng, count) * sigma_x), 0, box_w - 1).astype(np.int64)
    ys = np.clip(np.round(half_h + gaussian(rng, count) * sigma_y), 0, box_h - 1).astype(np.int64)

    keep = np.ones(count, dtype=bool)
    if line_spacing > 1:
        keep &= (ys % line_spacing) == 0

    dx = np.abs(xs - half_w) / float(half_w)
    dy = np.abs(ys - half_h) / float(half_h)
    fade = (1.0 - np.maximum(dx, dy)) ** 2
    keep &= fade >= MIN_FADE

    weight = np.clip(fade + gaussian(rng, count) * 0.1, 0.0, 1.0)
    keep &= rng.random(count) <= weight

    return np.stack([xs[keep], ys[keep]], axis=1)


def smear_length(cx: float, cy: float, width: int, height: int,
                 smear_min: float, smear_max: float) -> float:
    """Blur length, longest at the page center and shortest in the corners."""
    max_dist = math.hypot(width / 2.0, height / 2.0)
    dist = math.hypot(cx - width / 2.0, cy - height / 2.0)
    raw = smear_min + (smear_max - smear_min) * (1.0 - dist / max_dist)
    return min(max(raw, smear_min), smear_max)


def _exclusive_int(rng: np.random.Generator, lo: int, hi: int) -> int:
    if hi <= lo:
        return lo
    return int(rng.integers(lo, hi))


def apply_stripes(cur: Path, arena: ScratchArena, engine: RasterEngine,
                  batch_perc: float, areas: int, area_width: int, area_height: int,
                  density: float, smear: bool = True, smear_min: float = 1.0,
                  smear_max: float = 1.0, direction: Union[str, float] = "random",
                  line_spacing: int = 1, color: Color = BLACK,
                  rng: Optional[np.random.Generator] = None) -> Path:
    """Composite `areas` speckle clusters; returns the input if none drew."""
    rng = ensure_rng(rng)
    if not passes_batch(batch_perc, rng):
        return cur

    w, h = engine.identify(cur)
    bw = max(2, min(int(area_width), w))
    bh = max(2, min(int(area_height), h))
    half_w, half_h = bw // 2, bh // 2

    current = cur
    for a in range(int(areas)):
        cx = _exclusive_int(rng, half_w, w - int(math.ceil(bw / 2.0)))
        cy = _exclusive_int(rng, half_h, h - int(math.ceil(bh / 2.0)))
        x0, y0 = cx - half_w, cy - half_h

        points = speckle_points(bw, bh, density, int(line_spacing), rng)
        if len(points) == 0:
            continue

        script = DrawScript(fill=color)
        for x, y in points:
            script.point(x, y)
        layer_ops = [Draw(script)]
        if smear:
            length = smear_length(cx, cy, w, h, smear_min, smear_max)
            if str(direction).lower() == "random":
                angle = rng.random() * 360.0
            else:
                angle = float(direction)
            layer_ops.append(MotionBlur(round(length, 1), angle))

        out = arena.path_for(f"stripes_blob{a}_comp")
        engine.transform(current, out, [
            Composite(CanvasLayer(bw, bh, TRANSPARENT, tuple(layer_ops)), x0, y0),
        ])
        arena.release(current)
        current = out
        logger.debug("%s: stripes cluster %d at (%d, %d), %d points",
                     arena.name, a, x0, y0, len(script))

    return current
