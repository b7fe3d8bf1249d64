"""
Brightness effect - lighten the page before it is reduced to black and white.

Options:
    modulate: scale brightness by (100 + min) percent
    level:    remap the black and white points to min% / max%
    overlay:  composite a white sheet whose opacity is min..max percent
"""

import logging
from pathlib import Path
from typing import Optional

import numpy as np

from ..engine import RasterEngine
from ..operations import CanvasLayer, Composite, Level, Modulate
from ..sampling import ensure_rng, passes_batch, randint
from ..scratch import ScratchArena

logger = logging.getLogger(__name__)

BRIGHTNESS_OPTIONS = ("overlay", "modulate", "level")


def brightness_operations(option: str, low: float, high: float,
                          width: int, height: int, rng: np.random.Generator) -> list:
    if option == "modulate":
        return [Modulate(100.0 + float(low))]
    if option == "level":
        return [Level(float(low), float(high))]
    if option == "overlay":
        opacity = randint(rng, int(low), int(high))
        alpha = int(round(opacity * 255 / 100.0))
        return [Composite(CanvasLayer(width, height, (255, 255, 255, alpha)))]
    raise ValueError(f"Unknown brightness option: {option!r}")


def apply_brightness(cur: Path, arena: ScratchArena, engine: RasterEngine,
                     batch_perc: float, option: str = "overlay",
                     low: float = 0, high: float = 0,
                     rng: Optional[np.random.Generator] = None) -> Path:
    rng = ensure_rng(rng)
    if not passes_batch(batch_perc, rng):
        return cur

    w, h = engine.identify(cur)
    ops = brightness_operations(option, low, high, w, h, rng)

    out = arena.path_for("bright")
    engine.transform(cur, out, ops)
    arena.release(cur)
    logger.debug("%s: brightness %s %s", arena.name, option, ops[0])
    return out
