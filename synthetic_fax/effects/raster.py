"""
Raster effect - standalone ordered dither with a selectable threshold map.
"""

import logging
from pathlib import Path
from typing import Optional

import numpy as np

from ..engine import RasterEngine
from ..operations import ORDERED_DITHER_MAPS, OrderedDither
from ..sampling import ensure_rng, passes_batch
from ..scratch import ScratchArena

logger = logging.getLogger(__name__)


def apply_raster(cur: Path, arena: ScratchArena, engine: RasterEngine,
                 batch_perc: float, raster_map: str = "o4x4",
                 rng: Optional[np.random.Generator] = None) -> Path:
    if raster_map not in ORDERED_DITHER_MAPS:
        raise ValueError(f"Unknown ordered dither map: {raster_map!r}")
    rng = ensure_rng(rng)
    if not passes_batch(batch_perc, rng):
        return cur

    out = arena.path_for("raster")
    engine.transform(cur, out, [OrderedDither(raster_map)])
    arena.release(cur)
    logger.debug("%s: ordered dither %s", arena.name, raster_map)
    return out
