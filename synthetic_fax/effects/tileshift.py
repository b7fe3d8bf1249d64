"""
Tile-shift effect - copies square tiles of the page and pastes them slightly
displaced, like a fax machine that resynchronised mid-line.

Each paste is composited over the image as it stands after the previous
pastes, so later tiles may copy earlier ones.
"""

import logging
from pathlib import Path
from typing import List, Optional

import numpy as np

from ..engine import RasterEngine
from ..operations import CloneCrop, Composite, EnsureAlpha
from ..sampling import ensure_rng, passes_batch, randint
from ..scratch import ScratchArena

logger = logging.getLogger(__name__)


def plan_tiles(width: int, height: int, amount: int, size: int, variation: int,
               offset_x: int, offset_y: int, offset_variation: int,
               rng: np.random.Generator) -> List[Composite]:
    """Clone-and-paste operations for `amount` tiles.

    Tile sizes are clamped to the page; a paste that would run past any edge
    is pulled back inside.
    """
    ops: List[Composite] = []
    for _ in range(int(amount)):
        ts = int(size) + randint(rng, 0, int(variation))
        ts = max(1, min(ts, width, height))

        x = randint(rng, 0, width - ts)
        y = randint(rng, 0, height - ts)
        px = x + int(offset_x) + randint(rng, 0, int(offset_variation))
        py = y + int(offset_y) + randint(rng, 0, int(offset_variation))
        if px + ts > width:
            px = width - ts
        if py + ts > height:
            py = height - ts
        px = max(0, px)
        py = max(0, py)

        ops.append(Composite(CloneCrop((x, y, x + ts, y + ts)), px, py))
    return ops


def apply_tileshift(cur: Path, arena: ScratchArena, engine: RasterEngine,
                    batch_perc: float, amount: int, size: int, variation: int,
                    offset_x: int, offset_y: int, offset_variation: int,
                    rng: Optional[np.random.Generator] = None) -> Path:
    rng = ensure_rng(rng)
    if not passes_batch(batch_perc, rng):
        return cur
    if amount < 1:
        return cur

    w, h = engine.identify(cur)
    tiles = plan_tiles(w, h, amount, size, variation,
                       offset_x, offset_y, offset_variation, rng)

    out = arena.path_for("tiles")
    engine.transform(cur, out, [EnsureAlpha()] + tiles)
    arena.release(cur)
    logger.debug("%s: shifted %d tiles", arena.name, len(tiles))
    return out
