"""
Degradation effects applied to one working page image.

Every gated effect follows the same contract:

    apply_<effect>(cur, arena, engine, batch_perc, <params>, rng=None) -> Path

- With batch_perc < 1 one uniform draw decides whether the page is affected;
  a skipped page comes back as the same path with no file touched.
- Otherwise the result is written to a new `<name>_<suffix>.png` reserved from
  the arena and the input file is released.
- When nothing visible would change (no blocks, points or clusters) the input
  path is returned and kept.
"""

from .brightness import apply_brightness
from .dropout import apply_dropout
from .noise import apply_white_noise
from .raster import apply_raster
from .rotate import apply_mirror, apply_rotate
from .stripes import apply_stripes
from .stripes_white import apply_stripes_white
from .tileshift import apply_tileshift
from .warp import apply_warp
from . import tone

__all__ = [
    "apply_brightness",
    "apply_dropout",
    "apply_white_noise",
    "apply_raster",
    "apply_mirror",
    "apply_rotate",
    "apply_stripes",
    "apply_stripes_white",
    "apply_tileshift",
    "apply_warp",
    "tone",
]
