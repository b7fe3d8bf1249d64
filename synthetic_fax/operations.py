"""
Named raster operations understood by a RasterEngine.

Operations are plain data: they describe *what* to do to an image, the
engine decides *how*. Any randomness is resolved by the caller before an
operation is built, so the same operation list always yields the same image.

Groups:
    - Geometric: Rotate, Extent, Flip, Flop, Crop, Resize, ShepardsDistort
    - Color/tone: EnsureAlpha, FlattenAlpha, Grayscale, GaussianBlur,
      MotionBlur, Threshold, Modulate, Level
    - Dither: OrderedDither, ErrorDiffusionDither
    - Drawing: Draw (a DrawScript of points and rectangles)
    - Compositing: Composite of a CanvasLayer, MaskLayer or CloneCrop
"""

from dataclasses import dataclass, field
from typing import List, Tuple, Union

import numpy as np


Color = Tuple[int, int, int, int]

WHITE: Color = (255, 255, 255, 255)
BLACK: Color = (0, 0, 0, 255)
TRANSPARENT: Color = (0, 0, 0, 0)


# Draw-script

@dataclass
class DrawScript:
    """Declarative list of drawing primitives rendered onto a canvas.

    Points are single pixels; rectangles are inclusive corner boxes
    (x0, y0, x1, y1), matching how the fax artifacts are specified.
    """
    fill: Color = WHITE
    points: List[Tuple[int, int]] = field(default_factory=list)
    rectangles: List[Tuple[int, int, int, int]] = field(default_factory=list)

    def point(self, x: int, y: int) -> "DrawScript":
        self.points.append((int(x), int(y)))
        return self

    def rectangle(self, x0: int, y0: int, x1: int, y1: int) -> "DrawScript":
        self.rectangles.append((int(x0), int(y0), int(x1), int(y1)))
        return self

    def __len__(self) -> int:
        return len(self.points) + len(self.rectangles)


# Geometric

@dataclass(frozen=True)
class Rotate:
    """Rotate clockwise about the center, keeping the canvas size."""
    degrees: float
    background: Color = WHITE


@dataclass(frozen=True)
class Extent:
    """Place the image on a width x height canvas (centered)."""
    width: int
    height: int
    background: Color = WHITE


@dataclass(frozen=True)
class Flip:
    """Mirror top to bottom."""


@dataclass(frozen=True)
class Flop:
    """Mirror left to right."""


@dataclass(frozen=True)
class Crop:
    """Crop to box (left, top, right, bottom)."""
    box: Tuple[int, int, int, int]


@dataclass(frozen=True)
class Resize:
    width: int
    height: int


@dataclass(frozen=True)
class ShepardsDistort:
    """Inverse-distance weighted warp driven by (source, destination) pairs."""
    control_points: Tuple[Tuple[Tuple[float, float], Tuple[float, float]], ...]
    power: float = 2.0


# Color / tone

@dataclass(frozen=True)
class EnsureAlpha:
    """Add an opaque alpha channel when missing."""


@dataclass(frozen=True)
class FlattenAlpha:
    """Remove transparency by flattening onto a background."""
    background: Color = WHITE


@dataclass(frozen=True)
class Grayscale:
    pass


@dataclass(frozen=True)
class GaussianBlur:
    sigma: float


@dataclass(frozen=True)
class MotionBlur:
    """Directional one-sided blur; angle in degrees, 0 = to the right."""
    sigma: float
    angle: float


@dataclass(frozen=True)
class Threshold:
    """Values above percent of full scale become white, the rest black."""
    percent: float


@dataclass(frozen=True)
class Modulate:
    """Scale brightness; 100 leaves the image unchanged."""
    brightness: float


@dataclass(frozen=True)
class Level:
    """Remap black/white points given in percent of full scale."""
    black_point: float
    white_point: float


# Dither

@dataclass(frozen=True)
class OrderedDither:
    """Ordered (threshold map) dither to two levels per channel."""
    map_name: str = "o4x4"


@dataclass(frozen=True)
class ErrorDiffusionDither:
    """Reduce to `colors` gray levels with the given diffusion method."""
    method: str = "FloydSteinberg"
    colors: int = 2


# Drawing

@dataclass(frozen=True)
class Draw:
    script: DrawScript


# Compositing

@dataclass(frozen=True)
class CanvasLayer:
    """A fresh width x height canvas filled with color, then operations."""
    width: int
    height: int
    color: Color = TRANSPARENT
    operations: Tuple = ()


@dataclass(frozen=True, eq=False)
class MaskLayer:
    """Solid color whose alpha channel is the given (H, W) uint8 mask."""
    mask: np.ndarray
    color: Color = WHITE


@dataclass(frozen=True)
class CloneCrop:
    """A crop of the image being transformed, as it is at that point."""
    box: Tuple[int, int, int, int]


@dataclass(frozen=True)
class Composite:
    """Compose `layer` over the image at offset (x, y)."""
    layer: Union[CanvasLayer, MaskLayer, CloneCrop]
    x: int = 0
    y: int = 0


Operation = Union[
    Rotate, Extent, Flip, Flop, Crop, Resize, ShepardsDistort,
    EnsureAlpha, FlattenAlpha, Grayscale, GaussianBlur, MotionBlur,
    Threshold, Modulate, Level, OrderedDither, ErrorDiffusionDither,
    Draw, Composite,
]

ORDERED_DITHER_MAPS = ("threshold", "checks", "o2x2", "o3x3", "o4x4", "o8x8")
DIFFUSION_METHODS = ("FloydSteinberg", "None")
