"""
Raster engine - the single image transform primitive of the pipeline.

Every effect talks to the engine through a narrow interface:
    - identify:     pixel dimensions of an image file
    - transform:    fold a list of named operations over one image and write
                    exactly one output file (inputs are never deleted here)
    - content_box:  bounding box of the non-transparent content
    - page_count / rasterize: turn a source document into working pages
    - compress:     write the final 1-bit fax TIFF

PillowEngine implements the interface in-process with Pillow, numpy and
OpenCV. Another engine (for example one driving an external CLI) only has to
understand the operations in `operations.py`.
"""

import logging
import math
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np
from PIL import Image, ImageDraw, ImageEnhance, ImageFilter

from .exceptions import RenderError, TransformError
from .operations import (
    CanvasLayer, CloneCrop, Color, Composite, Crop, Draw, EnsureAlpha,
    ErrorDiffusionDither, Extent, FlattenAlpha, Flip, Flop, GaussianBlur,
    Grayscale, Level, MaskLayer, Modulate, MotionBlur, Operation, OrderedDither,
    Resize, Rotate, ShepardsDistort, Threshold,
)

logger = logging.getLogger(__name__)

Box = Tuple[int, int, int, int]

# Ordered dither threshold maps (values are ranks, normalised on use)
_BAYER_2 = np.array([[0, 2], [3, 1]])
_DITHER_MAPS: Dict[str, np.ndarray] = {
    "threshold": np.array([[0]]),
    "checks": np.array([[0, 1], [1, 0]]),
    "o2x2": _BAYER_2,
    "o3x3": np.array([[2, 6, 4], [5, 0, 1], [8, 3, 7]]),
    "o4x4": np.array([[0, 8, 2, 10], [12, 4, 14, 6], [3, 11, 1, 9], [15, 7, 13, 5]]),
}


def _bayer(n: int) -> np.ndarray:
    """Recursive Bayer matrix of size n x n (n a power of two)."""
    if n == 2:
        return _BAYER_2
    half = _bayer(n // 2)
    return np.block([
        [4 * half, 4 * half + 2],
        [4 * half + 3, 4 * half + 1],
    ])


_DITHER_MAPS["o8x8"] = _bayer(8)

_COMPRESSION = {
    "group4": "group4",
    "zip": "tiff_adobe_deflate",
}


def _has_alpha(img: Image.Image) -> bool:
    return img.mode in ("LA", "RGBA")


def _normalize_mode(img: Image.Image) -> Image.Image:
    """Reduce every input to one of L, LA, RGB, RGBA."""
    if img.mode in ("L", "LA", "RGB", "RGBA"):
        return img
    if img.mode == "1":
        return img.convert("L")
    if img.mode == "P" and "transparency" in img.info:
        return img.convert("RGBA")
    if img.mode in ("I;16", "I;16B", "I;16L", "I"):
        arr = np.array(img, dtype=np.float64)
        peak = arr.max() if arr.size and arr.max() > 255 else 255.0
        return Image.fromarray(np.clip(arr / peak * 255.0, 0, 255).astype(np.uint8), "L")
    return img.convert("RGB")


def _fill_for(img: Image.Image, color: Color):
    """Express an RGBA color in the image's own mode."""
    r, g, b, a = color
    if img.mode == "RGBA":
        return (r, g, b, a)
    if img.mode == "RGB":
        return (r, g, b)
    lum = int(round(0.299 * r + 0.587 * g + 0.114 * b))
    if img.mode == "LA":
        return (lum, a)
    return lum


def _place(canvas: Image.Image, overlay: Image.Image, x: int, y: int) -> None:
    """Compose RGBA overlay over RGBA canvas at (x, y), clipping to the canvas."""
    cw, ch = canvas.size
    ow, oh = overlay.size
    left, top = max(0, x), max(0, y)
    right, bottom = min(cw, x + ow), min(ch, y + oh)
    if right <= left or bottom <= top:
        return
    visible = overlay.crop((left - x, top - y, right - x, bottom - y))
    canvas.alpha_composite(visible, dest=(left, top))


class RasterEngine(ABC):
    """Interface every raster backend implements."""

    @abstractmethod
    def identify(self, path: Path) -> Tuple[int, int]:
        """Return (width, height) of an image file."""

    @abstractmethod
    def transform(self, src: Path, dst: Path, operations: Sequence[Operation]) -> Path:
        """Apply operations to src and write the result to dst."""

    @abstractmethod
    def content_box(self, path: Path) -> Box:
        """Bounding box (left, top, right, bottom) of non-transparent content."""

    @abstractmethod
    def page_count(self, source: Path) -> int:
        """Number of pages in a source document."""

    @abstractmethod
    def rasterize(self, source: Path, dst: Path, density: Optional[int] = None,
                  page: int = 0) -> Path:
        """Render one page of a source document to a working image."""

    @abstractmethod
    def compress(self, pages: Sequence[Path], dst: Path, scheme: str = "group4",
                 dpi: Optional[int] = None) -> Path:
        """Write pages as a 1-bit TIFF using the given compression scheme."""


class PillowEngine(RasterEngine):
    """In-process engine built on Pillow, numpy and OpenCV."""

    def __init__(self):
        self._handlers: Dict[type, Callable[[Image.Image, object], Image.Image]] = {
            Rotate: self._rotate,
            Extent: self._extent,
            Flip: self._flip,
            Flop: self._flop,
            Crop: self._crop,
            Resize: self._resize,
            ShepardsDistort: self._shepards,
            EnsureAlpha: self._ensure_alpha,
            FlattenAlpha: self._flatten_alpha,
            Grayscale: self._grayscale,
            GaussianBlur: self._gaussian_blur,
            MotionBlur: self._motion_blur,
            Threshold: self._threshold,
            Modulate: self._modulate,
            Level: self._level,
            OrderedDither: self._ordered_dither,
            ErrorDiffusionDither: self._error_diffusion,
            Draw: self._draw,
            Composite: self._composite,
        }

    # I/O

    def _open(self, path: Path) -> Image.Image:
        try:
            with Image.open(path) as im:
                im.load()
                return _normalize_mode(im.copy())
        except (OSError, ValueError) as e:
            raise TransformError(f"Cannot read image: {e}", source=str(path)) from e

    def _save(self, img: Image.Image, dst: Path, source: Path) -> None:
        dst = Path(dst)
        try:
            dst.parent.mkdir(parents=True, exist_ok=True)
            img.save(dst, format="PNG")
        except (OSError, ValueError) as e:
            dst.unlink(missing_ok=True)
            raise TransformError(f"Cannot write {dst}: {e}", source=str(source)) from e

    def identify(self, path: Path) -> Tuple[int, int]:
        try:
            with Image.open(path) as im:
                return im.size
        except (OSError, ValueError) as e:
            raise TransformError(f"Cannot identify image: {e}", source=str(path)) from e

    def load(self, path: Path) -> Image.Image:
        """Open an image as a detached in-memory copy."""
        return self._open(Path(path))

    def transform(self, src: Path, dst: Path, operations: Sequence[Operation]) -> Path:
        logger.debug("transform %s -> %s [%s]", Path(src).name, Path(dst).name,
                     ", ".join(type(op).__name__ for op in operations))
        img = self._open(Path(src))
        for op in operations:
            img = self.apply(img, op, source=src)
        self._save(img, Path(dst), Path(src))
        return Path(dst)

    def apply(self, img: Image.Image, op, source: Optional[Path] = None) -> Image.Image:
        """Apply a single operation to an in-memory image."""
        handler = self._handlers.get(type(op))
        name = type(op).__name__
        if handler is None:
            raise TransformError(f"Unsupported operation {name}",
                                 source=str(source) if source else None, operation=name)
        try:
            return handler(img, op)
        except TransformError:
            raise
        except (OSError, ValueError, TypeError, cv2.error) as e:
            raise TransformError(f"{name} failed: {e}",
                                 source=str(source) if source else None, operation=name) from e

    def content_box(self, path: Path) -> Box:
        img = self._open(Path(path))
        if _has_alpha(img):
            bbox = img.getchannel("A").getbbox()
            if bbox:
                return bbox
        return (0, 0, img.width, img.height)

    def page_count(self, source: Path) -> int:
        try:
            with Image.open(source) as im:
                return getattr(im, "n_frames", 1)
        except (OSError, ValueError) as e:
            raise RenderError(f"Cannot open source document: {e}", source=str(source)) from e

    def rasterize(self, source: Path, dst: Path, density: Optional[int] = None,
                  page: int = 0) -> Path:
        try:
            with Image.open(source) as im:
                im.seek(page)
                im.load()
                src_dpi = im.info.get("dpi")
                frame = _normalize_mode(im.copy())
        except (OSError, ValueError, EOFError) as e:
            raise RenderError(f"Cannot rasterize page {page}: {e}", source=str(source)) from e

        if density and src_dpi and src_dpi[0]:
            scale = float(density) / float(src_dpi[0])
            if abs(scale - 1.0) > 1e-3:
                size = (max(1, round(frame.width * scale)), max(1, round(frame.height * scale)))
                frame = frame.resize(size, Image.Resampling.LANCZOS)

        dst = Path(dst)
        try:
            dst.parent.mkdir(parents=True, exist_ok=True)
            if density:
                frame.save(dst, format="PNG", dpi=(density, density))
            else:
                frame.save(dst, format="PNG")
        except (OSError, ValueError) as e:
            dst.unlink(missing_ok=True)
            raise RenderError(f"Cannot write {dst}: {e}", source=str(source)) from e
        return dst

    def compress(self, pages: Sequence[Path], dst: Path, scheme: str = "group4",
                 dpi: Optional[int] = None) -> Path:
        if scheme not in _COMPRESSION:
            raise TransformError(f"Unknown compression scheme {scheme!r}", operation="compress")
        if not pages:
            raise TransformError("Nothing to compress", operation="compress")

        frames: List[Image.Image] = []
        for page in pages:
            img = self._open(Path(page))
            if _has_alpha(img):
                img = self._flatten_alpha(img, FlattenAlpha())
            frames.append(img.convert("L").convert("1", dither=Image.Dither.NONE))

        dst = Path(dst)
        params = {"compression": _COMPRESSION[scheme]}
        if dpi:
            params["dpi"] = (dpi, dpi)
        try:
            dst.parent.mkdir(parents=True, exist_ok=True)
            frames[0].save(dst, format="TIFF", save_all=True,
                           append_images=frames[1:], **params)
        except (OSError, ValueError) as e:
            dst.unlink(missing_ok=True)
            raise TransformError(f"Cannot write {dst}: {e}",
                                 source=str(pages[0]), operation="compress") from e
        return dst

    # Geometric

    def _rotate(self, img: Image.Image, op: Rotate) -> Image.Image:
        # Pillow rotates counter-clockwise
        return img.rotate(-op.degrees, resample=Image.Resampling.BICUBIC,
                          expand=False, fillcolor=_fill_for(img, op.background))

    def _extent(self, img: Image.Image, op: Extent) -> Image.Image:
        x = (op.width - img.width) // 2
        y = (op.height - img.height) // 2
        if _has_alpha(img) or op.background[3] < 255:
            mode = img.mode
            canvas = Image.new("RGBA", (op.width, op.height), op.background)
            _place(canvas, img.convert("RGBA"), x, y)
            if mode == "LA":
                return canvas.convert("LA")
            if mode in ("L", "RGB") and op.background[3] == 255:
                return canvas.convert(mode)
            return canvas
        canvas = Image.new(img.mode, (op.width, op.height), _fill_for(img, op.background))
        canvas.paste(img, (x, y))
        return canvas

    def _flip(self, img: Image.Image, op: Flip) -> Image.Image:
        return img.transpose(Image.Transpose.FLIP_TOP_BOTTOM)

    def _flop(self, img: Image.Image, op: Flop) -> Image.Image:
        return img.transpose(Image.Transpose.FLIP_LEFT_RIGHT)

    def _crop(self, img: Image.Image, op: Crop) -> Image.Image:
        return img.crop(op.box)

    def _resize(self, img: Image.Image, op: Resize) -> Image.Image:
        size = (max(1, int(op.width)), max(1, int(op.height)))
        if size == img.size:
            return img
        return img.resize(size, Image.Resampling.LANCZOS)

    def _shepards(self, img: Image.Image, op: ShepardsDistort) -> Image.Image:
        """Reverse-map every output pixel through an inverse-distance weighted
        displacement field.

        The field is evaluated at every pixel so that a destination control
        point samples exactly its source point.
        """
        img = img.convert("RGBA")
        if not op.control_points:
            return img
        w, h = img.size
        gx, gy = np.meshgrid(np.arange(w, dtype=np.float64),
                             np.arange(h, dtype=np.float64), indexing="xy")

        num_x = np.zeros_like(gx)
        num_y = np.zeros_like(gy)
        den = np.zeros_like(gx)
        for (sx, sy), (dx, dy) in op.control_points:
            d2 = np.maximum((gx - dx) ** 2 + (gy - dy) ** 2, 1e-9)
            weight = 1.0 / d2 ** (op.power / 2.0)
            num_x += weight * (sx - dx)
            num_y += weight * (sy - dy)
            den += weight

        map_x = (gx + num_x / den).astype(np.float32)
        map_y = (gy + num_y / den).astype(np.float32)

        warped = cv2.remap(np.ascontiguousarray(np.array(img)), map_x, map_y,
                           interpolation=cv2.INTER_LINEAR,
                           borderMode=cv2.BORDER_CONSTANT, borderValue=(0, 0, 0, 0))
        return Image.fromarray(warped, "RGBA")

    # Color / tone

    def _ensure_alpha(self, img: Image.Image, op: EnsureAlpha) -> Image.Image:
        if img.mode == "L":
            return img.convert("LA")
        if img.mode == "RGB":
            return img.convert("RGBA")
        return img

    def _flatten_alpha(self, img: Image.Image, op: FlattenAlpha) -> Image.Image:
        if not _has_alpha(img):
            return img
        target = "L" if img.mode == "LA" else "RGB"
        canvas = Image.new("RGBA", img.size, op.background)
        canvas.alpha_composite(img.convert("RGBA"))
        return canvas.convert(target)

    def _grayscale(self, img: Image.Image, op: Grayscale) -> Image.Image:
        return img.convert("LA" if _has_alpha(img) else "L")

    def _gaussian_blur(self, img: Image.Image, op: GaussianBlur) -> Image.Image:
        if op.sigma <= 0:
            return img
        return img.filter(ImageFilter.GaussianBlur(radius=op.sigma))

    def _motion_blur(self, img: Image.Image, op: MotionBlur) -> Image.Image:
        if op.sigma <= 0:
            return img
        reach = max(1, int(math.ceil(3 * op.sigma)))
        size = 2 * reach + 1
        kernel = np.zeros((size, size), dtype=np.float32)
        rad = math.radians(op.angle)
        for t in range(reach + 1):
            kx = reach + int(round(t * math.cos(rad)))
            ky = reach + int(round(t * math.sin(rad)))
            kernel[ky, kx] += math.exp(-(t * t) / (2.0 * op.sigma * op.sigma))
        kernel /= kernel.sum()

        rgba = np.array(img.convert("RGBA"), dtype=np.float32)
        alpha = rgba[..., 3:4] / 255.0
        premul = rgba[..., :3] * alpha
        blurred_rgb = cv2.filter2D(premul, -1, kernel, borderType=cv2.BORDER_CONSTANT)
        blurred_a = cv2.filter2D(alpha[..., 0], -1, kernel, borderType=cv2.BORDER_CONSTANT)
        safe = np.where(blurred_a > 1e-6, blurred_a, 1.0)[..., None]
        out = np.empty_like(rgba)
        out[..., :3] = blurred_rgb / safe
        out[..., 3] = blurred_a * 255.0
        out = np.clip(np.rint(out), 0, 255).astype(np.uint8)
        result = Image.fromarray(out, "RGBA")
        return result if img.mode == "RGBA" else result.convert(img.mode)

    def _color_bands(self, img: Image.Image) -> int:
        return {"L": 1, "LA": 1, "RGB": 3, "RGBA": 3}[img.mode]

    def _map_color(self, img: Image.Image, fn: Callable[[np.ndarray], np.ndarray]) -> Image.Image:
        """Run fn over the color bands only, leaving alpha untouched."""
        arr = np.array(img)
        bands = self._color_bands(img)
        if arr.ndim == 2:
            out = fn(arr.astype(np.float32))
        else:
            out = arr.astype(np.float32)
            out[..., :bands] = fn(out[..., :bands])
        return Image.fromarray(np.clip(np.rint(out), 0, 255).astype(np.uint8), img.mode)

    def _threshold(self, img: Image.Image, op: Threshold) -> Image.Image:
        cut = op.percent / 100.0 * 255.0
        return self._map_color(img, lambda a: np.where(a > cut, 255.0, 0.0))

    def _modulate(self, img: Image.Image, op: Modulate) -> Image.Image:
        return ImageEnhance.Brightness(img).enhance(op.brightness / 100.0)

    def _level(self, img: Image.Image, op: Level) -> Image.Image:
        lo = op.black_point / 100.0 * 255.0
        hi = op.white_point / 100.0 * 255.0
        if hi <= lo:
            return self._map_color(img, lambda a: np.where(a > lo, 255.0, 0.0))
        return self._map_color(img, lambda a: (a - lo) * (255.0 / (hi - lo)))

    # Dither

    def _ordered_dither(self, img: Image.Image, op: OrderedDither) -> Image.Image:
        ranks = _DITHER_MAPS.get(op.map_name)
        if ranks is None:
            raise TransformError(f"Unknown dither map {op.map_name!r}", operation="OrderedDither")
        cells = ranks.size
        thresholds = (ranks.astype(np.float32) + 0.5) / cells * 255.0
        h, w = img.height, img.width
        reps = (math.ceil(h / ranks.shape[0]), math.ceil(w / ranks.shape[1]))
        tiled = np.tile(thresholds, reps)[:h, :w]

        def dither(a: np.ndarray) -> np.ndarray:
            t = tiled if a.ndim == 2 else tiled[..., None]
            return np.where(a > t, 255.0, 0.0)

        return self._map_color(img, dither)

    def _error_diffusion(self, img: Image.Image, op: ErrorDiffusionDither) -> Image.Image:
        if op.method == "FloydSteinberg":
            dither = Image.Dither.FLOYDSTEINBERG
        elif op.method == "None":
            dither = Image.Dither.NONE
        else:
            raise TransformError(f"Unknown dither method {op.method!r}",
                                 operation="ErrorDiffusionDither")
        alpha = img.getchannel("A") if _has_alpha(img) else None
        gray = img.convert("L")
        colors = max(2, int(op.colors))
        if colors == 2:
            out = gray.convert("1", dither=dither).convert("L")
        else:
            levels = np.linspace(0, 255, colors).round().astype(int)
            palette = Image.new("P", (1, 1))
            palette.putpalette([int(v) for level in levels for v in (level, level, level)])
            out = gray.convert("RGB").quantize(palette=palette, dither=dither).convert("L")
        if alpha is not None:
            out.putalpha(alpha)
        return out

    # Drawing

    def _draw(self, img: Image.Image, op: Draw) -> Image.Image:
        script = op.script
        draw = ImageDraw.Draw(img)
        fill = _fill_for(img, script.fill)
        if script.points:
            draw.point(script.points, fill=fill)
        for rect in script.rectangles:
            draw.rectangle(rect, fill=fill)
        return img

    # Compositing

    def _layer(self, img: Image.Image, layer) -> Image.Image:
        if isinstance(layer, CanvasLayer):
            canvas = Image.new("RGBA", (layer.width, layer.height), layer.color)
            for op in layer.operations:
                canvas = self.apply(canvas, op)
            return canvas.convert("RGBA")
        if isinstance(layer, MaskLayer):
            mask = np.asarray(layer.mask, dtype=np.uint8)
            canvas = Image.new("RGBA", (mask.shape[1], mask.shape[0]), layer.color)
            if layer.color[3] < 255:
                mask = (mask.astype(np.uint16) * layer.color[3] // 255).astype(np.uint8)
            canvas.putalpha(Image.fromarray(mask, "L"))
            return canvas
        if isinstance(layer, CloneCrop):
            return img.crop(layer.box).convert("RGBA")
        raise TransformError(f"Unsupported layer {type(layer).__name__}", operation="Composite")

    def _composite(self, img: Image.Image, op: Composite) -> Image.Image:
        overlay = self._layer(img, op.layer)
        mode = img.mode
        base = img.convert("RGBA")
        _place(base, overlay, op.x, op.y)
        return base if mode == "RGBA" else base.convert(mode)
