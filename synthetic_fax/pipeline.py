"""
Fax Pipeline - orchestrates the degradation stages for a batch of documents.

Stage order per page:
    render -> warp -> rotate [-> mirror] -> white stripes -> brightness ->
    alpha flatten -> grayscale -> blur -> black stripes -> rasterization ->
    error-diffusion dither -> white noise -> standalone raster ->
    final threshold -> dropout -> tile shift
and then all pages of the document are compressed into one TIFF.

Features:
    - Single probability gate per stage (inside the effect)
    - One seedable random generator threaded through every stage
    - Debug session for the first document: forced application, fixed values,
      per-stage snapshots and log lines (minus excluded stages)
    - Scratch arenas so no intermediate outlives its document, even on error
    - Batch tallies with optional keep-going on failures
"""

import logging
import shutil
import tempfile
from collections import Counter
from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

import numpy as np
from tqdm import tqdm

from .config import PipelineConfig
from .effects import (
    apply_brightness, apply_dropout, apply_mirror, apply_raster, apply_rotate,
    apply_stripes, apply_stripes_white, apply_tileshift, apply_warp, apply_white_noise,
    tone,
)
from .engine import PillowEngine, RasterEngine
from .exceptions import FaxSimError
from .sampling import make_rng, pick_param, sample
from .scratch import ScratchArena

logger = logging.getLogger(__name__)

SOURCE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".tif", ".tiff", ".bmp")

StageResult = Tuple[Path, Optional[Dict]]


@dataclass
class RunContext:
    """Per-document run state handed to every stage."""
    is_debug_run: bool = False
    excluded_stages: Set[str] = field(default_factory=set)
    debug_dir: Optional[Path] = None

    def traces(self, stage: str) -> bool:
        """Whether this stage gets a snapshot and a log line."""
        return self.is_debug_run and stage.lower() not in self.excluded_stages


@dataclass
class DocumentResult:
    source: Path
    output: Path
    stages: List[str] = field(default_factory=list)
    pages: int = 1


@dataclass
class BatchStats:
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    results: List[DocumentResult] = field(default_factory=list)
    errors: List[Tuple[Path, str]] = field(default_factory=list)


def collect_sources(src_dir: Union[str, Path]) -> List[Path]:
    """Raster sources in a directory, sorted by name."""
    src_dir = Path(src_dir)
    return sorted(p for p in src_dir.iterdir()
                  if p.is_file() and p.suffix.lower() in SOURCE_EXTENSIONS)


def output_names(sources: Iterable[Path]) -> List[str]:
    """Output base names for a batch, one per source.

    Sources sharing a stem (`a.png`, `a.tif`) get their extension appended.
    """
    sources = [Path(s) for s in sources]
    counts = Counter(s.stem.lower() for s in sources)
    names: List[str] = []
    taken: Set[str] = set()
    for source in sources:
        name = source.stem
        if counts[name.lower()] > 1:
            name = f"{name}_{source.suffix.lstrip('.').lower()}"
            logger.warning("%s shares its name with another source; writing %s.tif",
                           source.name, name)
        base, n = name, 2
        while name.lower() in taken:
            name = f"{base}_{n}"
            n += 1
        taken.add(name.lower())
        names.append(name)
    return names


class FaxPipeline:
    """Runs source pages through the configured degradation stages."""

    def __init__(self, config: PipelineConfig, engine: Optional[RasterEngine] = None,
                 output_dir: Union[str, Path] = "output/tiff",
                 tmp_dir: Optional[Union[str, Path]] = None,
                 seed: Optional[int] = None,
                 rng: Optional[np.random.Generator] = None):
        self.config = config
        self.engine = engine or PillowEngine()
        self.output_dir = Path(output_dir)
        self.tmp_dir = Path(tmp_dir) if tmp_dir else Path(tempfile.gettempdir()) / "synthetic_fax"
        self.rng = rng if rng is not None else make_rng(seed)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        self._stages: List[Tuple[str, Callable[..., StageResult]]] = [
            ("warp", self._warp),
            ("rotate", self._rotate),
            ("rotatemirror", self._mirror),
            ("stripesw", self._stripes_white),
            ("brightness", self._brightness),
            ("alpha", self._alpha),
            ("gray", self._gray),
            ("blur", self._blur),
            ("stripes", self._stripes),
            ("rasterization", self._rasterization),
            ("dither", self._dither),
            ("noisew", self._noise),
            ("rastereffect", self._raster_effect),
            ("finalthreshold", self._threshold),
            ("dropout", self._dropout),
            ("tileshift", self._tileshift),
        ]

    # Context

    def make_context(self, first: bool) -> RunContext:
        debug = self.config.debug
        if not (debug.enabled and first):
            return RunContext()
        debug_dir = Path(debug.debug_dir) if debug.debug_dir else self.output_dir / "debugPic"
        debug_dir.mkdir(parents=True, exist_ok=True)
        return RunContext(True, debug.excluded_stages, debug_dir)

    def _batch(self, ctx: RunContext, batch_perc: float) -> float:
        return 1.0 if ctx.is_debug_run else batch_perc

    def _trace(self, ctx: RunContext, stage: str, cur: Path, name: str,
               params: Dict) -> None:
        if not ctx.traces(stage):
            return
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        snap = ctx.debug_dir / f"{name}_{stage}_{stamp}{cur.suffix}"
        shutil.copyfile(cur, snap)
        details = ", ".join(f"{k}={v}" for k, v in params.items())
        logger.info("[debug][%s] %s: %s", stage, name, details)
        logger.info("[debug][%s] snapshot -> %s", stage, snap)

    # Documents

    def process_document(self, source: Union[str, Path],
                         ctx: Optional[RunContext] = None,
                         name: Optional[str] = None) -> DocumentResult:
        """Degrade every page of `source` and write `<name>.tif`.

        `name` defaults to the source stem.
        """
        source = Path(source)
        ctx = ctx or RunContext()
        name = name or source.stem
        output = self.output_dir / f"{name}.tif"
        result = DocumentResult(source=source, output=output)

        pages = self.engine.page_count(source)
        result.pages = pages
        with ExitStack() as stack:
            finals: List[Tuple[ScratchArena, Path]] = []
            for page in range(pages):
                page_name = name if pages == 1 else f"{name}_p{page + 1}"
                arena = stack.enter_context(ScratchArena(self.tmp_dir, page_name))
                cur = self._process_page(source, page, arena, ctx, result.stages)
                finals.append((arena, cur))

            compress = self.config.compress
            self.engine.compress([cur for _, cur in finals], output,
                                 scheme=compress.scheme,
                                 dpi=self.config.render.output_resolution)
            if ctx.traces("compress"):
                self._trace(ctx, "compress", output, name, {"scheme": compress.scheme})
            for arena, cur in finals:
                arena.release(cur)

        logger.debug("Converted %s -> %s (%s)", source.name, output.name, ", ".join(result.stages))
        return result

    def _process_page(self, source: Path, page: int, arena: ScratchArena,
                      ctx: RunContext, ran: List[str]) -> Path:
        resolution = self.config.render.resolution
        cur = self.engine.rasterize(source, arena.path_for("base"),
                                    density=resolution, page=page)
        self._trace(ctx, "render", cur, arena.name, {"density": resolution, "page": page})

        page_ran: List[str] = []
        for token, handler in self._stages:
            new, params = handler(cur, arena, ctx, page_ran)
            if params is None:
                continue
            if new != cur:
                page_ran.append(token)
            cur = new
            self._trace(ctx, token, cur, arena.name, params)

        for token in page_ran:
            if token not in ran:
                ran.append(token)
        return cur

    def run_batch(self, sources: Iterable[Union[str, Path]], halt_on_error: bool = True,
                  progress: bool = True) -> BatchStats:
        """Process documents one at a time; the first one is the debug run."""
        sources = [Path(s) for s in sources]
        names = output_names(sources)
        stats = BatchStats(total=len(sources))

        for index, source in enumerate(tqdm(sources, desc="faxsim", disable=not progress)):
            ctx = self.make_context(first=(index == 0))
            try:
                stats.results.append(self.process_document(source, ctx, names[index]))
                stats.succeeded += 1
            except (FaxSimError, OSError) as e:
                stats.failed += 1
                stats.errors.append((source, str(e)))
                if halt_on_error:
                    logger.error("Stopping batch at %s: %s", source.name, e)
                    raise
                logger.error("Failed %s: %s", source.name, e)
        return stats

    # Stages. Each returns (path, params) or (cur, None) when disabled.

    def _warp(self, cur, arena, ctx, ran) -> StageResult:
        cfg = self.config.warp
        if not cfg.enabled:
            return cur, None
        offset = cfg.offset if ctx.is_debug_run else (cfg.offset_min, cfg.offset_max)
        cur = apply_warp(cur, arena, self.engine, self._batch(ctx, cfg.batch_perc),
                         offset, cfg.final_scale, rng=self.rng)
        return cur, {"offsetPx": offset, "finalScale": cfg.final_scale}

    def _rotate(self, cur, arena, ctx, ran) -> StageResult:
        cfg = self.config.rotate
        if not cfg.enabled:
            return cur, None
        cur = apply_rotate(cur, arena, self.engine, self._batch(ctx, cfg.batch_perc),
                           (cfg.min, cfg.max), rng=self.rng)
        return cur, {"min": cfg.min, "max": cfg.max}

    def _mirror(self, cur, arena, ctx, ran) -> StageResult:
        cfg = self.config.rotate
        # mirroring only follows an applied rotation
        if not (cfg.enabled and cfg.mirror) or "rotate" not in ran:
            return cur, None
        cur = apply_mirror(cur, arena, self.engine, self._batch(ctx, cfg.mirror_batch_perc),
                           cfg.mirror_modes, rng=self.rng)
        return cur, {"modes": ",".join(cfg.mirror_modes)}

    def _stripes_white(self, cur, arena, ctx, ran) -> StageResult:
        cfg = self.config.stripes_white
        if not cfg.enabled:
            return cur, None
        cur = apply_stripes_white(
            cur, arena, self.engine, self._batch(ctx, cfg.batch_perc),
            cfg.amount, cfg.thick_min, cfg.thick_max, cfg.spacing_min, cfg.spacing_max,
            cfg.direction, cfg.distort_size, cfg.distort, rng=self.rng,
        )
        return cur, {"amount": cfg.amount, "dir": cfg.direction, "distort": cfg.distort}

    def _brightness(self, cur, arena, ctx, ran) -> StageResult:
        cfg = self.config.brightness
        if not cfg.enabled:
            return cur, None
        cur = apply_brightness(cur, arena, self.engine, self._batch(ctx, cfg.batch_perc),
                               cfg.option, cfg.min, cfg.max, rng=self.rng)
        return cur, {"option": cfg.option, "min": cfg.min, "max": cfg.max}

    def _alpha(self, cur, arena, ctx, ran) -> StageResult:
        if not self.config.tone.alpha:
            return cur, None
        return tone.flatten_alpha(cur, arena, self.engine), {"background": "white"}

    def _gray(self, cur, arena, ctx, ran) -> StageResult:
        if not self.config.tone.gray:
            return cur, None
        return tone.to_grayscale(cur, arena, self.engine), {}

    def _blur(self, cur, arena, ctx, ran) -> StageResult:
        cfg = self.config.blur
        if not cfg.enabled:
            return cur, None
        radius = sample(pick_param(cfg.radius, cfg.rad_min, cfg.rad_max, self.rng,
                                   share=cfg.batch_perc, pinned=ctx.is_debug_run), self.rng)
        return tone.blur(cur, arena, self.engine, radius), {"radius": round(radius, 3)}

    def _stripes(self, cur, arena, ctx, ran) -> StageResult:
        cfg = self.config.stripes
        if not cfg.enabled:
            return cur, None
        density = sample(pick_param(cfg.density, cfg.density_min, cfg.density_max, self.rng,
                                    pinned=ctx.is_debug_run), self.rng)
        cur = apply_stripes(
            cur, arena, self.engine, self._batch(ctx, cfg.batch_perc),
            cfg.areas, cfg.area_width, cfg.area_height, density,
            smear=cfg.smear, smear_min=cfg.smear_min, smear_max=cfg.smear_max,
            direction=cfg.direction, line_spacing=cfg.line_spacing, rng=self.rng,
        )
        return cur, {"density": round(density, 4), "areas": cfg.areas}

    def _rasterization(self, cur, arena, ctx, ran) -> StageResult:
        cfg = self.config.rasterization
        if not cfg.enabled:
            return cur, None
        return tone.rasterize(cur, arena, self.engine, cfg.raster_map), {"map": cfg.raster_map}

    def _dither(self, cur, arena, ctx, ran) -> StageResult:
        cfg = self.config.dither
        if not cfg.enabled:
            return cur, None
        cur = tone.diffuse(cur, arena, self.engine, cfg.method, cfg.colors)
        return cur, {"method": cfg.method, "colors": cfg.colors}

    def _noise(self, cur, arena, ctx, ran) -> StageResult:
        cfg = self.config.noise
        if not cfg.enabled:
            return cur, None
        density = sample(pick_param(cfg.density, cfg.density_min, cfg.density_max, self.rng,
                                    pinned=ctx.is_debug_run), self.rng)
        cur = apply_white_noise(cur, arena, self.engine, self._batch(ctx, cfg.batch_perc),
                                density, rng=self.rng)
        return cur, {"density": round(density, 4)}

    def _raster_effect(self, cur, arena, ctx, ran) -> StageResult:
        cfg = self.config.raster_effect
        if not cfg.enabled:
            return cur, None
        cur = apply_raster(cur, arena, self.engine, self._batch(ctx, cfg.batch_perc),
                           cfg.raster_map, rng=self.rng)
        return cur, {"map": cfg.raster_map}

    def _threshold(self, cur, arena, ctx, ran) -> StageResult:
        cfg = self.config.threshold
        if not cfg.enabled:
            return cur, None
        value = sample(pick_param(cfg.value, cfg.v_min, cfg.v_max, self.rng,
                                  share=cfg.v_perc, pinned=ctx.is_debug_run), self.rng)
        return tone.threshold(cur, arena, self.engine, value), {"percent": round(value, 2)}

    def _dropout(self, cur, arena, ctx, ran) -> StageResult:
        cfg = self.config.dropout
        if not cfg.enabled:
            return cur, None
        amount = sample(pick_param(cfg.amount, cfg.amount_min, cfg.amount_max, self.rng,
                                   pinned=ctx.is_debug_run), self.rng)
        cur = apply_dropout(cur, arena, self.engine, self._batch(ctx, cfg.batch_perc),
                            amount, cfg.size, rng=self.rng)
        return cur, {"amount": round(amount, 4), "size": cfg.size}

    def _tileshift(self, cur, arena, ctx, ran) -> StageResult:
        cfg = self.config.tileshift
        if not cfg.enabled:
            return cur, None
        amount = sample(pick_param(cfg.amount, cfg.amount_min, cfg.amount_max, self.rng,
                                   pinned=ctx.is_debug_run), self.rng, integer=True)
        cur = apply_tileshift(cur, arena, self.engine, self._batch(ctx, cfg.batch_perc),
                              amount, cfg.size, cfg.variation, cfg.offset_x, cfg.offset_y,
                              cfg.offset_variation, rng=self.rng)
        return cur, {"amount": amount, "size": cfg.size}
