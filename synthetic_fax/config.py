"""
Pipeline configuration - flat key/value settings with typed views per effect.

Provides:
- Loading of faxsim-style .ini files (sections merged, inline comments
  stripped, keys case-sensitive)
- Pattern-based coercion of values to bool / int / float / str
- One dataclass per stage, bound to its ini keys through field metadata
- Fail-fast validation that reports every problem at once

Usage:
    config = load_config("config/faxsim.ini")
    config.warp.offset_min, config.dropout.batch_perc, ...
"""

import configparser
import logging
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple, Union

from .effects.brightness import BRIGHTNESS_OPTIONS
from .effects.rotate import MIRROR_MODES
from .effects.stripes_white import DIRECTIONS
from .exceptions import ConfigError
from .operations import DIFFUSION_METHODS, ORDERED_DITHER_MAPS

logger = logging.getLogger(__name__)

_BOOL_RE = re.compile(r"^(true|false)$", re.IGNORECASE)
_INT_RE = re.compile(r"^[+-]?\d+$")
_FLOAT_RE = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?$")

# Annotations whose values must be numbers
_NUMERIC_TYPES = (int, float, Optional[int], Optional[float])

# Stage tokens accepted by debugExcludeEffects
STAGE_TOKENS = (
    "render", "warp", "rotate", "rotatemirror", "stripesw", "brightness",
    "alpha", "gray", "blur", "stripes", "rasterization", "dither", "noisew",
    "rastereffect", "finalthreshold", "dropout", "tileshift", "compress",
)


def coerce(value: str) -> Union[bool, int, float, str]:
    """Turn an ini string into bool, int or float when it looks like one."""
    text = value.strip()
    if _BOOL_RE.match(text):
        return text.lower() == "true"
    if _INT_RE.match(text):
        return int(text)
    if _FLOAT_RE.match(text):
        return float(text)
    return text


def read_ini(path: Union[str, Path]) -> Dict[str, Any]:
    """Read an .ini into one flat, coerced dict. Later sections win."""
    path = Path(path)
    parser = configparser.ConfigParser(
        inline_comment_prefixes=(";", "#"),
        strict=False,
        interpolation=None,
    )
    parser.optionxform = str
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError([f"cannot read {path}: {e}"]) from e
    try:
        # keys before the first header land in a synthetic section
        parser.read_string("[__root__]\n" + text, source=str(path))
    except configparser.Error as e:
        raise ConfigError([f"cannot parse {path}: {e}"]) from e

    flat: Dict[str, Any] = {}
    for section in parser.sections():
        for key, value in parser.items(section, raw=True):
            flat[key] = coerce(value) if value is not None else ""
    return flat


def _opt(key: str, default: Any = None, required: bool = True,
         prob: bool = False) -> Any:
    """Dataclass field bound to an ini key."""
    return field(default=default,
                 metadata={"key": key, "required": required, "prob": prob})


def _toggle(key: str, default: bool = False) -> Any:
    return field(default=default, metadata={"key": key, "required": False, "toggle": True})


class _Section:
    """Shared loading and validation for the per-stage dataclasses."""

    # (min_field, max_field) pairs that must satisfy min <= max
    pairs: Tuple[Tuple[str, str], ...] = ()
    # field -> allowed values
    choices: Dict[str, Tuple] = {}

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any], problems: List[str]):
        kwargs = {}
        for f in fields(cls):
            key = f.metadata.get("key")
            if key is not None and key in values:
                kwargs[f.name] = values[key]
        section = cls(**kwargs)
        section.validate(problems)
        return section

    @property
    def active(self) -> bool:
        return bool(getattr(self, "enabled", True))

    def required_fields(self) -> List[str]:
        return [f.name for f in fields(self)
                if f.metadata.get("required") and "key" in f.metadata]

    def _key(self, name: str) -> str:
        for f in fields(self):
            if f.name == name:
                return f.metadata.get("key", name)
        return name

    def validate(self, problems: List[str]) -> None:
        for f in fields(self):
            if f.metadata.get("toggle"):
                value = getattr(self, f.name)
                if not isinstance(value, bool):
                    problems.append(f"{f.metadata['key']}: expected true/false, got {value!r}")
        if not self.active:
            return

        missing = [n for n in self.required_fields() if getattr(self, n) is None]
        for name in missing:
            problems.append(f"{self._key(name)}: required when {type(self).__name__} is enabled")

        for f in fields(self):
            value = getattr(self, f.name)
            if (value is not None and "key" in f.metadata and not f.metadata.get("prob")
                    and f.type in _NUMERIC_TYPES and not _is_number(value)):
                problems.append(f"{f.metadata['key']}: expected a number, got {value!r}")
            if f.metadata.get("prob") and value is not None:
                if not _is_number(value) or not 0 <= value <= 1:
                    problems.append(f"{f.metadata['key']}: probability must be in [0, 1], got {value!r}")

        for lo_name, hi_name in self.pairs:
            lo, hi = getattr(self, lo_name), getattr(self, hi_name)
            if lo is None or hi is None:
                continue
            if not (_is_number(lo) and _is_number(hi)):
                continue
            if lo > hi:
                problems.append(f"{self._key(lo_name)} ({lo}) must be <= {self._key(hi_name)} ({hi})")

        for name, allowed in self.choices.items():
            value = getattr(self, name)
            if value is not None and str(value) not in allowed:
                problems.append(f"{self._key(name)}: {value!r} is not one of {', '.join(allowed)}")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass
class DebugConfig(_Section):
    enabled: bool = _toggle("debugPipeline")
    exclude: Any = _opt("debugExcludeEffects", "", required=False)
    debug_dir: Optional[str] = _opt("debugDir", None, required=False)

    @property
    def active(self) -> bool:
        return self.enabled

    @property
    def excluded_stages(self) -> Set[str]:
        return {t.strip().lower() for t in str(self.exclude or "").split(",") if t.strip()}

    def validate(self, problems: List[str]) -> None:
        super().validate(problems)
        unknown = sorted(self.excluded_stages - set(STAGE_TOKENS))
        if unknown:
            # unknown tokens never match a stage, so they are harmless
            logger.warning("debugExcludeEffects: unknown stage(s) %s", ", ".join(unknown))


@dataclass
class RenderConfig(_Section):
    resolution: Optional[int] = _opt("renderResolution", None, required=False)
    output_resolution: Optional[int] = _opt("outputResolution", None, required=False)


@dataclass
class WarpConfig(_Section):
    enabled: bool = _toggle("applyWarp")
    batch_perc: Optional[float] = _opt("warpBatchPerc", prob=True)
    offset: Optional[float] = _opt("warpOffsetPx")
    offset_min: Optional[float] = _opt("warpOffsetMinPx")
    offset_max: Optional[float] = _opt("warpOffsetMaxPx")
    final_scale: float = _opt("warpFinalScale", 1.0, required=False)

    pairs = (("offset_min", "offset_max"),)


@dataclass
class RotateConfig(_Section):
    enabled: bool = _toggle("applyRotate")
    batch_perc: Optional[float] = _opt("rotateBatchPerc", prob=True)
    min: Optional[float] = _opt("rotateMin")
    max: Optional[float] = _opt("rotateMax")
    mirror: bool = _toggle("rotateMirror")
    mirror_batch_perc: Optional[float] = _opt("rotateMirrorBatchPerc", required=False, prob=True)
    mirror_array: Any = _opt("rotateMirrorArray", None, required=False)

    pairs = (("min", "max"),)

    @property
    def mirror_modes(self) -> List[str]:
        return [m.strip() for m in str(self.mirror_array or "").split(",") if m.strip()]

    def required_fields(self) -> List[str]:
        names = super().required_fields()
        if self.mirror:
            names += ["mirror_batch_perc", "mirror_array"]
        return names

    def validate(self, problems: List[str]) -> None:
        super().validate(problems)
        if self.enabled and self.mirror:
            for mode in self.mirror_modes:
                if mode not in MIRROR_MODES:
                    problems.append(f"rotateMirrorArray: unknown mirror mode {mode!r}")


@dataclass
class StripesWhiteConfig(_Section):
    enabled: bool = _toggle("applyStripesW")
    batch_perc: Optional[float] = _opt("stripesWBatchPerc", prob=True)
    amount: Optional[int] = _opt("stripesWAmount")
    thick_min: Optional[int] = _opt("stripesWThickMin")
    thick_max: Optional[int] = _opt("stripesWThickMax")
    spacing_min: Optional[int] = _opt("stripesWSpacingMin")
    spacing_max: Optional[int] = _opt("stripesWSpacingMax")
    direction: Optional[str] = _opt("stripesWDir")
    distort: Optional[float] = _opt("stripesWDistort", prob=True)
    distort_size: Optional[float] = _opt("stripesWDistortSize")

    pairs = (("thick_min", "thick_max"), ("spacing_min", "spacing_max"))
    choices = {"direction": DIRECTIONS}


@dataclass
class BrightnessConfig(_Section):
    enabled: bool = _toggle("applyBrightness")
    batch_perc: float = _opt("brightnessBatchPerc", 1.0, required=False, prob=True)
    option: str = _opt("brightnessOption", "overlay", required=False)
    min: Optional[float] = _opt("brightnessMin")
    max: Optional[float] = _opt("brightnessMax")

    pairs = (("min", "max"),)
    choices = {"option": BRIGHTNESS_OPTIONS}


@dataclass
class ToneConfig(_Section):
    """Alpha flatten and grayscale switches."""
    alpha: bool = _toggle("applyAlpha")
    gray: bool = _toggle("applyGray")


@dataclass
class BlurConfig(_Section):
    enabled: bool = _toggle("applyBlur")
    radius: Optional[float] = _opt("blurRadius")
    rad_min: Optional[float] = _opt("blurRadMin", required=False)
    rad_max: Optional[float] = _opt("blurRadMax", required=False)
    batch_perc: float = _opt("blurRadBatchPerc", 0.0, required=False, prob=True)

    pairs = (("rad_min", "rad_max"),)


@dataclass
class StripesBlackConfig(_Section):
    enabled: bool = _toggle("applyStripes")
    batch_perc: Optional[float] = _opt("stripesBatchPerc", prob=True)
    areas: Optional[int] = _opt("stripesAreasAmount")
    area_width: Optional[int] = _opt("stripesAreaWidthPx")
    area_height: Optional[int] = _opt("stripesAreaHeightPx")
    density: Optional[float] = _opt("stripesDensity", prob=True)
    density_min: Optional[float] = _opt("stripesDensityMin", required=False, prob=True)
    density_max: Optional[float] = _opt("stripesDensityMax", required=False, prob=True)
    smear: bool = _toggle("applyStripesSmear")
    smear_min: float = _opt("stripesSmearLMin", 1.0, required=False)
    smear_max: float = _opt("stripesSmearLMax", 1.0, required=False)
    direction: Any = _opt("stripesAreaDir", "random", required=False)
    line_spacing: int = _opt("stripesLineSpacing", 1, required=False)

    pairs = (("density_min", "density_max"), ("smear_min", "smear_max"))

    def validate(self, problems: List[str]) -> None:
        super().validate(problems)
        if self.enabled and not _is_number(self.direction) and str(self.direction).lower() != "random":
            problems.append(f"stripesAreaDir: expected an angle or 'random', got {self.direction!r}")


@dataclass
class RasterizationConfig(_Section):
    enabled: bool = _toggle("applyRasterization")
    raster_map: str = _opt("rasterMap", "o4x4", required=False)

    choices = {"raster_map": ORDERED_DITHER_MAPS}


@dataclass
class DitherConfig(_Section):
    enabled: bool = _toggle("applyDither")
    method: str = _opt("ditherMethod", "FloydSteinberg", required=False)
    colors: int = _opt("ditherColors", 2, required=False)
    # read for compatibility; error diffusion runs at full strength
    diff_amount: Optional[float] = _opt("ditherDiffAmount", required=False)

    choices = {"method": DIFFUSION_METHODS}


@dataclass
class NoiseConfig(_Section):
    enabled: bool = _toggle("applyNoiseW")
    batch_perc: Optional[float] = _opt("noiseWBatchPerc", prob=True)
    density: Optional[float] = _opt("noiseWDensity", prob=True)
    density_min: Optional[float] = _opt("noiseWDensityMin", required=False, prob=True)
    density_max: Optional[float] = _opt("noiseWDensityMax", required=False, prob=True)

    pairs = (("density_min", "density_max"),)


@dataclass
class RasterEffectConfig(_Section):
    enabled: bool = _toggle("applyRasterEffect")
    batch_perc: Optional[float] = _opt("rasterBatchPerc", prob=True)
    raster_map: str = _opt("rasterMap", "o4x4", required=False)

    choices = {"raster_map": ORDERED_DITHER_MAPS}


@dataclass
class ThresholdConfig(_Section):
    enabled: bool = _toggle("applyFinalThreshold")
    value: Optional[float] = _opt("finalThresholdValue")
    v_min: Optional[float] = _opt("finalThresholdVMin", required=False)
    v_max: Optional[float] = _opt("finalThresholdVMax", required=False)
    v_perc: float = _opt("finalThresholdVPerc", 0.0, required=False, prob=True)

    pairs = (("v_min", "v_max"),)


@dataclass
class DropoutConfig(_Section):
    enabled: bool = _toggle("applyDropout")
    batch_perc: Optional[float] = _opt("dropoutBatchPerc", prob=True)
    amount: Optional[float] = _opt("dropoutAmount", prob=True)
    amount_min: Optional[float] = _opt("dropoutAmountMin", required=False, prob=True)
    amount_max: Optional[float] = _opt("dropoutAmountMax", required=False, prob=True)
    size: Optional[float] = _opt("dropoutSize")

    pairs = (("amount_min", "amount_max"),)


@dataclass
class TileshiftConfig(_Section):
    enabled: bool = _toggle("applyTileshift")
    batch_perc: Optional[float] = _opt("tileshiftBatchPerc", prob=True)
    amount: Optional[int] = _opt("amountTiles")
    amount_min: Optional[int] = _opt("amountTilesMin", required=False)
    amount_max: Optional[int] = _opt("amountTilesMax", required=False)
    size: Optional[int] = _opt("tilesSize")
    variation: int = _opt("tilesVariation", 0, required=False)
    offset_x: int = _opt("tilesOffsetX", 0, required=False)
    offset_y: int = _opt("tilesOffsetY", 0, required=False)
    offset_variation: int = _opt("offsetVariation", 0, required=False)

    pairs = (("amount_min", "amount_max"),)


@dataclass
class CompressConfig(_Section):
    group4: bool = _toggle("applyG4Compress", True)

    @property
    def scheme(self) -> str:
        return "group4" if self.group4 else "zip"


@dataclass
class PipelineConfig:
    """All stage settings for one run."""
    debug: DebugConfig = field(default_factory=DebugConfig)
    render: RenderConfig = field(default_factory=RenderConfig)
    warp: WarpConfig = field(default_factory=WarpConfig)
    rotate: RotateConfig = field(default_factory=RotateConfig)
    stripes_white: StripesWhiteConfig = field(default_factory=StripesWhiteConfig)
    brightness: BrightnessConfig = field(default_factory=BrightnessConfig)
    tone: ToneConfig = field(default_factory=ToneConfig)
    blur: BlurConfig = field(default_factory=BlurConfig)
    stripes: StripesBlackConfig = field(default_factory=StripesBlackConfig)
    rasterization: RasterizationConfig = field(default_factory=RasterizationConfig)
    dither: DitherConfig = field(default_factory=DitherConfig)
    noise: NoiseConfig = field(default_factory=NoiseConfig)
    raster_effect: RasterEffectConfig = field(default_factory=RasterEffectConfig)
    threshold: ThresholdConfig = field(default_factory=ThresholdConfig)
    dropout: DropoutConfig = field(default_factory=DropoutConfig)
    tileshift: TileshiftConfig = field(default_factory=TileshiftConfig)
    compress: CompressConfig = field(default_factory=CompressConfig)

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "PipelineConfig":
        """Build and validate every section; raise one ConfigError listing all problems."""
        problems: List[str] = []
        sections = {}
        for f in fields(cls):
            section_cls = f.default_factory
            sections[f.name] = section_cls.from_mapping(values, problems)
        if problems:
            raise ConfigError(problems)
        return cls(**sections)


def load_config(path: Union[str, Path]) -> PipelineConfig:
    values = read_ini(path)
    logger.debug("Loaded %d settings from %s", len(values), path)
    return PipelineConfig.from_mapping(values)
