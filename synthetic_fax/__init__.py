"""
Synthetic Fax - claim documents degraded into realistic fax scans.

Generates randomized claim records, stamps them into a raster claim form,
and runs the filled pages through a chain of fax/scan degradation effects
that ends in a 1-bit Group 4 TIFF.

Modules:
    - engine: raster engine interface and the Pillow/OpenCV implementation
    - operations: named raster operations and draw-scripts
    - scratch: ownership tracking for intermediate files
    - sampling: seedable randomness and batch gating
    - effects: warp, rotate, stripes, noise, dropout, tile shift, ...
    - config: .ini loading and validation
    - pipeline: stage orchestration, debug session, batch tallies
    - records: claim-record synthesis
    - forms: claim-form template and stamping
"""

from .config import PipelineConfig, load_config
from .engine import PillowEngine, RasterEngine
from .exceptions import ConfigError, FaxSimError, RecordError, RenderError, TransformError
from .forms import ClaimFormTemplate
from .pipeline import BatchStats, DocumentResult, FaxPipeline, RunContext
from .records import ClaimRecordGenerator
from .scratch import ScratchArena

__all__ = [
    "PipelineConfig",
    "load_config",
    "RasterEngine",
    "PillowEngine",
    "FaxSimError",
    "ConfigError",
    "TransformError",
    "RenderError",
    "RecordError",
    "ClaimFormTemplate",
    "FaxPipeline",
    "RunContext",
    "DocumentResult",
    "BatchStats",
    "ClaimRecordGenerator",
    "ScratchArena",
]
