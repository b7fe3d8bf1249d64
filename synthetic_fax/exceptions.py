"""
Error taxonomy for the fax simulation pipeline.
"""

from typing import List, Optional


class FaxSimError(Exception):
    """Base exception for all pipeline errors."""


class ConfigError(FaxSimError):
    """Invalid or incomplete configuration.

    Collects every problem found during validation so a single run reports
    all missing or malformed keys at once.
    """

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        lines = "\n".join(f"  - {p}" for p in self.problems)
        super().__init__(f"Invalid configuration ({len(self.problems)} problem(s)):\n{lines}")


class TransformError(FaxSimError):
    """The raster engine failed to produce an output image."""

    def __init__(self, message: str, source: Optional[str] = None,
                 operation: Optional[str] = None):
        self.source = source
        self.operation = operation
        details = []
        if source:
            details.append(f"source={source}")
        if operation:
            details.append(f"operation={operation}")
        suffix = f" ({', '.join(details)})" if details else ""
        super().__init__(f"{message}{suffix}")


class RenderError(TransformError):
    """A source document could not be rasterized."""


class RecordError(FaxSimError):
    """Claim-record generation failed (bad field config, dependency cycle)."""
