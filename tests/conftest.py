"""Pytest configuration and shared fixtures for the fax simulator."""

import sys
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from synthetic_fax.engine import PillowEngine  # noqa: E402
from synthetic_fax.scratch import ScratchArena  # noqa: E402


@pytest.fixture
def repo_root() -> Path:
    return REPO_ROOT


@pytest.fixture
def engine() -> PillowEngine:
    return PillowEngine()


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(1234)


@pytest.fixture
def arena(tmp_path: Path):
    """Scratch arena for a document called 'doc'."""
    with ScratchArena(tmp_path / "scratch", "doc") as a:
        yield a


@pytest.fixture
def page(arena):
    """Factory writing a solid page owned by the arena; returns its path."""
    def make(width: int = 100, height: int = 80, color=(255, 255, 255),
             mode: str = "RGB", suffix: str = "base") -> Path:
        path = arena.path_for(suffix)
        Image.new(mode, (width, height), color).save(path)
        return path
    return make


@pytest.fixture
def noise_page(arena):
    """Factory writing a random grayscale page owned by the arena."""
    def make(width: int = 64, height: int = 48, seed: int = 0) -> Path:
        path = arena.path_for("noise_src")
        data = np.random.default_rng(seed).integers(0, 256, size=(height, width), dtype=np.uint8)
        Image.fromarray(data, "L").save(path)
        return path
    return make


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    """Directory for source documents handed to the pipeline."""
    path = tmp_path / "sources"
    path.mkdir()
    return path


def write_source(directory: Path, name: str, size=(60, 60), color=(0, 0, 0)) -> Path:
    path = directory / name
    Image.new("RGB", size, color).save(path)
    return path
