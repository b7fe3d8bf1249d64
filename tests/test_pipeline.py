"""Tests for the fax pipeline orchestration."""

import logging
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from synthetic_fax.config import PipelineConfig
from synthetic_fax.engine import PillowEngine
from synthetic_fax.exceptions import RenderError, TransformError
from synthetic_fax.operations import Draw
from synthetic_fax.pipeline import FaxPipeline, RunContext, collect_sources, output_names

from conftest import write_source

FULL_CHAIN = {
    "applyWarp": True, "warpBatchPerc": 1, "warpOffsetPx": 5,
    "warpOffsetMinPx": -10, "warpOffsetMaxPx": 10, "warpFinalScale": 0.95,
    "applyRotate": True, "rotateBatchPerc": 1, "rotateMin": -2, "rotateMax": 2,
    "rotateMirror": True, "rotateMirrorBatchPerc": 0.5, "rotateMirrorArray": "vertical, 180",
    "applyStripesW": True, "stripesWBatchPerc": 1, "stripesWAmount": 3,
    "stripesWThickMin": 1, "stripesWThickMax": 3, "stripesWDir": "vertical",
    "stripesWSpacingMin": 2, "stripesWSpacingMax": 6, "stripesWDistort": 0.3,
    "stripesWDistortSize": 3,
    "applyAlpha": True, "applyGray": True,
    "applyBlur": True, "blurRadius": 0.5, "blurRadMin": 0.2, "blurRadMax": 1.0,
    "blurRadBatchPerc": 0.5,
    "applyStripes": True, "stripesBatchPerc": 1, "stripesAreasAmount": 2,
    "stripesAreaWidthPx": 30, "stripesAreaHeightPx": 60, "stripesDensity": 0.5,
    "applyStripesSmear": True, "stripesSmearLMin": 1, "stripesSmearLMax": 4,
    "stripesAreaDir": "random", "stripesLineSpacing": 2,
    "applyDither": True, "ditherMethod": "FloydSteinberg", "ditherColors": 2,
    "applyNoiseW": True, "noiseWBatchPerc": 1, "noiseWDensity": 0.01,
    "noiseWDensityMin": 0.01, "noiseWDensityMax": 0.03,
    "applyFinalThreshold": True, "finalThresholdValue": 80,
    "applyDropout": True, "dropoutBatchPerc": 1, "dropoutAmount": 0.02, "dropoutSize": 2,
    "applyTileshift": True, "tileshiftBatchPerc": 1, "amountTiles": 3,
    "tilesSize": 10, "tilesVariation": 5, "tilesOffsetX": 1, "tilesOffsetY": 1,
    "offsetVariation": 1,
}


def make_pipeline(tmp_path: Path, values, seed=0, engine=None, out="tiff") -> FaxPipeline:
    config = PipelineConfig.from_mapping(values)
    return FaxPipeline(config, engine=engine, output_dir=tmp_path / out,
                       tmp_dir=tmp_path / "tmp", seed=seed)


def scratch_files(tmp_path: Path) -> list:
    tmp = tmp_path / "tmp"
    return sorted(tmp.iterdir()) if tmp.exists() else []


def form_page(directory: Path, name: str) -> Path:
    path = directory / name
    img = Image.new("RGB", (120, 90), "white")
    img.paste((0, 0, 0), (20, 20, 100, 30))
    img.paste((90, 90, 90), (20, 50, 70, 70))
    img.save(path)
    return path


class DrawFailingEngine(PillowEngine):
    """Fails every transform that draws, after earlier stages have written files."""

    def transform(self, src, dst, operations):
        if any(isinstance(op, Draw) for op in operations):
            raise TransformError("draw failed", source=str(src), operation="Draw")
        return super().transform(src, dst, operations)


class TestProcessDocument:
    """Test cases for single-document runs."""

    def test_dropout_on_black_page(self, tmp_path: Path, source_dir: Path) -> None:
        src = write_source(source_dir, "black.png", size=(100, 100))
        pipeline = make_pipeline(tmp_path, {
            "applyDropout": True, "dropoutBatchPerc": 1,
            "dropoutAmount": 0.1, "dropoutSize": 10,
        })
        result = pipeline.process_document(src)

        assert result.output == tmp_path / "tiff" / "black.tif"
        assert result.stages == ["dropout"]
        with Image.open(result.output) as im:
            assert im.mode == "1"
            assert im.n_frames == 1
            arr = np.array(im.convert("L"))
        white = int((arr == 255).sum())
        assert 100 <= white <= 1000
        assert scratch_files(tmp_path) == []

    def test_nothing_enabled_still_compresses(self, tmp_path: Path, source_dir: Path) -> None:
        src = write_source(source_dir, "plain.png", color=(255, 255, 255))
        result = make_pipeline(tmp_path, {}).process_document(src)
        assert result.stages == []
        with Image.open(result.output) as im:
            assert im.info["compression"] == "group4"
            assert np.array(im.convert("L")).min() == 255

    def test_zip_compression(self, tmp_path: Path, source_dir: Path) -> None:
        src = write_source(source_dir, "plain.png")
        result = make_pipeline(tmp_path, {"applyG4Compress": False}).process_document(src)
        with Image.open(result.output) as im:
            assert im.info["compression"] == "tiff_adobe_deflate"

    def test_output_resolution_tag(self, tmp_path: Path, source_dir: Path) -> None:
        src = write_source(source_dir, "plain.png")
        result = make_pipeline(tmp_path, {"outputResolution": 204}).process_document(src)
        with Image.open(result.output) as im:
            assert round(im.info["dpi"][0]) == 204

    def test_full_chain_keeps_page_size(self, tmp_path: Path, source_dir: Path) -> None:
        src = form_page(source_dir, "form.png")
        result = make_pipeline(tmp_path, FULL_CHAIN).process_document(src)
        with Image.open(result.output) as im:
            assert im.size == (120, 90)
            assert im.mode == "1"
        for stage in ("warp", "rotate", "alpha", "gray", "blur", "dither", "finalthreshold"):
            assert stage in result.stages
        assert scratch_files(tmp_path) == []

    def test_multi_page_source(self, tmp_path: Path, source_dir: Path) -> None:
        src = source_dir / "scan.tif"
        frames = [Image.new("L", (40, 30), v) for v in (0, 255)]
        frames[0].save(src, save_all=True, append_images=frames[1:])
        result = make_pipeline(tmp_path, {"applyGray": True}).process_document(src)
        assert result.pages == 2
        with Image.open(result.output) as im:
            assert im.n_frames == 2
            assert np.array(im.convert("L")).max() == 0
            im.seek(1)
            assert np.array(im.convert("L")).min() == 255
        assert scratch_files(tmp_path) == []


class TestMirrorFollowsRotate:
    """Mirroring only happens on pages that were rotated."""

    BASE = {
        "applyRotate": True, "rotateMin": 0, "rotateMax": 0,
        "rotateMirror": True, "rotateMirrorBatchPerc": 1, "rotateMirrorArray": "180",
    }

    def test_skipped_without_rotation(self, tmp_path: Path, source_dir: Path) -> None:
        src = write_source(source_dir, "a.png")
        values = {**self.BASE, "rotateBatchPerc": 0}
        result = make_pipeline(tmp_path, values).process_document(src)
        assert result.stages == []

    def test_runs_after_rotation(self, tmp_path: Path, source_dir: Path) -> None:
        src = write_source(source_dir, "a.png")
        values = {**self.BASE, "rotateBatchPerc": 1}
        result = make_pipeline(tmp_path, values).process_document(src)
        assert result.stages == ["rotate", "rotatemirror"]


class TestReproducibility:
    """Same seed, same bytes."""

    def test_seeded_runs_are_identical(self, tmp_path: Path, source_dir: Path) -> None:
        src = form_page(source_dir, "form.png")
        first = make_pipeline(tmp_path, FULL_CHAIN, seed=42, out="a").process_document(src)
        second = make_pipeline(tmp_path, FULL_CHAIN, seed=42, out="b").process_document(src)
        assert first.stages == second.stages
        assert first.output.read_bytes() == second.output.read_bytes()


class TestFailureCleanup:
    """No intermediate outlives a failed document."""

    def test_engine_failure_removes_intermediates(self, tmp_path: Path, source_dir: Path) -> None:
        src = write_source(source_dir, "doc.png")
        pipeline = make_pipeline(tmp_path, {
            "applyGray": True,
            "applyDropout": True, "dropoutBatchPerc": 1, "dropoutAmount": 0.1, "dropoutSize": 2,
        }, engine=DrawFailingEngine())
        with pytest.raises(TransformError):
            pipeline.process_document(src)
        assert scratch_files(tmp_path) == []
        assert not (tmp_path / "tiff" / "doc.tif").exists()

    def test_unreadable_source(self, tmp_path: Path, source_dir: Path) -> None:
        src = source_dir / "broken.png"
        src.write_bytes(b"not an image")
        with pytest.raises(RenderError):
            make_pipeline(tmp_path, {"applyGray": True}).process_document(src)
        assert scratch_files(tmp_path) == []


class TestRunBatch:
    """Test cases for batch runs."""

    def test_keep_going_tallies(self, tmp_path: Path, source_dir: Path) -> None:
        bad = source_dir / "a_bad.png"
        bad.write_bytes(b"garbage")
        good = write_source(source_dir, "b_good.png")
        stats = make_pipeline(tmp_path, {"applyGray": True}).run_batch(
            collect_sources(source_dir), halt_on_error=False, progress=False)
        assert (stats.total, stats.succeeded, stats.failed) == (2, 1, 1)
        assert stats.errors[0][0] == bad
        assert stats.results[0].source == good

    def test_halt_on_error(self, tmp_path: Path, source_dir: Path) -> None:
        (source_dir / "a_bad.png").write_bytes(b"garbage")
        write_source(source_dir, "b_good.png")
        pipeline = make_pipeline(tmp_path, {})
        with pytest.raises(RenderError):
            pipeline.run_batch(collect_sources(source_dir), progress=False)
        assert not (tmp_path / "tiff" / "b_good.tif").exists()

    def test_shared_stem_gets_distinct_outputs(self, tmp_path: Path, source_dir: Path) -> None:
        write_source(source_dir, "a.png")
        write_source(source_dir, "a.jpg")
        stats = make_pipeline(tmp_path, {}).run_batch(collect_sources(source_dir), progress=False)
        assert [r.output.name for r in stats.results] == ["a_jpg.tif", "a_png.tif"]
        assert sorted(p.name for p in (tmp_path / "tiff").glob("*.tif")) == ["a_jpg.tif", "a_png.tif"]

    def test_output_names(self) -> None:
        sources = [Path("a.png"), Path("A.tif"), Path("b.png"), Path("c.png"), Path("c.PNG")]
        assert output_names(sources) == ["a_png", "A_tif", "b", "c_png", "c_png_2"]

    def test_collect_sources_filters_and_sorts(self, source_dir: Path) -> None:
        write_source(source_dir, "b.png")
        write_source(source_dir, "a.jpg")
        (source_dir / "notes.txt").write_text("x")
        (source_dir / "a.json").write_text("{}")
        assert [p.name for p in collect_sources(source_dir)] == ["a.jpg", "b.png"]


class TestDebugRun:
    """Test cases for the debug session on the first document."""

    VALUES = {
        "debugPipeline": True, "debugExcludeEffects": "dropout",
        "applyGray": True,
        "applyNoiseW": True, "noiseWBatchPerc": 0, "noiseWDensity": 0.01,
        "noiseWDensityMin": 0.2, "noiseWDensityMax": 0.3,
        "applyDropout": True, "dropoutBatchPerc": 0, "dropoutAmount": 0.1, "dropoutSize": 2,
    }

    def run(self, tmp_path: Path, source_dir: Path):
        write_source(source_dir, "a.png")
        write_source(source_dir, "b.png")
        values = {**self.VALUES, "debugDir": str(tmp_path / "debug")}
        pipeline = make_pipeline(tmp_path, values)
        return pipeline.run_batch(collect_sources(source_dir), progress=False)

    def test_first_document_is_forced(self, tmp_path: Path, source_dir: Path) -> None:
        stats = self.run(tmp_path, source_dir)
        first, second = stats.results
        assert first.stages == ["gray", "noisew", "dropout"]
        assert second.stages == ["gray"]

    def test_snapshots_skip_excluded_stages(self, tmp_path: Path, source_dir: Path) -> None:
        self.run(tmp_path, source_dir)
        names = [p.name for p in (tmp_path / "debug").iterdir()]
        for stage in ("render", "gray", "noisew", "compress"):
            assert any(n.startswith(f"a_{stage}_") for n in names), stage
        assert not any("_dropout_" in n for n in names)
        assert all(n.startswith("a_") for n in names)

    def test_fixed_values_are_used(self, tmp_path: Path, source_dir: Path) -> None:
        self.run(tmp_path, source_dir)
        with Image.open(tmp_path / "tiff" / "a.tif") as im:
            arr = np.array(im.convert("L"))
        # noise pinned at 0.01 instead of 0.2-0.3, plus at most 0.1 of dropout
        assert int((arr == 255).sum()) <= 0.11 * arr.size

    def test_debug_log_lines(self, tmp_path: Path, source_dir: Path, caplog) -> None:
        caplog.set_level(logging.INFO, logger="synthetic_fax.pipeline")
        self.run(tmp_path, source_dir)
        assert "[debug][gray]" in caplog.text
        assert "[debug][dropout]" not in caplog.text

    def test_default_debug_dir(self, tmp_path: Path) -> None:
        config = PipelineConfig.from_mapping({"debugPipeline": True})
        pipeline = FaxPipeline(config, output_dir=tmp_path / "out", tmp_dir=tmp_path / "tmp")
        ctx = pipeline.make_context(first=True)
        assert ctx.is_debug_run
        assert ctx.debug_dir == tmp_path / "out" / "debugPic"
        assert not pipeline.make_context(first=False).is_debug_run

    def test_context_traces(self) -> None:
        ctx = RunContext(True, {"warp"}, Path("."))
        assert ctx.traces("gray") and not ctx.traces("warp")
        assert not RunContext().traces("gray")
