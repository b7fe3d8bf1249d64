#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
FAX SIMULATOR

Runs filled claim pages through the fax degradation pipeline and writes one
1-bit TIFF per document.

Features:
    - Warp, rotate/mirror, white and black stripes, brightness
    - Grayscale, blur, ordered and error-diffusion dither, threshold
    - White speckle noise, dropout blocks, tile shift
    - Group 4 (or zip) TIFF compression
    - Debug snapshots for the first document

Usage:
    # Degrade every page in output/png with the shipped settings
    python run_faxsim.py

    # Custom folders and a fixed seed
    python run_faxsim.py --input output/png --output output/tiff --seed 42

    # Keep going past broken sources
    python run_faxsim.py --keep-going
"""

import argparse
import logging
import sys
import time
from pathlib import Path

from synthetic_fax.config import load_config
from synthetic_fax.exceptions import ConfigError, FaxSimError
from synthetic_fax.pipeline import FaxPipeline, collect_sources

DEFAULT_CONFIG = Path(__file__).parent / "config" / "faxsim.ini"


def main():
    parser = argparse.ArgumentParser(
        description="Degrade document pages into simulated fax TIFFs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python run_faxsim.py --input output/png --output output/tiff
    python run_faxsim.py --config my_faxsim.ini --seed 7 -v
        """
    )
    parser.add_argument("-i", "--input", type=str, default="output/png", help="Folder of source pages")
    parser.add_argument("-o", "--output", type=str, default="output/tiff", help="Output directory")
    parser.add_argument("-c", "--config", type=str, default=str(DEFAULT_CONFIG), help="Settings .ini")
    parser.add_argument("--tmp", type=str, default=None, help="Scratch directory for intermediates")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--keep-going", action="store_true", help="Continue after a failed document")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress progress output")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(e, file=sys.stderr)
        return 2

    try:
        sources = collect_sources(args.input) if Path(args.input).is_dir() else []
    except OSError as e:
        print(f"FAILED: cannot read {args.input}: {e}", file=sys.stderr)
        return 1
    if not sources:
        print(f"No source pages found in {args.input}", file=sys.stderr)
        return 1

    if not args.quiet:
        print("=" * 50)
        print("FAX SIMULATOR")
        print("=" * 50)
        print(f"  Documents:  {len(sources)}")
        print(f"  Input:      {args.input}")
        print(f"  Output:     {args.output}")
        print(f"  Config:     {args.config}")
        print(f"  Debug run:  {'yes' if config.debug.enabled else 'no'}")
        if args.seed is not None:
            print(f"  Seed:       {args.seed}")
        print("=" * 50)
        print()

    start_time = time.time()
    try:
        pipeline = FaxPipeline(config, output_dir=args.output, tmp_dir=args.tmp, seed=args.seed)
        stats = pipeline.run_batch(sources, halt_on_error=not args.keep_going,
                                   progress=not args.quiet)
    except (FaxSimError, OSError) as e:
        print(f"FAILED: {e}", file=sys.stderr)
        return 1
    elapsed = time.time() - start_time

    if not args.quiet:
        print()
        print("=" * 50)
        print(f"SUCCESS: Converted {stats.succeeded}/{stats.total} documents in {elapsed:.2f}s")
        print("=" * 50)

        stage_counts = {}
        for r in stats.results:
            for stage in r.stages:
                stage_counts[stage] = stage_counts.get(stage, 0) + 1
        if stage_counts:
            print("\nStages applied:")
            for stage, count in sorted(stage_counts.items()):
                print(f"  {stage}: {count} ({100 * count / max(1, stats.succeeded):.1f}%)")

        if stats.errors:
            print("\nFailed documents:")
            for source, message in stats.errors:
                print(f"  {source.name}: {message}")

    return 0 if stats.failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
