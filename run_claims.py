#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
CLAIM TEST DATA GENERATOR

Generates randomized claim records, stamps them into the claim form and
writes the record exports.

Usage:
    # 5 filled forms plus XML/JSON exports
    python run_claims.py -n 5

    # Records only
    python run_claims.py -n 20 --xml-only --seed 1

    # Forms only, into a custom folder
    python run_claims.py -n 3 --forms-only -o output
"""

import argparse
import logging
import sys
import time
from pathlib import Path

from tqdm import tqdm

from synthetic_fax.exceptions import RecordError
from synthetic_fax.forms import ClaimFormTemplate, write_form
from synthetic_fax.records import ClaimRecordGenerator, population_summary, save_records


def main():
    parser = argparse.ArgumentParser(description="Generate synthetic claim records and filled forms")
    parser.add_argument("-n", "--num", type=int, default=1, help="Number of records (1-999)")
    parser.add_argument("-o", "--output", type=str, default="output", help="Output root directory")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--xml-only", action="store_true", help="Write record exports only")
    parser.add_argument("--forms-only", action="store_true", help="Write filled forms only")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress progress output")

    args = parser.parse_args()
    if args.xml_only and args.forms_only:
        parser.error("--xml-only and --forms-only are mutually exclusive")
    if not 1 <= args.num <= 999:
        parser.error("--num must be between 1 and 999")

    logging.basicConfig(level=logging.WARNING if args.quiet else logging.INFO,
                        format="%(levelname)s %(name)s: %(message)s")

    output = Path(args.output)
    if not args.quiet:
        print("=" * 50)
        print("CLAIM TEST DATA GENERATOR")
        print("=" * 50)
        print(f"  Records:    {args.num}")
        print(f"  Output:     {output}")
        if args.seed is not None:
            print(f"  Seed:       {args.seed}")
        print("=" * 50)
        print()

    start_time = time.time()
    try:
        generator = ClaimRecordGenerator(seed=args.seed)
    except RecordError as e:
        print(f"FAILED: {e}", file=sys.stderr)
        return 1
    records = generator.generate(args.num)

    try:
        if not args.forms_only:
            written = save_records(records, output / "xml")
            if not args.quiet:
                for path in written:
                    print(f"Wrote {len(records)} record(s) to {path}")

        if not args.xml_only:
            template = ClaimFormTemplate()
            for record in tqdm(records, desc="forms", disable=args.quiet):
                write_form(template, record, output / "png")
    except OSError as e:
        print(f"FAILED: {e}", file=sys.stderr)
        return 1

    elapsed = time.time() - start_time
    if not args.quiet:
        print()
        print("=" * 50)
        print(f"SUCCESS: Generated {len(records)} records in {elapsed:.2f}s")
        print("=" * 50)
        print("\nField population summary:")
        for name, missing in population_summary(records).items():
            mark = "ok" if missing == 0 else f"{missing}/{len(records)} empty"
            print(f"  {name}: {mark}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
