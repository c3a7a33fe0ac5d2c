#!/usr/bin/env python3
"""
=============================================================================
EMOTION MESH — REFERENCE CORPUS BUILDER (build_corpus.py)
=============================================================================

WHAT THIS FILE DOES (in plain language):
----------------------------------------
The classifier needs to know what an "average" angry, happy, sad... face looks
like. This script builds those averages from a folder of example photos:

  images/
    anger/      *.jpg
    happiness/  *.jpg
    ...

  1. extract  — find the 468 face-mesh points on every photo and save them
                to out/meshes.jsonl (one line per face).
  2. average  — normalize every mesh, compute its point-to-point distances,
                and average them per emotion into out/avg_dist_<emotion>.csv.
  3. all      — both steps in a row.

Folder names are matched case-insensitively. Photos where no face is found
are reported and skipped; they never stop the run.

HOW TO RUN:
-----------
  python build_corpus.py all --images images --out out
  python build_corpus.py extract --images images --out out
  python build_corpus.py average --out out
=============================================================================
"""

from pathlib import Path
from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent / ".env")

import argparse
import logging
import os
import sys

import config
from utils.corpus_builder import (
    ExtractionStats,
    average_distance_matrices,
    extract_meshes,
    list_labeled_images,
    read_meshes_jsonl,
    write_meshes_jsonl,
    write_reference_corpus,
)
from utils.detector_cascade import build_default_cascade


def run_extract(images_dir: str, out_dir: str) -> int:
    items = list_labeled_images(images_dir, config.get_emotion_classes())
    if not items:
        print(f"No images found under {images_dir}", file=sys.stderr)
        return 1

    jsonl_path = os.path.join(out_dir, config.MESHES_JSONL_NAME)
    stats = ExtractionStats()
    cascade = build_default_cascade()
    try:
        write_meshes_jsonl(jsonl_path, extract_meshes(items, cascade, stats=stats))
    finally:
        cascade.close()

    print(f"done: saved={stats.saved} failed={stats.failed} out={jsonl_path}")
    return 0 if stats.saved else 1


def run_average(out_dir: str) -> int:
    jsonl_path = os.path.join(out_dir, config.MESHES_JSONL_NAME)
    if not os.path.isfile(jsonl_path):
        print(f"{jsonl_path} not found; run 'build_corpus.py extract' first", file=sys.stderr)
        return 1

    records = read_meshes_jsonl(jsonl_path)
    matrices = average_distance_matrices(records, config.get_emotion_classes())
    if not matrices:
        print(f"No usable meshes in {jsonl_path}", file=sys.stderr)
        return 1

    for path in write_reference_corpus(out_dir, matrices, config.REFERENCE_FILENAME_TEMPLATE):
        print(f"wrote {path}")
    missing = [e for e in config.get_emotion_classes() if e not in matrices]
    if missing:
        print(f"No meshes for: {', '.join(missing)}")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Build the per-emotion reference corpus from labeled face photos",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("command", choices=("extract", "average", "all"), help="Step to run")
    parser.add_argument("--images", default="images", help="Root folder with one sub-folder per emotion (default: images)")
    parser.add_argument("--out", default=config.REFERENCE_CORPUS_DIR, help=f"Output folder (default: {config.REFERENCE_CORPUS_DIR})")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(levelname)s %(name)s: %(message)s",
    )
    config.warn_missing_config()

    if args.command in ("extract", "all"):
        code = run_extract(args.images, args.out)
        if code:
            return code
    if args.command in ("average", "all"):
        return run_average(args.out)
    return 0


if __name__ == "__main__":
    sys.exit(main())
