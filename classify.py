#!/usr/bin/env python3
"""
=============================================================================
EMOTION MESH — COMMAND-LINE CLASSIFIER (classify.py)
=============================================================================

WHAT THIS FILE DOES (in plain language):
----------------------------------------
Give it one or more face photos and it tells you which basic emotion each face
shows (anger, disgust, fear, happiness, sadness, surprise). It finds the 468
face-mesh points, compares the face's shape with the average shape of each
emotion (built by build_corpus.py), and prints the best match together with
how sure it is.

HOW TO RUN:
-----------
  python classify.py face.jpg
  python classify.py a.jpg b.png --corpus out --json
  python classify.py --show-config

EXIT CODES:
-----------
  0  every image was classified
  2  at least one image had no detectable face (or could not be read)
  1  the classifier could not start (e.g. no reference corpus)
=============================================================================
"""

# ---------------------------------------------------------------------------
# Step 1: Load environment variables from .env (before config is imported)
# ---------------------------------------------------------------------------
from pathlib import Path
from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent / ".env")

import argparse
import json
import logging
import sys

import config
from emotion_classifier import ClassificationResult, EmotionMeshClassifier
from utils.errors import EmotionMeshError


def print_header() -> None:
    print(
        f"\nWeighting: mode={config.WEIGHTING_MODE} gamma={config.WEIGHTING_GAMMA:g} "
        f"topPct={config.WEIGHTING_TOP_PCT:g} minWeight={config.WEIGHTING_MIN_WEIGHT:g}"
    )
    for emotion, threshold in config.FINAL_PROB_OVERRIDE.items():
        print(f"Final-prob override for {emotion}: {threshold * 100:.0f}%")


def print_result(result: ClassificationResult) -> None:
    print("\nImage:", result.source)
    if not result.ok:
        print(f"No prediction: {result.error} ({result.message})")
        return

    record = result.record
    if record.override is not None:
        print(record.override.describe())
    print(
        f"Prediction: {record.label}  "
        f"(strength={record.strength:.3f}, margin={record.margin:.3f}, "
        f"clarity={record.clarity:.3f}, wmse={record.dissimilarities[record.label]:.6e})"
    )
    print(f"Detector: {result.detector}")
    print("\nScores (higher is better):")
    for emotion, prob in record.ranked():
        print(f"  {emotion:<10} prob={prob:.6f}  wmse={record.dissimilarities[emotion]:.6e}")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Classify the facial expression on still images",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python classify.py face.jpg
  python classify.py images/*.jpg --json
  python classify.py face.jpg --corpus out
        """,
    )
    parser.add_argument("images", nargs="*", help="Image files (jpg, png, bmp, webp)")
    parser.add_argument("--corpus", default=None, help=f"Reference corpus directory (default: {config.REFERENCE_CORPUS_DIR})")
    parser.add_argument("--json", action="store_true", help="Print one JSON object per image")
    parser.add_argument("--show-config", action="store_true", help="Print the effective settings and exit")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(levelname)s %(name)s: %(message)s",
    )
    config.warn_missing_config()

    if args.show_config:
        print(json.dumps(config.build_config_response(), indent=2))
        return 0
    if not args.images:
        parser.error("at least one image is required")

    try:
        classifier = EmotionMeshClassifier.from_config(corpus_dir=args.corpus)
    except (EmotionMeshError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    failed = 0
    try:
        if not args.json:
            print_header()
        for result in classifier.classify_batch(args.images):
            if not result.ok:
                failed += 1
            if args.json:
                print(json.dumps(result.to_dict()))
            else:
                print_result(result)
    finally:
        classifier.close()

    return 2 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
