"""
Reference Corpus Loader

Loads one precomputed average distance matrix ("prototype") per emotion from
CSV files produced offline (see utils/corpus_builder.py). The CSVs are often
exported with a leading row-index column and a UTF-8 byte-order mark; both are
detected and stripped.

A class whose file is missing is simply left out. A malformed file or one with
the wrong landmark count is dropped with a warning. Loading nothing at all is
fatal (EmptyReferenceCorpus), since scoring needs prototypes to compare with.
"""

import csv
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np

import config
from utils.errors import DimensionMismatch, EmptyReferenceCorpus, MalformedReferenceFile

logger = logging.getLogger(__name__)

BOM = "\ufeff"


@dataclass(frozen=True)
class ReferenceCorpus:
    """
    Emotion -> prototype distance matrix, loaded once per run.

    Prototype arrays are read-only; classification never mutates them.
    """
    prototypes: Dict[str, np.ndarray] = field(default_factory=dict)

    @property
    def emotions(self) -> List[str]:
        return list(self.prototypes.keys())

    @property
    def n_points(self) -> int:
        for matrix in self.prototypes.values():
            return int(matrix.shape[0])
        return 0

    def __len__(self) -> int:
        return len(self.prototypes)


def _has_index_column(header: List[str]) -> bool:
    if not header:
        return False
    first = header[0].strip()
    if first == "" or "unnamed" in first.lower():
        return True
    return len(header) > 1 and first == header[1].strip()


def _is_numeric_row(cells: List[str]) -> bool:
    try:
        for cell in cells:
            float(cell)
    except ValueError:
        return False
    return bool(cells)


def load_distance_matrix_csv(path: str) -> np.ndarray:
    """
    Parse one prototype CSV into a square float64 matrix.

    The first non-blank line is a header (column labels) and is discarded,
    unless the file is a bare numeric N x N block. A leading row-index column
    is dropped when the header's first cell is empty, contains "unnamed", or
    repeats the second cell.

    Raises:
        MalformedReferenceFile: If the file is empty, non-numeric, ragged or not square
    """
    try:
        with open(path, "r", encoding="utf-8", newline="") as f:
            text = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise MalformedReferenceFile(f"Cannot read {path}: {e}") from e

    if text.startswith(BOM):
        text = text[len(BOM):]
    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) < 2:
        raise MalformedReferenceFile(f"CSV empty: {path}")

    rows = list(csv.reader(lines))
    if _is_numeric_row(rows[0]) and len(rows) == len(rows[0]):
        # bare N x N matrix without a header line
        has_index, data_start = False, 0
    else:
        has_index, data_start = _has_index_column(rows[0]), 1

    values = []
    for line_no, parts in enumerate(rows[data_start:], start=data_start + 1):
        nums = parts[1:] if has_index else parts
        try:
            values.append([float(v) for v in nums])
        except ValueError as e:
            raise MalformedReferenceFile(f"{path}: non-numeric value on line {line_no}: {e}") from e

    n = len(values)
    if any(len(row) != n for row in values):
        widths = sorted({len(row) for row in values})
        raise MalformedReferenceFile(f"{path}: expected {n}x{n} matrix, got rows of width {widths}")

    matrix = np.array(values, dtype=np.float64)
    if not np.all(np.isfinite(matrix)):
        raise MalformedReferenceFile(f"{path}: matrix contains NaN or infinite values")
    return matrix


def write_distance_matrix_csv(path: str, matrix: np.ndarray) -> None:
    """Write a matrix with a column-label header and a leading row-index column."""
    n = matrix.shape[0]
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow([""] + [str(j) for j in range(n)])
        for i in range(n):
            writer.writerow([str(i)] + [repr(float(v)) for v in matrix[i]])


def load_reference_corpus(
    corpus_dir: str = config.REFERENCE_CORPUS_DIR,
    emotions: Optional[Sequence[str]] = None,
    expected_points: Optional[int] = config.LANDMARK_COUNT,
    filename_template: str = config.REFERENCE_FILENAME_TEMPLATE,
) -> ReferenceCorpus:
    """
    Load every available prototype for the given emotion classes.

    Args:
        corpus_dir: Directory holding the per-class CSV files
        emotions: Class names to look for (default: config.get_emotion_classes())
        expected_points: Required N; None accepts the N of the first loaded class
        filename_template: File name pattern with an "{emotion}" placeholder

    Returns:
        ReferenceCorpus with read-only prototypes in class order

    Raises:
        EmptyReferenceCorpus: If no class could be loaded
    """
    classes = list(emotions) if emotions is not None else list(config.get_emotion_classes())
    prototypes: Dict[str, np.ndarray] = {}
    n_expected = expected_points

    for emotion in classes:
        path = os.path.join(corpus_dir, filename_template.format(emotion=emotion))
        if not os.path.isfile(path):
            logger.info("No prototype for %s (%s not found)", emotion, path)
            continue
        try:
            matrix = load_distance_matrix_csv(path)
            if n_expected is not None and matrix.shape[0] != n_expected:
                raise DimensionMismatch(
                    f"{path}: prototype is {matrix.shape[0]}x{matrix.shape[0]}, expected {n_expected}x{n_expected}",
                    expected=n_expected,
                    actual=matrix.shape[0],
                )
        except (MalformedReferenceFile, DimensionMismatch) as e:
            logger.warning("Dropping %s prototype: %s", emotion, e)
            continue

        if n_expected is None:
            n_expected = matrix.shape[0]
        matrix.setflags(write=False)
        prototypes[emotion] = matrix

    if not prototypes:
        raise EmptyReferenceCorpus(
            f"No usable {filename_template.format(emotion='*')} found in {corpus_dir}. "
            "Run build_corpus.py first."
        )

    logger.info("Loaded %d prototypes (%s), N=%d", len(prototypes), ", ".join(prototypes), n_expected)
    return ReferenceCorpus(prototypes=prototypes)
