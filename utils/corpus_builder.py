"""
Reference Corpus Builder

Offline tooling that produces the per-emotion prototypes the classifier
compares against:

  images/<label>/*.jpg  --extract-->  meshes.jsonl  --average-->  avg_dist_<label>.csv

Extraction uses the same letterbox and detector cascade as classification,
and averaging uses the same center_scale normalization, so prototypes and
query faces share one coordinate convention.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

import config
from utils.detector_cascade import LandmarkDetectorCascade
from utils.errors import DetectorBackendError
from utils.geometry import landmark_distance_matrix
from utils.image_preprocessor import letterbox, load_image
from utils.reference_corpus import write_distance_matrix_csv

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".bmp", ".webp")


@dataclass
class MeshRecord:
    """One extracted face mesh (one JSONL line)."""
    file: str
    label: str
    width: int  # source image size, before letterboxing
    height: int
    mesh: List[List[float]]  # [[x, y], ...] in canvas pixels
    detector: str


@dataclass
class ExtractionStats:
    saved: int = 0
    failed: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list)  # (path, reason)


def list_labeled_images(root: str, emotions: Optional[Sequence[str]] = None) -> List[Tuple[str, str]]:
    """
    Find images in per-label sub-folders of root.

    Folder names are matched case-insensitively ("Happiness" and "happiness"
    both map to "happiness"); folders outside the class set are ignored.

    Returns:
        Sorted list of (image_path, label)
    """
    if not os.path.isdir(root):
        return []
    labels = set(emotions) if emotions is not None else set(config.get_emotion_classes())
    items = []
    for folder in sorted(os.listdir(root)):
        folder_path = os.path.join(root, folder)
        label = folder.lower()
        if not os.path.isdir(folder_path) or label not in labels:
            continue
        for name in sorted(os.listdir(folder_path)):
            if name.lower().endswith(IMAGE_EXTENSIONS):
                items.append((os.path.join(folder_path, name), label))
    return items


def extract_meshes(
    items: Iterable[Tuple[str, str]],
    cascade: LandmarkDetectorCascade,
    target: int = config.CANVAS_TARGET_SIZE,
    pad_frac: float = config.CANVAS_PAD_FRAC,
    stats: Optional[ExtractionStats] = None,
) -> Iterator[MeshRecord]:
    """
    Detect a face mesh on every image.

    Unreadable images, images without a face and backend errors are counted in
    stats and logged; they never stop the run.
    """
    stats = stats if stats is not None else ExtractionStats()
    for path, label in items:
        try:
            image = load_image(path)
            canvas = letterbox(image, target, pad_frac)
            detection = cascade.detect(canvas)
        except (ValueError, DetectorBackendError) as e:
            stats.failed += 1
            stats.failures.append((path, str(e)))
            logger.error("error on %s: %s", path, e)
            continue

        if detection is None:
            stats.failed += 1
            stats.failures.append((path, "no face"))
            logger.warning("no face for %s", path)
            continue

        stats.saved += 1
        height, width = image.shape[:2]
        yield MeshRecord(
            file=os.path.basename(path),
            label=label,
            width=int(width),
            height=int(height),
            mesh=[[float(x), float(y)] for x, y in detection.landmarks],
            detector=detection.detector,
        )


def write_meshes_jsonl(path: str, records: Iterable[MeshRecord]) -> int:
    """Write one JSON object per line. Returns the number of records written."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    count = 0
    with open(path, "w", encoding="utf-8") as f:
        for record in records:
            f.write(json.dumps(asdict(record)) + "\n")
            count += 1
    return count


def read_meshes_jsonl(path: str) -> List[MeshRecord]:
    """Read records written by write_meshes_jsonl. Blank or invalid lines are skipped."""
    records = []
    with open(path, "r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
                records.append(MeshRecord(
                    file=str(data.get("file", "")),
                    label=str(data["label"]).lower(),
                    width=int(data.get("width", 0)),
                    height=int(data.get("height", 0)),
                    mesh=data["mesh"],
                    detector=str(data.get("detector", "")),
                ))
            except (ValueError, KeyError, TypeError) as e:
                logger.warning("Skipping %s line %d: %s", path, line_no, e)
    return records


def average_distance_matrices(
    records: Iterable[MeshRecord],
    emotions: Optional[Sequence[str]] = None,
) -> Dict[str, np.ndarray]:
    """
    Average the normalized distance matrix of every mesh, per label.

    Meshes whose point count differs from the first usable mesh are skipped.

    Returns:
        label -> N x N average distance matrix (labels without meshes omitted)
    """
    labels = list(emotions) if emotions is not None else list(config.get_emotion_classes())
    sums: Dict[str, np.ndarray] = {}
    counts: Dict[str, int] = {}
    n_points = None

    for record in records:
        if record.label not in labels:
            continue
        try:
            matrix = landmark_distance_matrix(record.mesh)
        except ValueError as e:
            logger.warning("Skipping mesh %s (%s): %s", record.file, record.label, e)
            continue
        if n_points is None:
            n_points = matrix.shape[0]
        elif matrix.shape[0] != n_points:
            logger.warning(
                "Skipping mesh %s (%s): %d points, expected %d",
                record.file, record.label, matrix.shape[0], n_points,
            )
            continue
        if record.label in sums:
            sums[record.label] += matrix
        else:
            sums[record.label] = matrix.copy()
        counts[record.label] = counts.get(record.label, 0) + 1

    averages = {}
    for label in labels:
        if label in sums:
            averages[label] = sums[label] / counts[label]
            logger.info("%s: averaged %d meshes", label, counts[label])
    return averages


def write_reference_corpus(
    out_dir: str,
    matrices: Dict[str, np.ndarray],
    filename_template: str = config.REFERENCE_FILENAME_TEMPLATE,
) -> List[str]:
    """Write one prototype CSV per label. Returns the written paths."""
    os.makedirs(out_dir, exist_ok=True)
    paths = []
    for label, matrix in matrices.items():
        path = os.path.join(out_dir, filename_template.format(emotion=label))
        write_distance_matrix_csv(path, matrix)
        paths.append(path)
    return paths
