from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from facemark.config import DISTANCE_PAIRS, EXTRACTOR_VERSION, GEOMETRIC_RATIOS, MESH_POINTS, STABLE_KEYPOINTS
from facemark.face.errors import DegenerateGeometryError
from facemark.face.types import Face
from facemark.utils.log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ExtractorConfig:
    # Tag stored alongside every embedding; change it together with any layout field.
    version: str = EXTRACTOR_VERSION
    keypoints: Tuple[int, ...] = STABLE_KEYPOINTS
    distance_pairs: Tuple[Tuple[str, int, int], ...] = DISTANCE_PAIRS
    ratios: Tuple[Tuple[str, str, str], ...] = GEOMETRIC_RATIOS
    # Minimum keypoint count expected from the provider.
    topology_size: int = MESH_POINTS
    # Bounding boxes narrower/shorter than this (pixels) are degenerate.
    min_extent: float = 1e-6


class LandmarkFeatureExtractor:
    """Turns one face's keypoints into a fixed-length geometric embedding.

    Layout (fixed order):
      1. normalized coordinates of `keypoints`: (x - cx) / w, (y - cy) / h
      2. Euclidean distances of `distance_pairs` on normalized coordinates
      3. dimensionless ratios: bbox aspect, then `ratios`

    Translation and scale are removed; rotation is not.
    """

    def __init__(self, config: Optional[ExtractorConfig] = None):
        self.config = config or ExtractorConfig()
        names = [name for name, _, _ in self.config.distance_pairs]
        if len(set(names)) != len(names):
            raise ValueError("distance pair names must be unique")
        self._pair_pos: Dict[str, int] = {name: i for i, name in enumerate(names)}
        for ratio_name, num, den in self.config.ratios:
            if num not in self._pair_pos or den not in self._pair_pos:
                raise ValueError(f"ratio {ratio_name!r} references an unknown distance pair")
        used = list(self.config.keypoints) + [i for _, a, b in self.config.distance_pairs for i in (a, b)]
        self._max_index = max(used) if used else -1

    @property
    def version(self) -> str:
        return self.config.version

    @property
    def segments(self) -> Tuple[int, int, int]:
        """Sizes of (coordinates, distances, ratios)."""
        return (
            2 * len(self.config.keypoints),
            len(self.config.distance_pairs),
            1 + len(self.config.ratios),
        )

    @property
    def dimension(self) -> int:
        return int(sum(self.segments))

    def extract(self, face: Face) -> np.ndarray:
        """Return the embedding of `face`; raises DegenerateGeometryError on unusable geometry."""
        pts = np.asarray(face.keypoints, dtype=np.float64).reshape(-1, 2)
        if pts.shape[0] <= self._max_index:
            raise DegenerateGeometryError(
                f"face has {pts.shape[0]} keypoints, extractor needs index {self._max_index}"
            )
        if not np.all(np.isfinite(pts)):
            raise DegenerateGeometryError("non-finite keypoint coordinates")

        min_x, min_y = pts.min(axis=0)
        max_x, max_y = pts.max(axis=0)
        width = float(max_x - min_x)
        height = float(max_y - min_y)
        if width <= self.config.min_extent or height <= self.config.min_extent:
            raise DegenerateGeometryError(f"degenerate bounding box: width={width:.6f}, height={height:.6f}")

        center = np.array([(min_x + max_x) * 0.5, (min_y + max_y) * 0.5], dtype=np.float64)
        scale = np.array([width, height], dtype=np.float64)
        # Every keypoint normalized once; subsets and pairs index into this.
        norm = (pts - center) / scale

        coords = norm[list(self.config.keypoints)].reshape(-1)

        dists = np.empty((len(self.config.distance_pairs),), dtype=np.float64)
        for i, (_, a, b) in enumerate(self.config.distance_pairs):
            dists[i] = float(np.linalg.norm(norm[a] - norm[b]))

        ratios: List[float] = [width / height]
        for ratio_name, num, den in self.config.ratios:
            denom = float(dists[self._pair_pos[den]])
            if denom <= self.config.min_extent:
                raise DegenerateGeometryError(f"ratio {ratio_name!r} has a zero denominator")
            ratios.append(float(dists[self._pair_pos[num]]) / denom)

        emb = np.concatenate([coords, dists, np.asarray(ratios, dtype=np.float64)]).astype(np.float32)
        if not np.all(np.isfinite(emb)):
            raise DegenerateGeometryError("embedding contains non-finite values")
        return emb

    def extract_largest(self, faces: Sequence[Face]) -> Optional[np.ndarray]:
        """Embedding of the largest face, or None when no face was detected."""
        face = pick_largest_face(faces)
        if face is None:
            return None
        return self.extract(face)

    def try_extract(self, face: Face) -> Optional[np.ndarray]:
        """Like `extract` but logs and returns None on degenerate geometry."""
        try:
            return self.extract(face)
        except DegenerateGeometryError as e:
            logger.warning(f"人脸特征提取失败: {e}")
            return None


def pick_largest_face(faces: Sequence[Face]) -> Optional[Face]:
    if not faces:
        return None
    if len(faces) > 1:
        logger.warning(f"Multiple faces detected ({len(faces)}), using the largest one")
    # max() keeps the first face on equal areas.
    return max(faces, key=lambda f: f.area)
