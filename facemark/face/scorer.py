from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from facemark.config import (
    COORDINATE_WEIGHT,
    DISTANCE_PAIRS,
    DISTANCE_WEIGHT,
    GEOMETRIC_RATIOS,
    RATIO_WEIGHT,
    SIMILARITY_SCALE,
)
from facemark.face.errors import ComparisonError
from facemark.utils.log import get_logger
from facemark.utils.math import clamp

logger = get_logger(__name__)


@dataclass(frozen=True)
class ScorerConfig:
    # Distance that maps to similarity 0; calibrate against labelled pairs.
    similarity_scale: float = SIMILARITY_SCALE
    coordinate_weight: float = COORDINATE_WEIGHT
    distance_weight: float = DISTANCE_WEIGHT
    ratio_weight: float = RATIO_WEIGHT
    # Segment sizes counted from the tail of the vector, so weighting still lines up
    # after a truncating comparison.
    n_distances: int = len(DISTANCE_PAIRS)
    n_ratios: int = 1 + len(GEOMETRIC_RATIOS)
    uniform: bool = False


@dataclass(frozen=True)
class Comparison:
    distance: float
    similarity: float
    truncated: bool = False


class DistanceScorer:
    """Normalized weighted RMS distance and its 0..100 similarity mapping."""

    def __init__(self, config: Optional[ScorerConfig] = None):
        self.config = config or ScorerConfig()
        if float(self.config.similarity_scale) <= 0.0:
            raise ValueError("similarity_scale must be positive")

    def weights(self, length: int) -> np.ndarray:
        cfg = self.config
        n = int(length)
        if cfg.uniform:
            return np.ones((n,), dtype=np.float64)
        w = np.full((n,), float(cfg.coordinate_weight), dtype=np.float64)
        ratio_start = max(0, n - int(cfg.n_ratios))
        dist_start = max(0, ratio_start - int(cfg.n_distances))
        w[dist_start:ratio_start] = float(cfg.distance_weight)
        w[ratio_start:] = float(cfg.ratio_weight)
        return w

    def _aligned(self, a, b) -> Tuple[np.ndarray, np.ndarray, bool]:
        va = np.asarray(a, dtype=np.float64).reshape(-1)
        vb = np.asarray(b, dtype=np.float64).reshape(-1)
        truncated = False
        if va.shape[0] != vb.shape[0]:
            n = min(va.shape[0], vb.shape[0])
            logger.warning(f"Embedding length mismatch: {va.shape[0]} vs {vb.shape[0]}, comparing first {n}")
            va = va[:n]
            vb = vb[:n]
            truncated = True
        if va.size == 0:
            raise ComparisonError("cannot compare empty embeddings")
        if not (np.all(np.isfinite(va)) and np.all(np.isfinite(vb))):
            raise ComparisonError("embedding contains non-finite values")
        return va, vb, truncated

    def _distance(self, va: np.ndarray, vb: np.ndarray) -> float:
        w = self.weights(va.shape[0])
        total = float(np.sum(w))
        if total <= 0.0:
            raise ComparisonError("weights sum to zero")
        diff = va - vb
        return float(np.sqrt(float(np.sum(w * diff * diff)) / total))

    def distance(self, a, b) -> float:
        va, vb, _ = self._aligned(a, b)
        return self._distance(va, vb)

    def to_similarity(self, distance: float) -> float:
        return clamp((1.0 - float(distance) / float(self.config.similarity_scale)) * 100.0, 0.0, 100.0)

    def compare(self, a, b) -> Comparison:
        va, vb, truncated = self._aligned(a, b)
        d = self._distance(va, vb)
        return Comparison(distance=d, similarity=self.to_similarity(d), truncated=truncated)
