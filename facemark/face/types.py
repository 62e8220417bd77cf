from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from facemark.utils.math import points_bbox


class Keypoint(NamedTuple):
    x: float
    y: float


@dataclass
class Face:
    """One face from the landmark provider.

    `keypoints` is an (N, 2) float array in image pixel space; row i is always the
    same semantic landmark (provider topology).
    """

    keypoints: np.ndarray
    score: Optional[float] = None

    def __post_init__(self) -> None:
        self.keypoints = np.asarray(self.keypoints, dtype=np.float64).reshape(-1, 2)

    @classmethod
    def from_points(cls, points: Iterable[Sequence[float]], score: Optional[float] = None) -> "Face":
        return cls(keypoints=np.array([[float(p[0]), float(p[1])] for p in points], dtype=np.float64), score=score)

    def __len__(self) -> int:
        return int(self.keypoints.shape[0])

    def keypoint(self, index: int) -> Keypoint:
        x, y = self.keypoints[int(index)]
        return Keypoint(float(x), float(y))

    @property
    def bbox(self) -> Tuple[float, float, float, float]:
        """(min_x, min_y, max_x, max_y) over all keypoints."""
        return points_bbox(self.keypoints)

    @property
    def area(self) -> float:
        x1, y1, x2, y2 = self.bbox
        return max(0.0, x2 - x1) * max(0.0, y2 - y1)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass
class EnrolledPerson:
    id: int
    name: str
    embedding: np.ndarray
    extractor_version: Optional[str] = None
    image_ref: Optional[str] = None
    description: Optional[str] = None
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "name": str(self.name),
            "embedding": [float(x) for x in np.asarray(self.embedding).reshape(-1)],
            "extractor_version": self.extractor_version,
            "image_ref": self.image_ref,
            "description": self.description,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class MatchResult:
    person_id: int
    name: str
    similarity: float  # 0..100
    distance: float


@dataclass
class MatchOutcome:
    """Matcher diagnostics; `result` is None when nothing cleared the threshold."""

    result: Optional[MatchResult] = None
    threshold: Optional[float] = None  # effective, in percent
    best_distance: Optional[float] = None
    second_distance: Optional[float] = None
    best_similarity: Optional[float] = None
    compared: int = 0
    skipped: int = 0
    version_mismatches: int = 0
    truncated: int = 0

    @property
    def matched(self) -> bool:
        return self.result is not None
