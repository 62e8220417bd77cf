from __future__ import annotations

from typing import Tuple

import numpy as np


def points_bbox(points: np.ndarray) -> Tuple[float, float, float, float]:
    """Axis-aligned (min_x, min_y, max_x, max_y) of an (N, 2) point array."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    if pts.shape[0] == 0:
        raise ValueError("empty point set")
    mins = pts.min(axis=0)
    maxs = pts.max(axis=0)
    return float(mins[0]), float(mins[1]), float(maxs[0]), float(maxs[1])


def square_box_xywh(bbox_xyxy, scale: float = 1.5) -> Tuple[float, float, float, float]:
    """Square box centered on a bbox, side = max(w, h) * scale; returns (x, y, size, size)."""
    x1, y1, x2, y2 = [float(v) for v in bbox_xyxy]
    cx = (x1 + x2) * 0.5
    cy = (y1 + y2) * 0.5
    size = max(x2 - x1, y2 - y1) * float(scale)
    return cx - size * 0.5, cy - size * 0.5, size, size


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, float(value)))
