from __future__ import annotations

import sys
from pathlib import Path
from typing import List

import numpy as np
import pytest

# Ensure repo root is on sys.path so tests can import `facemark` and the top-level CLIs.
repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from facemark.config import MESH_POINTS
from facemark.face.provider import LandmarkProvider
from facemark.face.types import Face


def synthetic_face(seed: int = 0, lo: float = 100.0, hi: float = 300.0) -> Face:
    """A random but well-spread 468-point face inside [lo, hi] x [lo, hi]."""
    rng = np.random.default_rng(seed)
    pts = rng.uniform(lo, hi, size=(MESH_POINTS, 2))
    return Face(keypoints=pts)


class FakeProvider(LandmarkProvider):
    def __init__(self, faces: List[Face] = ()):
        self.faces = list(faces)
        self.calls = 0
        self.closed = False

    def detect(self, image_bgr):
        self.calls += 1
        return list(self.faces)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def face_a() -> Face:
    return synthetic_face(1)


@pytest.fixture
def face_b() -> Face:
    return synthetic_face(2)


@pytest.fixture
def blank_image() -> np.ndarray:
    return np.zeros((400, 400, 3), dtype=np.uint8)
