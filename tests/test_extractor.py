from __future__ import annotations

import numpy as np
import pytest

from facemark.config import DISTANCE_PAIRS, GEOMETRIC_RATIOS, STABLE_KEYPOINTS
from facemark.face.errors import DegenerateGeometryError
from facemark.face.extractor import ExtractorConfig, LandmarkFeatureExtractor, pick_largest_face
from facemark.face.types import Face

from conftest import synthetic_face


def test_dimension_is_fixed_across_faces(face_a, face_b):
    ex = LandmarkFeatureExtractor()
    ea = ex.extract(face_a)
    eb = ex.extract(face_b)
    expected = 2 * len(STABLE_KEYPOINTS) + len(DISTANCE_PAIRS) + 1 + len(GEOMETRIC_RATIOS)
    assert ea.shape == eb.shape == (expected,)
    assert ex.dimension == expected
    assert sum(ex.segments) == expected
    assert ea.dtype == np.float32
    assert not np.allclose(ea, eb)


def test_translation_and_scale_do_not_change_embedding(face_a):
    ex = LandmarkFeatureExtractor()
    moved = Face(keypoints=face_a.keypoints * 2.5 + np.array([40.0, -30.0]))
    np.testing.assert_allclose(ex.extract(face_a), ex.extract(moved), atol=1e-5)


def test_extraction_is_deterministic(face_a):
    ex = LandmarkFeatureExtractor()
    np.testing.assert_array_equal(ex.extract(face_a), ex.extract(face_a))


def test_layout_coordinates_then_distances_then_ratios(face_a):
    ex = LandmarkFeatureExtractor()
    emb = ex.extract(face_a)
    n_coords, n_dists, _ = ex.segments

    x1, y1, x2, y2 = face_a.bbox
    w, h = x2 - x1, y2 - y1
    cx, cy = (x1 + x2) / 2, (y1 + y2) / 2

    first = face_a.keypoints[STABLE_KEYPOINTS[0]]
    assert emb[0] == pytest.approx((first[0] - cx) / w, abs=1e-5)
    assert emb[1] == pytest.approx((first[1] - cy) / h, abs=1e-5)

    _, a, b = DISTANCE_PAIRS[0]
    pa, pb = face_a.keypoints[a], face_a.keypoints[b]
    eye_span = np.hypot((pa[0] - pb[0]) / w, (pa[1] - pb[1]) / h)
    assert emb[n_coords] == pytest.approx(eye_span, abs=1e-5)

    assert emb[n_coords + n_dists] == pytest.approx(w / h, abs=1e-5)


def test_all_coordinates_are_centered(face_a):
    ex = LandmarkFeatureExtractor()
    coords = ex.extract(face_a)[: ex.segments[0]]
    assert np.all(np.abs(coords) <= 0.5 + 1e-6)


def test_zero_width_face_is_degenerate(face_a):
    pts = face_a.keypoints.copy()
    pts[:, 0] = 120.0
    with pytest.raises(DegenerateGeometryError):
        LandmarkFeatureExtractor().extract(Face(keypoints=pts))


def test_zero_height_face_is_degenerate(face_a):
    pts = face_a.keypoints.copy()
    pts[:, 1] = 80.0
    with pytest.raises(DegenerateGeometryError):
        LandmarkFeatureExtractor().extract(Face(keypoints=pts))


def test_non_finite_keypoints_are_rejected(face_a):
    pts = face_a.keypoints.copy()
    pts[5, 0] = np.nan
    with pytest.raises(DegenerateGeometryError):
        LandmarkFeatureExtractor().extract(Face(keypoints=pts))


def test_too_few_keypoints_is_degenerate():
    face = Face.from_points([(0, 0), (10, 10), (20, 5)])
    with pytest.raises(DegenerateGeometryError):
        LandmarkFeatureExtractor().extract(face)


def test_try_extract_returns_none_on_degenerate(face_a):
    pts = np.zeros_like(face_a.keypoints)
    assert LandmarkFeatureExtractor().try_extract(Face(keypoints=pts)) is None


def test_extract_largest_handles_no_face_and_picks_biggest():
    ex = LandmarkFeatureExtractor()
    assert ex.extract_largest([]) is None

    small = synthetic_face(3, lo=0.0, hi=50.0)
    big = synthetic_face(4, lo=0.0, hi=200.0)
    assert pick_largest_face([small, big]) is big
    np.testing.assert_array_equal(ex.extract_largest([small, big]), ex.extract(big))


def test_config_rejects_unknown_ratio_reference():
    cfg = ExtractorConfig(ratios=(("bogus", "eye_span", "nope"),))
    with pytest.raises(ValueError):
        LandmarkFeatureExtractor(cfg)


def test_custom_config_changes_dimension(face_a):
    cfg = ExtractorConfig(version="tiny", keypoints=(33, 263, 1), distance_pairs=(("eye_span", 33, 263),), ratios=())
    ex = LandmarkFeatureExtractor(cfg)
    assert ex.extract(face_a).shape == (6 + 1 + 1,)
    assert ex.version == "tiny"
