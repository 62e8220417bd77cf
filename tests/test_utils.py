from __future__ import annotations

import numpy as np
import pytest

from facemark.config import UNKNOWN_LABEL
from facemark.face.errors import MalformedEmbeddingError
from facemark.face.recognizer import FaceDetection
from facemark.utils.draw import draw_detections
from facemark.utils.math import clamp, points_bbox, square_box_xywh
from facemark.utils.serializer import decode_embedding, serialize_detection, serialize_objects
from facemark.video.object_detector import ObjectDet


def test_decode_embedding_accepts_list_json_and_bytes():
    np.testing.assert_allclose(decode_embedding([1, 2]), [1.0, 2.0])
    np.testing.assert_allclose(decode_embedding("[0.5, 1.5]"), [0.5, 1.5])
    np.testing.assert_allclose(decode_embedding(b"[3]"), [3.0])
    assert decode_embedding([1, 2]).dtype == np.float32


@pytest.mark.parametrize("bad", [None, "", "[]", "nope", [[1, 2]], ["a"], [float("nan")]])
def test_decode_embedding_rejects_malformed(bad):
    with pytest.raises(MalformedEmbeddingError):
        decode_embedding(bad)


def test_square_box_is_centered_and_scaled():
    assert square_box_xywh((10, 20, 50, 40), scale=1.5) == pytest.approx((0.0, 0.0, 60.0, 60.0))
    assert points_bbox(np.array([[3, 4], [1, 9], [2, 2]])) == (1.0, 2.0, 3.0, 9.0)
    with pytest.raises(ValueError):
        points_bbox(np.zeros((0, 2)))
    assert clamp(120, 0, 100) == 100
    assert clamp(-3, 0, 100) == 0


def test_serialize_detection_adds_normalized_bbox():
    det = FaceDetection(bbox=(10, 20, 50, 60), box=(0, 10, 60, 60), name="Alice", similarity=87.26, person_id=3)
    ser = serialize_detection(det, (100, 200))
    assert ser["name"] == "Alice"
    assert ser["person_id"] == 3
    assert ser["similarity"] == 87.3
    assert ser["bbox_norm"] == [0.05, 0.2, 0.25, 0.6]
    assert "bbox_norm" not in serialize_detection(det)


def test_serialize_objects_uses_percent_scores():
    objs = [ObjectDet(label="cup", score=0.456, bbox=[0, 0, 1, 1])]
    assert serialize_objects(objs) == [{"class": "cup", "score": 46}]
    assert serialize_objects(None) == []


def test_draw_detections_marks_frame_in_place():
    image = np.zeros((200, 200, 3), dtype=np.uint8)
    faces = [
        FaceDetection(bbox=(40, 40, 80, 80), box=(30, 30, 60, 60), name="Alice", similarity=90.0, person_id=1),
        FaceDetection(bbox=(120, 120, 150, 150), box=(112.5, 112.5, 45, 45), name=UNKNOWN_LABEL, similarity=0.0),
    ]
    objs = [ObjectDet(label="book", score=0.7, bbox=[5, 5, 25, 25])]
    out = draw_detections(image, faces, objs)
    assert out is image
    assert image.any()
    assert faces[0].known and not faces[1].known
