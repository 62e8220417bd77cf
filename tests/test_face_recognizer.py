from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pytest

from facemark.config import UNKNOWN_LABEL
from facemark.face.errors import EnrollmentRejected
from facemark.face.recognizer import FaceRecognizer
from facemark.face.types import Face

from conftest import FakeProvider, synthetic_face


def _recognizer(tmp_path: Path, faces, **kwargs) -> FaceRecognizer:
    return FaceRecognizer(gallery_path=str(tmp_path / "gallery"), provider=FakeProvider(faces), **kwargs)


def test_enroll_then_recognize_same_face(tmp_path: Path, face_a, blank_image):
    rec = _recognizer(tmp_path, [face_a])
    person = rec.enroll(blank_image, "张三")

    assert person.id == 1
    assert person.extractor_version == rec.extractor.version
    assert (rec.gallery_path / person.image_ref).exists()
    assert (rec.gallery_path / "gallery.json").exists()

    detections = rec.recognize(blank_image)
    assert len(detections) == 1
    det = detections[0]
    assert det.name == "张三"
    assert det.person_id == 1
    assert det.similarity == pytest.approx(100.0)

    x, y, w, h = det.box
    x1, y1, x2, y2 = det.bbox
    assert w == h == pytest.approx(max(x2 - x1, y2 - y1) * 1.5)
    assert x + w / 2 == pytest.approx((x1 + x2) / 2)


def test_recognize_with_empty_gallery_reports_unknown(tmp_path: Path, face_a, blank_image):
    rec = _recognizer(tmp_path, [face_a])
    detections = rec.recognize(blank_image)
    assert [d.name for d in detections] == [UNKNOWN_LABEL]
    assert detections[0].person_id is None
    assert detections[0].similarity == 0.0


def test_no_face_means_no_detections(tmp_path: Path, blank_image):
    rec = _recognizer(tmp_path, [])
    assert rec.recognize(blank_image) == []


def test_degenerate_face_does_not_abort_frame(tmp_path: Path, face_a, blank_image):
    rec = _recognizer(tmp_path, [face_a])
    rec.enroll(blank_image, "Alice")

    flat = face_a.keypoints.copy()
    flat[:, 1] = 200.0
    rec._provider.get().faces = [Face(keypoints=flat), face_a]

    detections = rec.recognize(blank_image)
    assert [d.name for d in detections] == [UNKNOWN_LABEL, "Alice"]


def test_enrollment_without_face_is_rejected(tmp_path: Path, blank_image):
    rec = _recognizer(tmp_path, [])
    with pytest.raises(EnrollmentRejected) as exc:
        rec.enroll(blank_image, "Nobody")
    assert exc.value.score == 0.0
    assert len(rec.gallery) == 0


def test_enrollment_of_tiny_off_center_face_in_crowd_is_rejected(tmp_path: Path, blank_image):
    tiny = synthetic_face(5, lo=0.0, hi=40.0)
    rec = _recognizer(tmp_path, [tiny, synthetic_face(6)])
    with pytest.raises(EnrollmentRejected) as exc:
        rec.enroll(blank_image, "Crowd")
    assert len(exc.value.issues) == 3


def test_gallery_persists_across_instances(tmp_path: Path, face_a, face_b, blank_image):
    rec = _recognizer(tmp_path, [face_a])
    rec.enroll(blank_image, "Alice")
    rec._provider.get().faces = [face_b]
    rec.enroll(blank_image, "Bob")

    rec2 = _recognizer(tmp_path, [face_b])
    assert [p.name for p in rec2.gallery] == ["Alice", "Bob"]
    assert rec2.recognize(blank_image)[0].name == "Bob"


def test_delete_person_removes_record_and_image(tmp_path: Path, face_a, blank_image):
    rec = _recognizer(tmp_path, [face_a])
    person = rec.enroll(blank_image, "Alice")
    image_fp = rec.gallery_path / person.image_ref

    assert rec.delete_person(person.id) is True
    assert not image_fp.exists()
    assert rec.delete_person(person.id) is False
    data = json.loads((rec.gallery_path / "gallery.json").read_text(encoding="utf-8"))
    assert data["persons"] == []


def test_reenroll_image_replaces_embedding(tmp_path: Path, face_a, face_b, blank_image):
    import cv2

    img_fp = tmp_path / "new.jpg"
    cv2.imwrite(str(img_fp), blank_image)

    rec = _recognizer(tmp_path, [face_a])
    person = rec.enroll(blank_image, "Alice")
    before = person.embedding.copy()

    rec._provider.get().faces = [face_b]
    rec.reenroll_image(person.id, img_fp)
    after = rec.gallery.get(person.id).embedding
    assert not np.allclose(before, after)
    np.testing.assert_allclose(after, rec.extractor.extract(face_b))


def test_stale_version_entries_are_not_matched(tmp_path: Path, face_a, blank_image):
    rec = _recognizer(tmp_path, [face_a])
    emb = rec.extractor.extract(face_a)
    rec.gallery.enroll("Legacy", emb, extractor_version="mesh468-v1")

    outcome = rec.identify(emb)
    assert outcome.result is None
    assert outcome.version_mismatches == 1
    assert rec.get_gallery_info()["stale_persons"] == [1]


def test_threshold_applies_to_identify(tmp_path: Path, face_a, blank_image):
    rec = _recognizer(tmp_path, [face_a], threshold=1.5)
    rec.enroll(blank_image, "Alice")
    emb = rec.extractor.extract(face_a)
    # single candidate: 1.5 * 0.6 = 90% needed; a uniform 0.5 offset scores 80%
    near = rec.identify(emb)
    far = rec.identify(emb + 0.5)
    assert near.result is not None
    assert far.result is None
    assert far.best_similarity == pytest.approx(80.0)
    assert far.threshold == pytest.approx(90.0)


def test_process_writes_annotated_image(tmp_path: Path, face_a, blank_image):
    import cv2

    src = tmp_path / "in.jpg"
    out = tmp_path / "out.jpg"
    cv2.imwrite(str(src), blank_image)

    rec = _recognizer(tmp_path, [face_a])
    rec.enroll(blank_image, "Alice")
    result_image, detections = rec.process(str(src), str(out))

    assert out.exists()
    assert detections[0].name == "Alice"
    assert result_image.shape == blank_image.shape
    assert result_image.any()


def test_analyze_gallery_quality_lists_pairs(tmp_path: Path, face_a, face_b, blank_image):
    rec = _recognizer(tmp_path, [face_a])
    rec.enroll(blank_image, "Alice")
    rec._provider.get().faces = [face_b]
    rec.enroll(blank_image, "Bob")

    pairs = rec.analyze_gallery_quality()
    assert len(pairs) == 1
    assert pairs[0][:2] == ("Alice", "Bob")
    assert 0.0 <= pairs[0][2] < 100.0


def test_scorer_segments_follow_custom_extractor_layout(tmp_path: Path, face_a):
    from facemark.face.extractor import ExtractorConfig
    from facemark.face.scorer import ScorerConfig

    cfg = ExtractorConfig(version="tiny", keypoints=(33, 263, 1), distance_pairs=(("eye_span", 33, 263),), ratios=())
    rec = _recognizer(tmp_path, [face_a], extractor_config=cfg)
    assert rec.extractor.segments == (6, 1, 1)
    np.testing.assert_array_equal(rec.matcher.scorer.weights(8), [1, 1, 1, 1, 1, 1, 3, 5])

    with pytest.raises(ValueError):
        _recognizer(tmp_path, [face_a], extractor_config=cfg, scorer_config=ScorerConfig())
    uniform = _recognizer(tmp_path, [face_a], extractor_config=cfg, scorer_config=ScorerConfig(uniform=True))
    np.testing.assert_array_equal(uniform.matcher.scorer.weights(8), np.ones(8))


def test_enroll_with_blank_name_leaves_no_image(tmp_path: Path, face_a, blank_image):
    rec = _recognizer(tmp_path, [face_a])
    with pytest.raises(ValueError):
        rec.enroll(blank_image, "   ")
    assert len(rec.gallery) == 0
    images_dir = rec.gallery_path / "images"
    assert not images_dir.exists() or list(images_dir.iterdir()) == []


def test_failed_save_rolls_back_enrollment(tmp_path: Path, face_a, blank_image, monkeypatch):
    rec = _recognizer(tmp_path, [face_a])

    def broken_save(gallery_dir):
        raise OSError("disk full")

    monkeypatch.setattr(rec.gallery, "save", broken_save)
    with pytest.raises(OSError):
        rec.enroll(blank_image, "Alice")
    assert len(rec.gallery) == 0
    assert list((rec.gallery_path / "images").iterdir()) == []


def test_reenroll_replaces_stored_photo(tmp_path: Path, face_a, face_b, blank_image):
    import time

    import cv2

    img_fp = tmp_path / "new.jpg"
    cv2.imwrite(str(img_fp), blank_image)
    rec = _recognizer(tmp_path, [face_a])
    person = rec.enroll(blank_image, "Alice")
    old_fp = rec.gallery_path / person.image_ref

    time.sleep(0.01)
    rec._provider.get().faces = [face_b]
    person = rec.reenroll_image(person.id, img_fp)

    assert not old_fp.exists()
    assert (rec.gallery_path / person.image_ref).exists()
    assert len(list((rec.gallery_path / "images").iterdir())) == 1


def test_failed_reenroll_keeps_previous_embedding(tmp_path: Path, face_a, face_b, blank_image, monkeypatch):
    import time

    import cv2

    img_fp = tmp_path / "new.jpg"
    cv2.imwrite(str(img_fp), blank_image)
    rec = _recognizer(tmp_path, [face_a])
    person = rec.enroll(blank_image, "Alice")
    before = person.embedding.copy()
    old_ref = person.image_ref

    def broken_save(gallery_dir):
        raise OSError("disk full")

    time.sleep(0.01)
    monkeypatch.setattr(rec.gallery, "save", broken_save)
    rec._provider.get().faces = [face_b]
    with pytest.raises(OSError):
        rec.reenroll_image(person.id, img_fp)

    kept = rec.gallery.get(person.id)
    np.testing.assert_array_equal(kept.embedding, before)
    assert kept.image_ref == old_ref
    assert (rec.gallery_path / old_ref).exists()
