"""Enrollment quality gate and embedding sanity scores.

Scores are on a 0..100 scale and start from 100; each issue subtracts a fixed penalty.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Sequence, Tuple

import numpy as np

from facemark.config import UNKNOWN_LABEL
from facemark.face.errors import MalformedEmbeddingError
from facemark.face.types import Face
from facemark.utils.serializer import decode_embedding


@dataclass
class QualityReport:
    valid: bool
    score: float
    issues: List[str] = field(default_factory=list)


@dataclass
class TrainingReport:
    success: bool
    total: int
    valid: int
    invalid: int
    errors: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class QualityGateConfig:
    min_face_ratio: float = 0.1
    max_face_ratio: float = 0.8
    max_center_offset: float = 0.3
    multi_face_penalty: float = 20.0
    small_face_penalty: float = 30.0
    large_face_penalty: float = 10.0
    off_center_penalty: float = 15.0
    pass_score: float = 50.0


def assess_enrollment_photo(
    faces: Sequence[Face],
    image_shape: Tuple[int, ...],
    config: QualityGateConfig = QualityGateConfig(),
) -> QualityReport:
    """Check face count, face/image area ratio and centering of an enrollment photo.

    The first face is the one that gets enrolled; `image_shape` is (h, w, ...).
    """
    if not faces:
        return QualityReport(valid=False, score=0.0, issues=["未检测到人脸"])

    issues: List[str] = []
    score = 100.0

    if len(faces) > 1:
        issues.append("检测到多张人脸，将使用第一张")
        score -= config.multi_face_penalty

    img_h, img_w = float(image_shape[0]), float(image_shape[1])
    if img_h <= 0 or img_w <= 0:
        return QualityReport(valid=False, score=0.0, issues=["图像尺寸无效"])

    x1, y1, x2, y2 = faces[0].bbox
    face_ratio = ((x2 - x1) * (y2 - y1)) / (img_w * img_h)
    if face_ratio < config.min_face_ratio:
        issues.append("人脸过小，建议使用更清晰的照片")
        score -= config.small_face_penalty
    if face_ratio > config.max_face_ratio:
        issues.append("人脸过大，建议保留更多背景")
        score -= config.large_face_penalty

    offset_x = abs((x1 + x2) * 0.5 - img_w * 0.5) / img_w
    offset_y = abs((y1 + y2) * 0.5 - img_h * 0.5) / img_h
    if offset_x > config.max_center_offset or offset_y > config.max_center_offset:
        issues.append("人脸未居中")
        score -= config.off_center_penalty

    return QualityReport(valid=score >= config.pass_score, score=score, issues=issues)


def embedding_quality(embedding) -> float:
    """Heuristic 0..100 score: penalizes non-finite values, low variance and narrow range."""
    arr = np.asarray(embedding, dtype=np.float64).reshape(-1)
    if arr.size == 0:
        return 0.0

    score = 100.0
    finite = np.isfinite(arr)
    if not np.all(finite):
        score -= 50.0
        arr = arr[finite]
        if arr.size == 0:
            return max(0.0, score)

    variance = float(np.var(arr))
    if variance < 0.01:
        score -= 30.0
    elif variance < 0.05:
        score -= 15.0

    value_range = float(np.max(arr) - np.min(arr))
    if value_range < 0.5:
        score -= 20.0
    elif value_range < 1.0:
        score -= 10.0

    return max(0.0, min(100.0, score))


def validate_gallery(persons: Iterable, min_quality: float = 30.0) -> TrainingReport:
    """Check every enrolled embedding before a recognition session."""
    report = TrainingReport(success=True, total=0, valid=0, invalid=0)
    for person in persons:
        report.total += 1
        name = getattr(person, "name", None) or UNKNOWN_LABEL
        try:
            emb = decode_embedding(getattr(person, "embedding", None))
        except MalformedEmbeddingError as e:
            report.invalid += 1
            report.errors.append(f"{name}: 缺少特征向量 ({e})")
            continue
        quality = embedding_quality(emb)
        if quality < float(min_quality):
            report.invalid += 1
            report.errors.append(f"{name}: 特征质量过低 ({quality:.0f})")
            continue
        report.valid += 1

    report.success = report.valid > 0 and report.invalid == 0
    return report
