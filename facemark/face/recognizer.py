from __future__ import annotations

import re
import time

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import cv2
import numpy as np

from facemark.config import UNKNOWN_LABEL
from facemark.face.errors import EnrollmentRejected, FaceRecognitionError
from facemark.face.extractor import ExtractorConfig, LandmarkFeatureExtractor
from facemark.face.gallery import Gallery, GalleryConfig
from facemark.face.matcher import LandmarkMatcher, MatcherConfig
from facemark.face.provider import LandmarkProvider, LazyModel, MediaPipeFaceMeshProvider
from facemark.face.quality import QualityGateConfig, assess_enrollment_photo
from facemark.face.scorer import DistanceScorer, ScorerConfig
from facemark.face.types import EnrolledPerson, Face, MatchOutcome
from facemark.utils.draw import draw_detections
from facemark.utils.log import get_logger
from facemark.utils.math import square_box_xywh

logger = get_logger(__name__)

ProviderLike = Union[LandmarkProvider, LazyModel]


@dataclass
class FaceDetection:
    bbox: Tuple[float, float, float, float]  # keypoint bbox, xyxy
    box: Tuple[float, float, float, float]  # square overlay box, xywh
    name: str
    similarity: float
    person_id: Optional[int] = None

    @property
    def known(self) -> bool:
        return self.person_id is not None


def _as_handle(provider: Optional[ProviderLike], factory, name: str) -> LazyModel:
    if provider is None:
        return LazyModel(factory, name=name)
    if isinstance(provider, LazyModel):
        return provider
    return LazyModel(lambda: provider, name=name)


class FaceRecognizer:
    """
    人脸识别器：MediaPipe FaceMesh 关键点 -> 几何特征向量 -> 图库最近邻匹配。

    主要功能：
    1. 录入 / 重新录入 / 删除人员（录入前做照片质量检查）
    2. 单帧识别：返回每张人脸的方框、姓名与相似度
    3. 图库 JSON 持久化（目录中同时保存录入照片）
    """

    def __init__(
        self,
        gallery_path: str = "data/gallery",
        threshold: float = MatcherConfig.base_threshold,
        max_faces: int = 10,
        refine_landmarks: bool = True,
        provider: Optional[ProviderLike] = None,
        image_provider: Optional[ProviderLike] = None,
        extractor_config: Optional[ExtractorConfig] = None,
        scorer_config: Optional[ScorerConfig] = None,
        matcher_config: Optional[MatcherConfig] = None,
        quality_config: Optional[QualityGateConfig] = None,
        autoload: bool = True,
    ):
        """
        初始化人脸识别器

        Args:
            gallery_path: 图库目录（gallery.json + images/）
            threshold: 基础匹配阈值（相似度百分比 / 100），默认 0.35
            max_faces: 每帧最多检测的人脸数
            refine_landmarks: 是否启用 FaceMesh 虹膜精细化
            provider: 视频帧关键点提供者（LandmarkProvider 或 LazyModel），默认懒加载 MediaPipe
            image_provider: 静态图片（录入）关键点提供者；未指定时若给了 provider 则复用
            autoload: 是否在初始化时加载已有图库
        """
        self.gallery_path = Path(gallery_path)
        self.threshold = float(threshold)
        self.max_faces = int(max_faces)

        self._provider = _as_handle(
            provider,
            lambda: MediaPipeFaceMeshProvider(max_faces=self.max_faces, refine_landmarks=refine_landmarks),
            name="FaceMesh(video)",
        )
        if image_provider is None and provider is not None:
            self._image_provider = self._provider
        else:
            self._image_provider = _as_handle(
                image_provider,
                lambda: MediaPipeFaceMeshProvider(
                    max_faces=self.max_faces, refine_landmarks=refine_landmarks, static_image_mode=True
                ),
                name="FaceMesh(image)",
            )

        self.extractor = LandmarkFeatureExtractor(extractor_config)
        self.matcher = LandmarkMatcher(matcher_config, DistanceScorer(self._scorer_config_for(scorer_config)))
        self.quality_config = quality_config or QualityGateConfig()
        self.gallery = Gallery(GalleryConfig())

        if autoload:
            self._load_gallery()

    def _scorer_config_for(self, scorer_config: Optional[ScorerConfig]) -> ScorerConfig:
        """Segment sizes of the scorer must follow the extractor layout."""
        _, n_distances, n_ratios = self.extractor.segments
        if scorer_config is None:
            return ScorerConfig(n_distances=n_distances, n_ratios=n_ratios)
        if not scorer_config.uniform and (scorer_config.n_distances, scorer_config.n_ratios) != (n_distances, n_ratios):
            raise ValueError(
                f"scorer segments ({scorer_config.n_distances}, {scorer_config.n_ratios}) do not match "
                f"extractor segments ({n_distances}, {n_ratios})"
            )
        return scorer_config

    def _load_gallery(self) -> None:
        """加载图库（不存在则从空图库开始）"""
        if self.gallery.load(self.gallery_path):
            logger.info(f"已加载图库: {len(self.gallery)} 个人")
            stale = [p for p in self.gallery if p.extractor_version != self.extractor.version]
            if stale:
                logger.warning(
                    f"{len(stale)} 个人员的特征版本与当前提取器({self.extractor.version})不一致，需要重新录入: "
                    f"{[p.name for p in stale]}"
                )
        else:
            logger.info(f"图库不存在，使用空图库: {self.gallery_path}")

    def close(self) -> None:
        self._provider.close()
        if self._image_provider is not self._provider:
            self._image_provider.close()

    def detect_faces(self, image: np.ndarray, static: bool = False) -> List[Face]:
        """检测人脸关键点（static=True 时使用静态图片模式的模型）"""
        handle = self._image_provider if static else self._provider
        return handle.get().detect(image)

    # ------------------------------------------------------------------ enrollment

    def _store_image(self, image: np.ndarray, name: str) -> str:
        images_dir = self.gallery_path / "images"
        images_dir.mkdir(parents=True, exist_ok=True)
        safe = re.sub(r"[^\w\-]+", "_", str(name)).strip("_") or "person"
        fname = f"{safe}_{int(time.time() * 1000)}.jpg"
        if not cv2.imwrite(str(images_dir / fname), image):
            raise OSError(f"无法保存录入照片: {images_dir / fname}")
        return str(Path("images") / fname)

    def embed_enrollment_image(self, image: np.ndarray) -> np.ndarray:
        """质量检查 + 特征提取；不合格抛出 EnrollmentRejected"""
        faces = self.detect_faces(image, static=True)
        report = assess_enrollment_photo(faces, image.shape, self.quality_config)
        if not report.valid:
            raise EnrollmentRejected(
                f"照片质量不合格 (score={report.score:.0f}): {'; '.join(report.issues)}",
                score=report.score,
                issues=report.issues,
            )
        for issue in report.issues:
            logger.warning(f"录入照片提示: {issue}")
        # The quality gate judged faces[0]; enroll that same face.
        return self.extractor.extract(faces[0])

    def _read_image(self, image_path) -> np.ndarray:
        image = cv2.imread(str(image_path))
        if image is None:
            raise ValueError(f"无法读取图像: {image_path}")
        return image

    def enroll_image(self, image_path, name: str, description: Optional[str] = None) -> EnrolledPerson:
        image = self._read_image(image_path)
        return self.enroll(image, name, description=description)

    def _drop_image(self, image_ref: Optional[str]) -> None:
        if image_ref:
            (self.gallery_path / image_ref).unlink(missing_ok=True)

    def enroll(self, image: np.ndarray, name: str, description: Optional[str] = None) -> EnrolledPerson:
        if not str(name).strip():
            raise ValueError("person name must not be empty")
        embedding = self.embed_enrollment_image(image)
        image_ref = self._store_image(image, name)
        person = None
        try:
            person = self.gallery.enroll(
                name,
                embedding,
                extractor_version=self.extractor.version,
                image_ref=image_ref,
                description=description,
            )
            self.gallery.save(self.gallery_path)
        except Exception:
            # 回滚：内存图库与磁盘保持一致，不留孤立照片
            if person is not None:
                self.gallery.delete(person.id)
            self._drop_image(image_ref)
            raise
        return person

    def reenroll_image(self, person_id: int, image_path) -> EnrolledPerson:
        person = self.gallery.get(person_id)
        if person is None:
            raise KeyError(f"person {person_id} not found")
        image = self._read_image(image_path)
        embedding = self.embed_enrollment_image(image)
        old = (person.embedding, person.extractor_version, person.image_ref, person.updated_at)
        image_ref = self._store_image(image, person.name)
        try:
            person = self.gallery.reenroll(person_id, embedding, self.extractor.version, image_ref=image_ref)
            self.gallery.save(self.gallery_path)
        except Exception:
            person.embedding, person.extractor_version, person.image_ref, person.updated_at = old
            if image_ref != old[2]:
                self._drop_image(image_ref)
            raise
        if old[2] != image_ref:
            self._drop_image(old[2])
        return person

    def delete_person(self, person_id: int) -> bool:
        person = self.gallery.get(person_id)
        if person is None:
            return False
        self.gallery.delete(person_id)
        self._drop_image(person.image_ref)
        self.gallery.save(self.gallery_path)
        return True

    # ------------------------------------------------------------------ recognition

    def identify(self, embedding, gallery: Optional[List[EnrolledPerson]] = None) -> MatchOutcome:
        """身份识别：与图库快照比对（gallery 为 None 时使用当前图库快照）"""
        snapshot = self.gallery.snapshot() if gallery is None else gallery
        return self.matcher.match_detailed(
            embedding,
            snapshot,
            base_threshold=self.threshold,
            query_version=self.extractor.version,
        )

    def recognize_faces(self, faces: List[Face], gallery: Optional[List[EnrolledPerson]] = None) -> List[FaceDetection]:
        snapshot = self.gallery.snapshot() if gallery is None else gallery
        results: List[FaceDetection] = []
        for face in faces:
            try:
                bbox = face.bbox
            except ValueError:
                continue
            name, similarity, person_id = UNKNOWN_LABEL, 0.0, None
            embedding = self.extractor.try_extract(face)
            if embedding is not None and snapshot:
                try:
                    outcome = self.identify(embedding, snapshot)
                except FaceRecognitionError as e:
                    logger.warning(f"人脸识别失败，按未知处理: {e}")
                else:
                    if outcome.result is not None:
                        name = outcome.result.name
                        similarity = outcome.result.similarity
                        person_id = outcome.result.person_id
            results.append(
                FaceDetection(
                    bbox=bbox,
                    box=square_box_xywh(bbox, scale=1.5),
                    name=name,
                    similarity=float(similarity),
                    person_id=person_id,
                )
            )
        return results

    def recognize(self, frame: np.ndarray, gallery: Optional[List[EnrolledPerson]] = None) -> List[FaceDetection]:
        """单帧识别：检测所有人脸并逐个匹配；单张人脸失败不影响其它人脸"""
        faces = self.detect_faces(frame)
        return self.recognize_faces(faces, gallery)

    def process(self, image_path: str, output_path: Optional[str] = None) -> Tuple[np.ndarray, List[FaceDetection]]:
        """
        静态图片识别

        Args:
            image_path: 输入图像路径
            output_path: 输出图像路径（可选）

        Returns:
            result_image: 带标注的结果图像
            detections: 识别结果列表
        """
        image = self._read_image(image_path)
        result_image = image.copy()

        faces = self.detect_faces(image, static=True)
        if not faces:
            logger.warning(f"在 {image_path} 中未检测到人脸")
        detections = self.recognize_faces(faces)

        for i, det in enumerate(detections):
            logger.info(f"检测到人脸 {i + 1}: {det.name} (相似度: {det.similarity:.1f}%)")

        draw_detections(result_image, detections)
        if output_path:
            cv2.imwrite(output_path, result_image)
            logger.info(f"结果图像已保存至: {output_path}")

        return result_image, detections

    # ------------------------------------------------------------------ info

    def get_gallery_info(self) -> Dict:
        """获取图库信息"""
        persons = list(self.gallery)
        return {
            "total_persons": len(persons),
            "person_names": [p.name for p in persons],
            "extractor_version": self.extractor.version,
            "embedding_dim": self.extractor.dimension,
            "stale_persons": [p.id for p in persons if p.extractor_version != self.extractor.version],
            "base_threshold": self.threshold,
        }

    def analyze_gallery_quality(self) -> List[Tuple[str, str, float]]:
        """类间相似度分析：返回 (name_a, name_b, similarity)，相似度过高说明阈值难以区分两人"""
        persons = [p for p in self.gallery if p.extractor_version == self.extractor.version]
        pairs: List[Tuple[str, str, float]] = []
        for i in range(len(persons)):
            for j in range(i + 1, len(persons)):
                cmp = self.matcher.scorer.compare(persons[i].embedding, persons[j].embedding)
                pairs.append((persons[i].name, persons[j].name, cmp.similarity))
                logger.info(f"  {persons[i].name} vs {persons[j].name}: {cmp.similarity:.1f}%")
        return pairs
