"""Landmark provider interface and the MediaPipe FaceMesh implementation.

Model handles are owned by whoever creates them (no module-level singleton) and are
initialized lazily through `LazyModel`, which lets concurrent first callers share one
initialization instead of each building a model.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future
from typing import Callable, Generic, List, Optional, TypeVar

import cv2
import numpy as np

from facemark.face.types import Face
from facemark.utils.log import get_logger, suppress_fds

logger = get_logger(__name__)

T = TypeVar("T")


class LandmarkProvider(ABC):
    """Returns zero or more faces, each an ordered keypoint array in pixel space."""

    @abstractmethod
    def detect(self, image_bgr: np.ndarray) -> List[Face]:
        pass

    def close(self) -> None:
        pass


class MediaPipeFaceMeshProvider(LandmarkProvider):
    """MediaPipe FaceMesh: 468 landmarks per face (478 with `refine_landmarks`)."""

    def __init__(
        self,
        max_faces: int = 10,
        refine_landmarks: bool = True,
        static_image_mode: bool = False,
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
    ) -> None:
        import mediapipe as mp

        self.max_faces = int(max_faces)
        with suppress_fds():
            self._mesh = mp.solutions.face_mesh.FaceMesh(
                static_image_mode=bool(static_image_mode),
                max_num_faces=self.max_faces,
                refine_landmarks=bool(refine_landmarks),
                min_detection_confidence=float(min_detection_confidence),
                min_tracking_confidence=float(min_tracking_confidence),
            )

    def detect(self, image_bgr: np.ndarray) -> List[Face]:
        if image_bgr is None or image_bgr.size == 0:
            return []
        h, w = image_bgr.shape[:2]
        rgb = cv2.cvtColor(image_bgr, cv2.COLOR_BGR2RGB)
        res = self._mesh.process(rgb)
        if not res.multi_face_landmarks:
            return []

        faces: List[Face] = []
        for lms in res.multi_face_landmarks:
            pts = np.array([[p.x * w, p.y * h] for p in lms.landmark], dtype=np.float64)
            faces.append(Face(keypoints=pts))
        return faces

    def close(self) -> None:
        self._mesh.close()


class LazyModel(Generic[T]):
    """Lazily built model handle with single-flight initialization.

    The first `get()` runs `factory`; callers arriving meanwhile wait on the same
    future. A failed initialization is raised to every waiter and cleared so a later
    `get()` can retry.
    """

    def __init__(self, factory: Callable[[], T], name: str = "model") -> None:
        self._factory = factory
        self.name = str(name)
        self._lock = threading.Lock()
        self._future: Optional[Future] = None

    @property
    def ready(self) -> bool:
        fut = self._future
        return fut is not None and fut.done() and fut.exception() is None

    def get(self, timeout: Optional[float] = None) -> T:
        with self._lock:
            fut = self._future
            owner = fut is None
            if owner:
                fut = Future()
                self._future = fut

        if not owner:
            return fut.result(timeout=timeout)

        try:
            instance = self._factory()
        except Exception as e:
            logger.error(f"模型初始化失败 ({self.name}): {e}")
            with self._lock:
                self._future = None
            fut.set_exception(e)
            raise
        logger.info(f"已加载模型: {self.name}")
        fut.set_result(instance)
        return instance

    def close(self) -> None:
        with self._lock:
            fut = self._future
            self._future = None
        if fut is None or not fut.done() or fut.exception() is not None:
            return
        instance = fut.result()
        close = getattr(instance, "close", None)
        if callable(close):
            close()
