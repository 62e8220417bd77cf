from __future__ import annotations

import time

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Union

import cv2
import numpy as np

from facemark.face.recognizer import FaceDetection, FaceRecognizer
from facemark.utils.draw import draw_detections
from facemark.utils.log import get_logger
from facemark.video.detection_log import DetectionRecord, JsonlDetectionLogSink
from facemark.video.object_detector import ObjectDet

logger = get_logger(__name__)


@dataclass
class LoopConfig:
    # Run inference no more often than this (bounds model CPU/GPU load).
    min_interval_sec: float = 0.3
    # Write a detection-log record at most this often, and only when something was seen.
    log_interval_sec: float = 5.0
    object_conf: float = 0.25
    display: bool = False
    window_name: str = "facemark"


@dataclass
class FrameResult:
    frame_index: int
    timestamp: float
    faces: List[FaceDetection] = field(default_factory=list)
    objects: List[ObjectDet] = field(default_factory=list)


def open_source(source: Union[int, str]) -> cv2.VideoCapture:
    if isinstance(source, str) and source.isdigit():
        source = int(source)
    cap = cv2.VideoCapture(source)
    if not cap.isOpened():
        raise RuntimeError(f"无法打开视频源: {source}")
    return cap


class DetectionLoop:
    """Polling detection loop over a camera / video source.

    Single-threaded: each polled frame runs object detection and face recognition in
    turn. `stop()` ends the loop after the current frame; a running inference call is
    not interrupted, it is just not rescheduled.
    """

    def __init__(
        self,
        recognizer: FaceRecognizer,
        source: Union[int, str] = 0,
        object_detector=None,
        log_sink: Optional[JsonlDetectionLogSink] = None,
        config: Optional[LoopConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        on_result: Optional[Callable[[FrameResult, np.ndarray], None]] = None,
    ):
        self.recognizer = recognizer
        self.source = source
        self.object_detector = object_detector
        self.log_sink = log_sink
        self.config = config or LoopConfig()
        self.clock = clock
        self.on_result = on_result

        self._running = False
        self._last_detection: Optional[float] = None
        self._last_log: Optional[float] = None
        self.last_result: Optional[FrameResult] = None
        self.processed = 0

    @property
    def running(self) -> bool:
        return self._running

    def stop(self) -> None:
        if self._running:
            logger.info("停止检测")
        self._running = False

    def due(self, now: float) -> bool:
        return self._last_detection is None or (now - self._last_detection) >= float(self.config.min_interval_sec)

    def step(self, frame: np.ndarray, frame_index: int = 0, now: Optional[float] = None) -> Optional[FrameResult]:
        """Run inference on `frame` if the polling interval has elapsed; otherwise return None."""
        now = self.clock() if now is None else float(now)
        if not self.due(now):
            return None
        self._last_detection = now

        objects: List[ObjectDet] = []
        if self.object_detector is not None:
            try:
                objects = list(self.object_detector.detect(frame, conf=float(self.config.object_conf)))
            except Exception as e:
                logger.error(f"物体检测失败: {e}")

        faces: List[FaceDetection] = []
        try:
            # One gallery snapshot per polled frame; enrollments land on the next frame.
            faces = self.recognizer.recognize(frame, self.recognizer.gallery.snapshot())
        except Exception as e:
            # 人脸识别失败不影响物体检测
            logger.error(f"人脸识别失败: {e}")

        result = FrameResult(frame_index=int(frame_index), timestamp=now, faces=faces, objects=objects)
        self.last_result = result
        self.processed += 1
        self._maybe_log(result, frame, now)
        if self.on_result is not None:
            self.on_result(result, frame)
        return result

    def _maybe_log(self, result: FrameResult, frame: np.ndarray, now: float) -> None:
        if self.log_sink is None:
            return
        if not (result.faces or result.objects):
            return
        if self._last_log is not None and (now - self._last_log) <= float(self.config.log_interval_sec):
            return
        self._last_log = now
        try:
            self.log_sink.write(DetectionRecord.from_frame(result.faces, result.objects), frame)
        except OSError as e:
            logger.error(f"保存识别记录失败: {e}")

    def run(self, max_frames: Optional[int] = None) -> int:
        """Read frames until the source ends, `stop()` is called or `max_frames` are read.

        Returns the number of frames that went through inference.
        """
        cap = open_source(self.source)
        self._running = True
        logger.info(f"开始检测: source={self.source}, interval={self.config.min_interval_sec}s")
        frame_idx = 0
        try:
            while self._running:
                if max_frames is not None and frame_idx >= int(max_frames):
                    break
                ok, frame = cap.read()
                if not ok or frame is None:
                    break

                self.step(frame, frame_idx)

                if self.config.display:
                    vis = frame.copy()
                    if self.last_result is not None:
                        draw_detections(vis, self.last_result.faces, self.last_result.objects)
                    cv2.imshow(self.config.window_name, vis)
                    if (cv2.waitKey(1) & 0xFF) in (ord("q"), 27):
                        self.stop()
                frame_idx += 1
        finally:
            self._running = False
            cap.release()
            if self.config.display:
                cv2.destroyAllWindows()

        logger.info(f"检测结束: 读取 {frame_idx} 帧，推理 {self.processed} 帧")
        return self.processed
