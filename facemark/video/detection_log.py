"""Detection log: one JSON record per line plus optional JPEG snapshots."""

from __future__ import annotations

import json
import time

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Dict, List, Optional

import cv2
import numpy as np

from facemark.config import UNKNOWN_LABEL
from facemark.face.types import utc_now_iso
from facemark.utils.log import get_logger
from facemark.utils.serializer import serialize_objects

logger = get_logger(__name__)


@dataclass
class DetectionRecord:
    person_id: Optional[int] = None  # None: not recognized
    person_name: Optional[str] = None
    confidence: Optional[int] = None  # 0..100
    detected_objects: List[Dict] = field(default_factory=list)
    snapshot_path: Optional[str] = None
    created_at: str = field(default_factory=utc_now_iso)

    @classmethod
    def from_frame(cls, faces, objects) -> "DetectionRecord":
        """Summarize a frame: the first face names the record, as in the overlay."""
        rec = cls(detected_objects=serialize_objects(objects))
        if faces:
            first = faces[0]
            rec.person_name = str(first.name)
            rec.confidence = int(round(float(first.similarity)))
            if first.name != UNKNOWN_LABEL:
                rec.person_id = first.person_id
        return rec


_RECORD_FIELDS = frozenset(f.name for f in fields(DetectionRecord))


class JsonlDetectionLogSink:
    def __init__(self, path, snapshot_dir=None, jpeg_quality: int = 80) -> None:
        self.path = Path(path)
        self.snapshot_dir = Path(snapshot_dir) if snapshot_dir is not None else None
        self.jpeg_quality = int(jpeg_quality)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.snapshot_dir is not None:
            self.snapshot_dir.mkdir(parents=True, exist_ok=True)

    def _write_snapshot(self, frame: np.ndarray) -> Optional[str]:
        if self.snapshot_dir is None or frame is None:
            return None
        fp = self.snapshot_dir / f"snapshot_{int(time.time() * 1000)}.jpg"
        ok = cv2.imwrite(str(fp), frame, [int(cv2.IMWRITE_JPEG_QUALITY), self.jpeg_quality])
        if not ok:
            logger.warning(f"快照保存失败: {fp}")
            return None
        return str(fp)

    def write(self, record: DetectionRecord, frame: Optional[np.ndarray] = None) -> DetectionRecord:
        record.snapshot_path = self._write_snapshot(frame)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(asdict(record), ensure_ascii=False) + "\n")
        return record


def read_detection_log(path, person_id: Optional[int] = None, limit: int = 50) -> List[DetectionRecord]:
    """Most recent records first; optionally only those of one person."""
    fp = Path(path)
    if not fp.exists():
        return []
    records: List[DetectionRecord] = []
    with open(fp, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                logger.warning(f"跳过损坏的日志行: {line[:80]}")
                continue
            if not isinstance(data, dict):
                logger.warning(f"跳过非对象日志行: {line[:80]}")
                continue
            if person_id is not None and data.get("person_id") != int(person_id):
                continue
            records.append(DetectionRecord(**{k: v for k, v in data.items() if k in _RECORD_FIELDS}))
    records.reverse()
    return records[: int(limit)]
