from __future__ import annotations

from dataclasses import dataclass
from typing import List

import numpy as np


@dataclass(frozen=True)
class ObjectDet:
    label: str
    score: float
    bbox: List[int]  # xyxy


class UltralyticsObjectDetector:
    """COCO object detector using ultralytics YOLO.

    Runs next to the face path in the live loop; results are drawn and logged only.
    """

    def __init__(self, weights_path: str = "yolo11n.pt", device: str = "auto") -> None:
        from ultralytics import YOLO
        import torch

        self.model = YOLO(str(weights_path))
        dev = str(device).lower().strip()
        if dev == "auto":
            self.device = "cuda" if torch.cuda.is_available() else "cpu"
        elif dev == "gpu":
            self.device = "cuda"
        else:
            self.device = str(device)

    def detect(self, frame_bgr: np.ndarray, conf: float = 0.25, max_det: int = 20) -> List[ObjectDet]:
        results = self.model.predict(frame_bgr, conf=float(conf), max_det=int(max_det), device=self.device, verbose=False)
        if not results:
            return []
        r0 = results[0]
        boxes = getattr(r0, "boxes", None)
        if boxes is None:
            return []
        names = getattr(r0, "names", None) or {}

        xyxy = boxes.xyxy.cpu().numpy()
        cls = boxes.cls.cpu().numpy()
        confs = boxes.conf.cpu().numpy()

        out: List[ObjectDet] = []
        for b, c, s in zip(xyxy, cls, confs):
            label = names.get(int(c), str(int(c))) if isinstance(names, dict) else str(int(c))
            out.append(ObjectDet(label=str(label), score=float(s), bbox=[int(x) for x in b.tolist()]))
        return out
