import json
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from facemark.face.errors import MalformedEmbeddingError


def decode_embedding(value: Any) -> np.ndarray:
    """Turn a stored embedding (list or JSON-encoded string) into a float32 vector."""
    if value is None:
        raise MalformedEmbeddingError("embedding is missing")
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise MalformedEmbeddingError(f"embedding is not valid JSON: {e}") from e
    try:
        arr = np.asarray(value, dtype=np.float32)
    except (TypeError, ValueError) as e:
        raise MalformedEmbeddingError(f"embedding is not numeric: {e}") from e
    if arr.ndim != 1:
        raise MalformedEmbeddingError(f"embedding must be a flat array, got ndim={arr.ndim}")
    if arr.size == 0:
        raise MalformedEmbeddingError("embedding is empty")
    if not np.all(np.isfinite(arr)):
        raise MalformedEmbeddingError("embedding contains non-finite values")
    return arr


def serialize_detection(det, frame_shape: Optional[Tuple[int, int]] = None) -> Dict:
    """Serialize a FaceDetection into JSON-safe form and optionally add normalized coords.

    frame_shape: (h, w)
    """
    ed: Dict[str, Any] = {
        "name": str(det.name),
        "person_id": int(det.person_id) if det.person_id is not None else None,
        "similarity": round(float(det.similarity), 1),
    }
    try:
        ed["bbox"] = [round(float(x), 1) for x in det.bbox]
    except (TypeError, ValueError):
        ed["bbox"] = None
    try:
        ed["box"] = [round(float(x), 1) for x in det.box]
    except (TypeError, ValueError):
        ed["box"] = None

    if frame_shape is not None and ed.get("bbox"):
        h, w = frame_shape[0], frame_shape[1]
        if h and w:
            x1, y1, x2, y2 = ed["bbox"]
            ed["bbox_norm"] = [round(x1 / w, 4), round(y1 / h, 4), round(x2 / w, 4), round(y2 / h, 4)]
        else:
            ed["bbox_norm"] = None

    return ed


def serialize_objects(objects) -> List[Dict]:
    """Object detections as {class, score} with score in percent."""
    return [{"class": str(o.label), "score": int(round(float(o.score) * 100))} for o in objects or []]
