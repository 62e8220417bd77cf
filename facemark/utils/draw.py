from __future__ import annotations

from functools import lru_cache
from typing import Iterable, Sequence, Tuple

import warnings

import cv2
import numpy as np
from PIL import Image, ImageDraw, ImageFont

from facemark.config import FONT_LIST, UNKNOWN_LABEL


_WARNED_NO_CJK_FONT = False

KNOWN_COLOR = (0, 255, 0)  # 绿色
UNKNOWN_COLOR = (0, 0, 255)  # 红色
OBJECT_COLOR = (255, 200, 0)


@lru_cache(maxsize=128)
def _load_font(font_path: str, font_size: int) -> ImageFont.FreeTypeFont:
    return ImageFont.truetype(font_path, font_size)


@lru_cache(maxsize=64)
def _get_best_font(font_size: int) -> ImageFont.ImageFont:
    """Return a font instance (cached) that best supports CJK on current OS."""
    for p in FONT_LIST:
        try:
            return _load_font(p, int(font_size))
        except OSError:
            continue
    return ImageFont.load_default()


def _warn_once_no_cjk_font_if_needed(texts: Iterable[str]) -> None:
    global _WARNED_NO_CJK_FONT
    if _WARNED_NO_CJK_FONT:
        return
    if not any(any(ord(ch) > 127 for ch in t) for t in texts):
        return
    for p in FONT_LIST:
        try:
            _load_font(p, 16)
            return
        except OSError:
            continue
    _WARNED_NO_CJK_FONT = True
    warnings.warn(
        "未找到可用的中文字体文件（FONT_LIST 全部加载失败），中文可能显示为方块/乱码。"
        "建议在 Linux 安装 fonts-noto-cjk 或 fonts-wqy-zenhei，"
        "或在 facemark/config.py 的 FONT_LIST 中加入可用字体路径。",
        RuntimeWarning,
    )


def draw_texts_cn(
    img: np.ndarray,
    items: Sequence[Tuple[str, Tuple[int, int], int, Tuple[int, int, int]]],
) -> None:
    """Draw multiple unicode texts onto one frame with a single PIL conversion.

    Args:
        img: OpenCV BGR image, modified in-place.
        items: sequence of (text, (x, y), font_size_px, bgr_color)
    """
    if img is None or len(items) == 0:
        return

    _warn_once_no_cjk_font_if_needed([t for (t, _, _, _) in items])

    pil_img = Image.fromarray(cv2.cvtColor(img, cv2.COLOR_BGR2RGB))
    draw = ImageDraw.Draw(pil_img)
    for text, org, font_size, bgr in items:
        font = _get_best_font(int(font_size))
        # PIL uses RGB
        rgb_color = (int(bgr[2]), int(bgr[1]), int(bgr[0]))
        draw.text(tuple(org), str(text), font=font, fill=rgb_color)

    img[:] = cv2.cvtColor(np.array(pil_img), cv2.COLOR_RGB2BGR)


def measure_text_cn(text: str, font_size: int = 14) -> Tuple[int, int]:
    """使用 PIL 测量文本像素尺寸（视频绘制高频调用，带 LRU 缓存）。"""
    return _measure_text_cn_cached(str(text), int(font_size))


@lru_cache(maxsize=4096)
def _measure_text_cn_cached(text: str, font_size: int) -> Tuple[int, int]:
    font = _get_best_font(int(font_size))
    dummy = Image.new("RGB", (10, 10))
    draw = ImageDraw.Draw(dummy)
    bbox = draw.textbbox((0, 0), text, font=font)
    return int(bbox[2] - bbox[0]), int(bbox[3] - bbox[1])


def _pick_text_color_for_bg(bg_bgr: Tuple[int, int, int]) -> Tuple[int, int, int]:
    # Use perceived luminance to pick black/white for contrast.
    b, g, r = [float(x) for x in bg_bgr]
    y = 0.2126 * r + 0.7152 * g + 0.0722 * b
    return (0, 0, 0) if y >= 140.0 else (255, 255, 255)


def draw_detections(image: np.ndarray, faces: Sequence = (), objects: Sequence = ()) -> np.ndarray:
    """在帧上绘制物体框与人脸方框+姓名标签（原地修改并返回 image）。

    faces: FaceDetection-like (box=(x, y, size, size), name, similarity)
    objects: ObjectDet-like (bbox=xyxy, label, score)
    """
    h, w = image.shape[:2]
    labels = []

    for obj in objects:
        x1, y1, x2, y2 = [int(v) for v in obj.bbox]
        cv2.rectangle(image, (x1, y1), (x2, y2), OBJECT_COLOR, 2)
        text = f"{obj.label} {float(obj.score) * 100:.0f}%"
        labels.append((text, (x1 + 4, max(0, y1 - 18)), 14, OBJECT_COLOR))

    for face in faces:
        x, y, size, _ = [float(v) for v in face.box]
        x1 = max(0, int(x))
        y1 = max(0, int(y))
        x2 = min(w - 1, int(x + size))
        y2 = min(h - 1, int(y + size))
        known = face.name != UNKNOWN_LABEL
        color = KNOWN_COLOR if known else UNKNOWN_COLOR
        cv2.rectangle(image, (x1, y1), (x2, y2), color, 2)

        label = f"{face.name} ({face.similarity:.1f}%)" if known else str(face.name)
        font_size = max(12, int((y2 - y1) * 0.08))
        text_w, text_h = measure_text_cn(label, font_size)
        pad = max(4, int(font_size * 0.25))
        bg_y1 = max(0, y1 - text_h - pad * 2)
        cv2.rectangle(image, (x1, bg_y1), (x1 + text_w + pad * 2, y1), color, -1)
        labels.append((label, (x1 + pad, bg_y1 + pad), font_size, _pick_text_color_for_bg(color)))

    draw_texts_cn(image, labels)
    return image
