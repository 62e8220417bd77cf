"""Named constants shared by the extractor / scorer / matcher.

Embeddings are only comparable when enrollment and query use the same values
here; bump `EXTRACTOR_VERSION` whenever the keypoint subset, pairs or ratios change.
"""

# MediaPipe FaceMesh topology: 468 points (478 with iris refinement).
MESH_POINTS = 468

EXTRACTOR_VERSION = "mesh468-v3"

# Curated subset of mesh indices, grouped by region. Order is part of the embedding layout.
STABLE_KEYPOINTS = (
    # left eye
    33, 133, 160, 159, 158, 157, 173,
    # right eye
    362, 263, 387, 386, 385, 384, 398,
    # nose
    1, 4, 5, 6, 168, 197, 195,
    # mouth
    61, 291, 0, 17, 269, 405, 314, 84, 181,
    # cheeks and jaw
    234, 454, 132, 361, 152, 377,
    # forehead
    10,
)

# (name, index_a, index_b); distances are measured on normalized coordinates.
DISTANCE_PAIRS = (
    ("eye_span", 33, 263),
    ("left_eye_width", 33, 133),
    ("right_eye_width", 362, 263),
    ("left_eye_nose", 33, 1),
    ("right_eye_nose", 263, 1),
    ("nose_mouth", 1, 0),
    ("mouth_width", 61, 291),
    ("cheek_width", 234, 454),
    ("brow_chin", 10, 152),
)

# (name, numerator, denominator) over DISTANCE_PAIRS names. "face_aspect" (bbox
# width / height) is always emitted first and is not listed here.
GEOMETRIC_RATIOS = (
    ("eye_to_cheek", "eye_span", "cheek_width"),
    ("nose_mouth_to_face", "nose_mouth", "brow_chin"),
    ("mouth_to_eye", "mouth_width", "eye_span"),
)

# Per-segment weights for the weighted RMS distance.
COORDINATE_WEIGHT = 1.0
DISTANCE_WEIGHT = 3.0
RATIO_WEIGHT = 5.0

# similarity = clamp(0, 100, (1 - distance / SIMILARITY_SCALE) * 100)
SIMILARITY_SCALE = 2.5

# Matcher thresholds (fractions of 100).
BASE_THRESHOLD = 0.35
SINGLE_CANDIDATE_FACTOR = 0.6
SEPARATION_MARGIN = 0.3
SEPARATED_FACTOR = 0.8

UNKNOWN_LABEL = "未知"

# 常见系统字体候选（macOS/Windows/Linux），按需扩展
FONT_LIST = [
    # macOS
    "/System/Library/Fonts/STHeiti Medium.ttc",
    "/System/Library/Fonts/STHeiti Light.ttc",
    "/System/Library/Fonts/AppleGothic.ttf",
    "/Library/Fonts/Arial Unicode.ttf",
    "/System/Library/Fonts/Supplemental/STHeiti.ttf",
    # Windows (注意字符串中的反斜杠已转义)
    "C:\\Windows\\Fonts\\msyh.ttc",
    "C:\\Windows\\Fonts\\msyh.ttf",
    "C:\\Windows\\Fonts\\simsun.ttc",
    "C:\\Windows\\Fonts\\arialuni.ttf",
    # 常见 Linux 字体：中文字体放在前面，否则会优先命中 DejaVuSans
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/wqy/wqy-zenhei.ttc",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/freefont/FreeSans.ttf",
]
