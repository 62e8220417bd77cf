"""Errors raised by the face recognition building blocks.

"No face" and "empty gallery" are not errors: they are reported as `None`.
"""


class FaceRecognitionError(Exception):
    """Base class for recoverable recognition failures."""


class DegenerateGeometryError(FaceRecognitionError):
    """Keypoints do not span a usable bounding box (zero width/height, NaN, too few points)."""


class MalformedEmbeddingError(FaceRecognitionError, ValueError):
    """An embedding is not a flat, non-empty, finite numeric array."""


class ComparisonError(FaceRecognitionError):
    """Two embeddings could not be compared."""


class GalleryFormatError(FaceRecognitionError):
    """Gallery file / import payload has an unexpected layout."""


class EnrollmentRejected(FaceRecognitionError):
    """Enrollment photo failed the quality gate."""

    def __init__(self, msg: str, *, score: float = 0.0, issues=None) -> None:
        super().__init__(msg)
        self.score = float(score)
        self.issues = list(issues or [])
