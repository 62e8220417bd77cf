from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Tuple

from facemark.config import BASE_THRESHOLD, SEPARATED_FACTOR, SEPARATION_MARGIN, SINGLE_CANDIDATE_FACTOR
from facemark.face.errors import FaceRecognitionError, GalleryFormatError
from facemark.face.scorer import DistanceScorer
from facemark.face.types import MatchOutcome, MatchResult
from facemark.utils.log import get_logger
from facemark.utils.serializer import decode_embedding

logger = get_logger(__name__)


@dataclass
class MatcherConfig:
    # Base acceptance threshold as a fraction of 100 similarity.
    base_threshold: float = BASE_THRESHOLD
    # Only one enrolled person: nothing to disambiguate against, relax.
    single_candidate_factor: float = SINGLE_CANDIDATE_FACTOR
    # Runner-up farther than best by more than this margin (distance units): relax.
    separation_margin: float = SEPARATION_MARGIN
    separated_factor: float = SEPARATED_FACTOR
    # Compare across extractor versions by truncation instead of refusing.
    allow_version_skew: bool = False


def _entry_fields(entry: Any) -> Tuple[Any, Any, Any, Optional[str]]:
    if isinstance(entry, Mapping):
        return entry.get("id"), entry.get("name"), entry.get("embedding"), entry.get("extractor_version")
    return (
        getattr(entry, "id", None),
        getattr(entry, "name", None),
        getattr(entry, "embedding", None),
        getattr(entry, "extractor_version", None),
    )


def _entry_id(pid: Any) -> int:
    """Gallery ids are integers; None (ad-hoc entries) maps to -1."""
    if pid is None:
        return -1
    if isinstance(pid, bool):
        raise GalleryFormatError(f"invalid person id {pid!r}")
    try:
        return int(pid)
    except (TypeError, ValueError) as e:
        raise GalleryFormatError(f"invalid person id {pid!r}") from e


class LandmarkMatcher:
    """Nearest-neighbour matcher over a gallery snapshot with a dynamic threshold.

    Gallery entries are `EnrolledPerson` objects or mappings with id/name/embedding
    (embedding may be a JSON string). Iteration order is the gallery's order; on equal
    distances the first entry wins.
    """

    def __init__(self, config: Optional[MatcherConfig] = None, scorer: Optional[DistanceScorer] = None):
        self.config = config or MatcherConfig()
        self.scorer = scorer or DistanceScorer()

    def effective_threshold(self, base_threshold: float, gallery_size: int, best: float, second: float) -> float:
        thr = float(base_threshold)
        if int(gallery_size) == 1:
            return thr * float(self.config.single_candidate_factor)
        if math.isfinite(second) and (second - best) > float(self.config.separation_margin):
            return thr * float(self.config.separated_factor)
        return thr

    def match(
        self,
        query,
        gallery: Iterable[Any],
        base_threshold: Optional[float] = None,
        query_version: Optional[str] = None,
    ) -> Optional[MatchResult]:
        return self.match_detailed(query, gallery, base_threshold, query_version).result

    def match_detailed(
        self,
        query,
        gallery: Iterable[Any],
        base_threshold: Optional[float] = None,
        query_version: Optional[str] = None,
    ) -> MatchOutcome:
        """Return a MatchOutcome; `result` is None for an empty gallery or a rejected best.

        When `query_version` is given, entries tagged with another extractor version (or
        untagged) are refused unless `allow_version_skew` is set.
        """
        entries = list(gallery or [])
        outcome = MatchOutcome()
        if not entries:
            return outcome

        query = decode_embedding(query)
        base = float(self.config.base_threshold if base_threshold is None else base_threshold)

        best_entry = None
        best_dist = math.inf
        best_sim = 0.0
        second_dist = math.inf

        for entry in entries:
            pid, name, raw_emb, version = _entry_fields(entry)
            if query_version is not None and version != query_version:
                outcome.version_mismatches += 1
                if not self.config.allow_version_skew:
                    continue
            try:
                pid = _entry_id(pid)
                emb = decode_embedding(raw_emb)
                cmp = self.scorer.compare(query, emb)
            except FaceRecognitionError as e:
                outcome.skipped += 1
                logger.debug(f"skip gallery entry id={pid} name={name}: {e}")
                continue

            outcome.compared += 1
            if cmp.truncated:
                outcome.truncated += 1

            if cmp.distance < best_dist:
                second_dist = best_dist
                best_dist = cmp.distance
                best_sim = cmp.similarity
                best_entry = (pid, name)
            elif cmp.distance < second_dist:
                second_dist = cmp.distance

        if outcome.skipped:
            logger.warning(f"Matcher skipped {outcome.skipped} malformed gallery entries")
        if outcome.version_mismatches and not self.config.allow_version_skew:
            logger.warning(
                f"Matcher refused {outcome.version_mismatches} entries from another extractor version "
                f"(query={query_version}); re-enroll them"
            )

        if best_entry is None:
            return outcome

        threshold = self.effective_threshold(base, len(entries), best_dist, second_dist) * 100.0
        similarity = round(best_sim, 1)

        outcome.threshold = threshold
        outcome.best_distance = best_dist
        outcome.second_distance = second_dist if math.isfinite(second_dist) else None
        outcome.best_similarity = similarity

        logger.debug(
            f"[Match] Best: {best_entry[1]} ({similarity}%, dist={best_dist:.4f}), Threshold: {threshold:.1f}%"
        )

        if similarity >= threshold:
            pid, name = best_entry
            outcome.result = MatchResult(
                person_id=pid,
                name=str(name),
                similarity=similarity,
                distance=best_dist,
            )
        return outcome
