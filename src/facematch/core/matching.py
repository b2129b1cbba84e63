"""Face matching: feature comparison and threshold-based identification.

Similarity is a normalized inverse Euclidean distance over raw pixel
features. Identification is a linear best-match scan over a snapshot of
known faces; "no match" is a value, never an exception.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from numpy.typing import ArrayLike, NDArray

DEFAULT_MAX_CHANNEL_VALUE: float = 255.0


class FeatureLengthMismatchError(ValueError):
    """Raised in strict mode when two feature vectors differ in length."""


class ChannelRangeMismatchError(ValueError):
    """Raised when a vector declares a different max channel value than the matcher."""


@dataclass(frozen=True)
class FaceRegion:
    """Axis-aligned face bounding box in source image pixels."""

    x: int
    y: int
    width: int
    height: int

    def __post_init__(self) -> None:
        for name in ("x", "y", "width", "height"):
            if getattr(self, name) < 0:
                raise ValueError(f"FaceRegion.{name} must be non-negative")


@dataclass(frozen=True, eq=False)
class FeatureVector:
    """Fixed-length face encoding with the declared upper bound of one component."""

    values: NDArray[np.float64]
    max_channel_value: float = DEFAULT_MAX_CHANNEL_VALUE

    def __post_init__(self) -> None:
        values = np.array(self.values, dtype=np.float64)
        if values.ndim != 1:
            raise ValueError(f"Feature values must be one-dimensional, got shape {values.shape}")
        values.flags.writeable = False
        object.__setattr__(self, "values", values)

    @classmethod
    def from_values(cls, values: ArrayLike, max_channel_value: float = DEFAULT_MAX_CHANNEL_VALUE) -> FeatureVector:
        return cls(np.asarray(values, dtype=np.float64), max_channel_value)

    def __len__(self) -> int:
        return int(self.values.shape[0])


@dataclass(frozen=True)
class LabeledFace:
    """A feature vector with its optional label and source region."""

    features: FeatureVector
    label: str | None = None
    region: FaceRegion | None = None

    def with_label(self, label: str) -> LabeledFace:
        return replace(self, label=label)


class NoMatchReason(StrEnum):
    NO_QUERY = "no_query"
    NO_CANDIDATES = "no_candidates"
    BELOW_THRESHOLD = "below_threshold"


@dataclass(frozen=True)
class Identified:
    """Successful identification."""

    label: str | None
    region: FaceRegion | None
    score: float


@dataclass(frozen=True)
class NotIdentified:
    """No candidate scored strictly above the threshold."""

    reason: NoMatchReason


MatchResult = Identified | NotIdentified


def _check_channel_range(vector: FeatureVector, max_channel_value: float) -> None:
    if vector.max_channel_value != max_channel_value:
        raise ChannelRangeMismatchError(
            f"Feature vector declares max channel value {vector.max_channel_value}, "
            f"matcher is configured for {max_channel_value}"
        )


def similarity(
    a: FeatureVector | None,
    b: FeatureVector | None,
    *,
    max_channel_value: float = DEFAULT_MAX_CHANNEL_VALUE,
    strict_length: bool = False,
    clamp: bool = False,
) -> float:
    """Compare two feature vectors.

    Computes ``1 - distance / max_distance`` where ``distance`` is the
    Euclidean distance over the shared index range and
    ``max_distance = sqrt(n * max_channel_value**2)``.

    Vectors of different lengths are compared over their common prefix
    unless ``strict_length`` is set. The score is not clamped by default, so
    components above ``max_channel_value`` can produce a negative score.

    Returns:
        Similarity score, nominally in [0, 1]. ``0.0`` if either vector is
        absent or they share no components.

    Raises:
        ChannelRangeMismatchError: If either vector was produced for a
            different channel range.
        FeatureLengthMismatchError: If ``strict_length`` is set and the
            lengths differ.
    """
    if a is None or b is None:
        return 0.0

    _check_channel_range(a, max_channel_value)
    _check_channel_range(b, max_channel_value)

    if strict_length and len(a) != len(b):
        raise FeatureLengthMismatchError(f"Cannot compare feature vectors of length {len(a)} and {len(b)}")

    shared = min(len(a), len(b))
    if shared == 0:
        return 0.0

    distance = float(np.linalg.norm(a.values[:shared] - b.values[:shared]))
    max_distance = math.sqrt(shared * max_channel_value**2)
    score = 1.0 - distance / max_distance

    if clamp:
        return min(1.0, max(0.0, score))
    return score


def best_match(
    query: FeatureVector | None,
    candidates: Iterable[LabeledFace],
    threshold: float,
    *,
    max_channel_value: float = DEFAULT_MAX_CHANNEL_VALUE,
    strict_length: bool = False,
    clamp: bool = False,
) -> tuple[LabeledFace | None, float]:
    """Scan candidates in order and return the best one strictly above ``threshold``.

    The running best starts at ``threshold`` and is only replaced by a
    strictly greater score, so the first candidate reaching the maximum wins
    ties.

    Returns:
        ``(face, score)`` for a match, ``(None, threshold)`` otherwise.
    """
    best_face: LabeledFace | None = None
    best_score = threshold
    if query is None:
        return best_face, best_score

    for candidate in candidates:
        score = similarity(
            query,
            candidate.features,
            max_channel_value=max_channel_value,
            strict_length=strict_length,
            clamp=clamp,
        )
        if score > best_score:
            best_face = candidate
            best_score = score
    return best_face, best_score


def identify(
    query: FeatureVector | None,
    candidates: Sequence[LabeledFace],
    threshold: float,
    *,
    max_channel_value: float = DEFAULT_MAX_CHANNEL_VALUE,
    strict_length: bool = False,
    clamp: bool = False,
) -> LabeledFace | None:
    """Return the best-matching known face, or ``None`` if nothing beats ``threshold``."""
    face, _score = best_match(
        query,
        candidates,
        threshold,
        max_channel_value=max_channel_value,
        strict_length=strict_length,
        clamp=clamp,
    )
    return face


def match(
    query: FeatureVector | None,
    candidates: Sequence[LabeledFace],
    threshold: float,
    *,
    max_channel_value: float = DEFAULT_MAX_CHANNEL_VALUE,
    strict_length: bool = False,
    clamp: bool = False,
) -> MatchResult:
    """Like :func:`identify`, but returns a tagged result explaining a miss."""
    if query is None:
        return NotIdentified(NoMatchReason.NO_QUERY)
    if not candidates:
        return NotIdentified(NoMatchReason.NO_CANDIDATES)

    face, score = best_match(
        query,
        candidates,
        threshold,
        max_channel_value=max_channel_value,
        strict_length=strict_length,
        clamp=clamp,
    )
    if face is None:
        return NotIdentified(NoMatchReason.BELOW_THRESHOLD)
    return Identified(label=face.label, region=face.region, score=score)


class Matcher:
    """Similarity options and default threshold bound from configuration."""

    def __init__(
        self,
        threshold: float = 0.7,
        max_channel_value: float = DEFAULT_MAX_CHANNEL_VALUE,
        strict_length: bool = False,
        clamp: bool = False,
    ) -> None:
        self.threshold = threshold
        self.max_channel_value = max_channel_value
        self.strict_length = strict_length
        self.clamp = clamp

    def similarity(self, a: FeatureVector | None, b: FeatureVector | None) -> float:
        return similarity(
            a,
            b,
            max_channel_value=self.max_channel_value,
            strict_length=self.strict_length,
            clamp=self.clamp,
        )

    def identify(
        self,
        query: FeatureVector | None,
        candidates: Sequence[LabeledFace],
        threshold: float | None = None,
    ) -> LabeledFace | None:
        return identify(
            query,
            candidates,
            self.threshold if threshold is None else threshold,
            max_channel_value=self.max_channel_value,
            strict_length=self.strict_length,
            clamp=self.clamp,
        )

    def match(
        self,
        query: FeatureVector | None,
        candidates: Sequence[LabeledFace],
        threshold: float | None = None,
    ) -> MatchResult:
        return match(
            query,
            candidates,
            self.threshold if threshold is None else threshold,
            max_channel_value=self.max_channel_value,
            strict_length=self.strict_length,
            clamp=self.clamp,
        )
