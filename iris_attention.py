"""
Attention signal for the iris engine.

Face detection runs elsewhere, on its own clock. What reaches the engine
is a frozen AttentionSample, published into a LatestSampleSource and read
back once per tick without waiting. Before the first publish the source
returns None and the engine falls back to "nobody there" (or to an
optional activity proxy, e.g. pointer speed).

LookingEstimator turns raw detection records into samples. Records come
from a JavaScript-style detector, so the box may sit under several keys
and any field may be missing; anything unreadable is skipped.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from iris_noise import clamp, lerp

# ═══════════════════════════════════════════════════════════════════════
#  Constants
# ═══════════════════════════════════════════════════════════════════════

DEFAULT_FRAME_W: int = 320
DEFAULT_FRAME_H: int = 240

LOOKING_THRESHOLD: float = 0.3
NOT_LOOKING_WEIGHT: float = 0.5   # face present but not looking at the eye

# Confidence smoothing per update
CONFIDENCE_RISE: float = 0.5
CONFIDENCE_DECAY: float = 0.1

# Box geometry
CENTRE_TOLERANCE: float = 0.4     # fraction of the frame still "centred"
SIZE_REFERENCE: float = 0.08      # face area (of frame) for full size credit
CLOSE_AREA: float = 0.35          # face area (of frame) where proximity starts
DEFAULT_BOX_SIZE: float = 100.0   # px, when width/height are missing


# ═══════════════════════════════════════════════════════════════════════
#  Samples and sources
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AttentionSample:
    """One reading from the attention collaborator."""
    looking_confidence: float = 0.0
    face_count: int = 0
    proximity: float = 0.0
    is_looking: bool = False


@dataclass(frozen=True)
class AttentionInput:
    """What the lifecycle consumes each tick."""
    target_raw: float
    no_one_present: bool
    proximity: float


NO_SAMPLE: AttentionSample = AttentionSample()


class AttentionSource(Protocol):
    def latest(self) -> AttentionSample | None: ...


class LatestSampleSource:
    """Holds the most recent sample.

    publish() replaces the reference in one assignment, so a reader on
    another thread sees either the old sample or the new one.
    """

    def __init__(self) -> None:
        self._sample: AttentionSample | None = None
        self.published: int = 0

    def publish(self, sample: AttentionSample) -> None:
        self._sample = sample
        self.published += 1

    def latest(self) -> AttentionSample | None:
        return self._sample


def attention_input(
    sample: AttentionSample | None, fallback: float | None = None
) -> AttentionInput:
    """Fold a sample (or its absence) into the lifecycle's three inputs.

    Looking at the eye gives full confidence, a face that looks away
    gives half, nobody gives zero. With no sample at all, `fallback`
    (0..1) stands in for the target while nobody is reported present.
    """
    if sample is None:
        target = clamp(fallback, 0.0, 1.0) if fallback is not None else 0.0
        return AttentionInput(target_raw=target, no_one_present=True, proximity=0.0)

    if sample.is_looking:
        target = sample.looking_confidence
    elif sample.face_count > 0:
        target = sample.looking_confidence * NOT_LOOKING_WEIGHT
    else:
        target = 0.0
    return AttentionInput(
        target_raw=clamp(target, 0.0, 1.0),
        no_one_present=sample.face_count == 0,
        proximity=clamp(sample.proximity, 0.0, 1.0),
    )


def face_status(sample: AttentionSample | None) -> str:
    """Short human-readable status for the HUD."""
    if sample is None:
        return "loading..."
    if sample.is_looking:
        return f"looking ({round(sample.looking_confidence * 100)}%)"
    if sample.face_count > 0:
        plural = "s" if sample.face_count > 1 else ""
        return f"{sample.face_count} face{plural}"
    return "no faces"


# ═══════════════════════════════════════════════════════════════════════
#  Detection aggregation
# ═══════════════════════════════════════════════════════════════════════

def _number(box: Mapping[str, Any], *keys: str) -> float | None:
    for key in keys:
        value = box.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            if math.isfinite(value):
                return float(value)
    return None


def find_box(detection: Any) -> Mapping[str, Any] | None:
    """Locate the bounding box inside one detection record, if any."""
    if not isinstance(detection, Mapping):
        return None

    aligned = detection.get("alignedRect")
    if isinstance(aligned, Mapping) and isinstance(aligned.get("_box"), Mapping):
        return aligned["_box"]

    inner = detection.get("detection")
    if isinstance(inner, Mapping):
        for key in ("_box", "box"):
            if isinstance(inner.get(key), Mapping):
                return inner[key]

    if isinstance(detection.get("box"), Mapping):
        return detection["box"]
    if "_x" in detection:
        return detection
    return None


def face_geometry(
    box: Mapping[str, Any], frame_w: float, frame_h: float
) -> tuple[float, float] | None:
    """(confidence, proximity) for one box, or None if it has no position."""
    x = _number(box, "_x", "x")
    y = _number(box, "_y", "y")
    if x is None or y is None:
        return None
    w = _number(box, "_width", "width")
    h = _number(box, "_height", "height")
    w = DEFAULT_BOX_SIZE if w is None else w
    h = DEFAULT_BOX_SIZE if h is None else h

    cx = clamp(1 - abs(x + w / 2 - frame_w / 2) / (frame_w * CENTRE_TOLERANCE), 0.0, 1.0)
    cy = clamp(1 - abs(y + h / 2 - frame_h / 2) / (frame_h * CENTRE_TOLERANCE), 0.0, 1.0)

    frame_area = frame_w * frame_h
    area = w * h
    size_norm = clamp(area / (frame_area * SIZE_REFERENCE), 0.0, 1.0)
    close_area = frame_area * CLOSE_AREA
    proximity = clamp((area - close_area) / close_area, 0.0, 1.0)

    centredness = (cx * cy) ** 0.3
    confidence = min(1.0, centredness * (0.8 + size_norm * 0.4) * 1.3)
    return confidence, proximity


class LookingEstimator:
    """Smooths per-frame detections into a looking/proximity signal."""

    def __init__(self) -> None:
        self.confidence: float = 0.0
        self.proximity: float = 0.0
        self.skipped: int = 0  # detections without a usable box

    def update(
        self,
        detections: Iterable[Any] | None,
        frame_w: float = DEFAULT_FRAME_W,
        frame_h: float = DEFAULT_FRAME_H,
    ) -> AttentionSample:
        records = list(detections or ())
        best_conf = 0.0
        best_prox = 0.0
        for det in records:
            box = find_box(det)
            geometry = face_geometry(box, frame_w, frame_h) if box is not None else None
            if geometry is None:
                self.skipped += 1
                continue
            best_conf = max(best_conf, geometry[0])
            best_prox = max(best_prox, geometry[1])

        if records:
            self.confidence = float(lerp(self.confidence, best_conf, CONFIDENCE_RISE))
            self.proximity = best_prox
        else:
            self.confidence = float(lerp(self.confidence, 0.0, CONFIDENCE_DECAY))
            self.proximity = 0.0

        return AttentionSample(
            looking_confidence=self.confidence,
            face_count=len(records),
            proximity=self.proximity,
            is_looking=self.confidence > LOOKING_THRESHOLD,
        )
