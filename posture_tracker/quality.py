"""Keypoint quality scoring for a single frame's skeleton.

The score is advisory: it feeds the pose-quality readout and the low-quality
warning banner, never a control decision.
"""

from __future__ import annotations

from typing import Iterable, Sequence

import numpy as np

from .models import Keypoint

KEY_JOINTS: tuple[str, ...] = (
    "nose",
    "leftEye",
    "rightEye",
    "leftShoulder",
    "rightShoulder",
    "leftHip",
    "rightHip",
)
VISIBILITY_FLOOR = 0.2
LOW_QUALITY_THRESHOLD = 0.2
VISIBLE_SCORE = 0.3


def pose_quality(
    keypoints: Iterable[Keypoint],
    *,
    visibility_floor: float = VISIBILITY_FLOOR,
    joints: Sequence[str] = KEY_JOINTS,
) -> float:
    """Mean score of the key joints detected above `visibility_floor`, or 0.0."""
    wanted = set(joints)
    scores = np.asarray(
        [kp.score for kp in keypoints if kp.part in wanted and kp.score > visibility_floor],
        dtype=float,
    )
    if scores.size == 0:
        return 0.0
    return float(scores.mean())


def visible_fraction(keypoints: Sequence[Keypoint], *, min_score: float = VISIBLE_SCORE) -> float:
    """Fraction of all keypoints whose score exceeds `min_score`."""
    if not keypoints:
        return 0.0
    scores = np.asarray([kp.score for kp in keypoints], dtype=float)
    return float(np.count_nonzero(scores > min_score) / scores.size)


def is_low_quality(quality: float, *, threshold: float = LOW_QUALITY_THRESHOLD) -> bool:
    return quality < threshold
