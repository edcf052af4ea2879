from __future__ import annotations

import pytest

from posture_tracker.models import Keypoint, ValidationError
from posture_tracker.quality import is_low_quality, pose_quality, visible_fraction


def test_pose_quality_averages_visible_key_joints() -> None:
    keypoints = [
        Keypoint("nose", 0.9),
        Keypoint("leftEye", 0.8),
        Keypoint("rightEye", 0.1),  # below the visibility floor
        Keypoint("leftShoulder", 0.7),
        Keypoint("leftKnee", 0.99),  # not a key joint
    ]
    assert pose_quality(keypoints) == pytest.approx((0.9 + 0.8 + 0.7) / 3)


def test_pose_quality_is_zero_without_qualifying_points() -> None:
    assert pose_quality([]) == 0.0
    assert pose_quality([Keypoint("nose", 0.2), Keypoint("leftAnkle", 0.9)]) == 0.0


def test_low_quality_banner_threshold() -> None:
    assert is_low_quality(0.19)
    assert not is_low_quality(0.2)


def test_visible_fraction_counts_all_keypoints() -> None:
    keypoints = [Keypoint("nose", 0.9), Keypoint("leftKnee", 0.2), Keypoint("leftAnkle", 0.31), Keypoint("rightAnkle", 0.3)]
    assert visible_fraction(keypoints) == pytest.approx(0.5)
    assert visible_fraction([]) == 0.0


def test_keypoint_from_posenet_mapping() -> None:
    keypoint = Keypoint.from_mapping({"part": "nose", "score": 0.75, "position": {"x": 10, "y": 20}})
    assert keypoint == Keypoint("nose", 0.75, 10.0, 20.0)


@pytest.mark.parametrize(
    "payload",
    [
        {"part": "nose", "score": None},
        {"part": "nose", "score": "high"},
        {"part": "nose", "score": 0.5, "position": [1, 2]},
        ["nose", 0.5],
    ],
)
def test_keypoint_from_malformed_mapping_raises_validation_error(payload) -> None:
    with pytest.raises(ValidationError):
        Keypoint.from_mapping(payload)
