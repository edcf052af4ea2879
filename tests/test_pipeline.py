from __future__ import annotations

import json

import pytest

from posture_tracker.config import AppConfig
from posture_tracker.models import ClassificationResult, Keypoint, PostureClass, ValidationError
from posture_tracker.pipeline import STATUS_ERROR, STATUS_NO_PERSON, STATUS_OK, PostureMonitor
from posture_tracker.quality import KEY_JOINTS
from posture_tracker.replay import load_recording, parse_rows, replay

USER = "ada@example.com"
FULL_BODY = tuple(Keypoint(part, 0.9) for part in KEY_JOINTS)


class RecordingDispatcher:
    def __init__(self) -> None:
        self.calls = 0

    def dispatch(self, *args) -> bool:
        self.calls += 1
        return True


def _result(label: str, confidence: float, keypoints=FULL_BODY) -> ClassificationResult:
    return ClassificationResult(label=label, confidence=confidence, keypoints=keypoints)


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def monitor(memory_store, clock, dispatcher) -> PostureMonitor:
    monitor = PostureMonitor(
        lambda frame: frame,
        memory_store,
        lambda: USER,
        dispatcher=dispatcher,
        clock=clock,
        sleep=lambda _: None,
        config=AppConfig(),
    )
    monitor.start()
    return monitor


def test_classifier_failure_is_reported_without_state_change(memory_store, clock) -> None:
    def broken(frame):
        raise RuntimeError("model not loaded")

    monitor = PostureMonitor(broken, memory_store, lambda: USER, clock=clock, config=AppConfig())
    monitor.start()
    result = monitor.process(object())
    assert result.status == STATUS_ERROR
    assert monitor.tracker.current.total_readings == 0
    assert monitor.smoother.window == ()


def test_frame_without_person_produces_no_reading(monitor: PostureMonitor) -> None:
    for frame in (None, _result("Good posture", 0.9, keypoints=())):
        result = monitor.process(frame)
        assert result.status == STATUS_NO_PERSON
        assert result.reading is None
        assert "position yourself" in result.feedback
    assert monitor.tracker.current.total_readings == 0


def test_unknown_label_is_an_error(monitor: PostureMonitor) -> None:
    assert monitor.process(_result("Slouching", 0.9)).status == STATUS_ERROR
    assert monitor.process(_result("Good posture", 1.5)).status == STATUS_ERROR
    assert monitor.tracker.current.total_readings == 0


def test_reading_flows_through_every_component(monitor: PostureMonitor) -> None:
    result = monitor.process(_result("Good posture", 0.95))
    assert result.status == STATUS_OK
    assert result.reading.posture_class is PostureClass.GOOD
    assert result.prediction.confidence == 0.95
    assert result.pose_quality == pytest.approx(0.9)
    assert result.low_quality is False
    assert result.consistency == 0.5
    assert result.adaptive_threshold == pytest.approx(0.61)
    assert result.feedback.startswith("Great posture!")
    assert monitor.tracker.current.good_posture_readings == 1


def test_low_pose_quality_is_flagged(monitor: PostureMonitor) -> None:
    sparse = (Keypoint("nose", 0.1), Keypoint("leftKnee", 0.9))
    result = monitor.process(_result("Bad posture", 0.7, keypoints=sparse))
    assert result.status == STATUS_OK
    assert result.pose_quality == 0.0
    assert result.low_quality is True


def test_sustained_bad_posture_dispatches_alert(monitor, clock, dispatcher) -> None:
    fired = []
    for _ in range(4):
        clock.advance(1000)
        fired.append(monitor.process(_result("Bad posture", 0.9)).alert_fired)
    assert fired == [False, True, False, False]
    assert dispatcher.calls == 1
    assert monitor.alerts_fired == 1


def test_stop_saves_session_and_resets_components(monitor, memory_store, clock) -> None:
    for _ in range(30):
        clock.advance(3000)
        monitor.process(_result("Good posture", 0.9))
    saved = monitor.stop()

    assert saved is not None
    assert saved.duration == 2
    assert saved.good_posture_percentage == pytest.approx(100.0)
    assert memory_store.stats[USER].total_sessions == 1
    assert monitor.smoother.window == ()
    assert len(monitor.consistency) == 0
    assert monitor.threshold.value == pytest.approx(0.6)
    assert monitor.running is False


def test_run_processes_frames_and_finalizes(memory_store, clock) -> None:
    sleeps = []

    def classify(frame):
        clock.advance(10_000)
        return frame

    monitor = PostureMonitor(
        classify, memory_store, lambda: USER, clock=clock, sleep=sleeps.append, config=AppConfig(), dispatcher=RecordingDispatcher()
    )
    results = monitor.run([_result("Good posture", 0.9)] * 9, interval=0.25)

    assert len(results) == 9
    assert sleeps == [0.25] * 9
    assert monitor.running is False
    assert monitor.last_saved is not None
    assert monitor.last_saved.total_readings == 9


def test_parse_rows_sorts_and_marks_missing_people() -> None:
    frames = parse_rows(
        [
            {"timestamp": "2000", "label": "bad", "confidence": "0.8"},
            {"timestamp": "1000", "label": "", "confidence": ""},
            {"timestamp": "2026-10-19T10:00:00Z", "label": "Good posture", "confidence": 0.9, "quality": "0.5"},
        ]
    )
    assert [frame.label for frame in frames] == ["", "bad", "Good posture"]
    assert frames[1].keypoints[0].score == 1.0
    assert frames[2].keypoints[0].score == 0.5


def test_parse_rows_rejects_bad_values() -> None:
    with pytest.raises(ValidationError):
        parse_rows([{"timestamp": "", "label": "good", "confidence": 0.5}])
    with pytest.raises(ValidationError):
        parse_rows([{"timestamp": "10", "label": "good", "confidence": "high"}])


def test_replay_csv_recording_saves_session(tmp_path, memory_store) -> None:
    path = tmp_path / "session.csv"
    lines = ["timestamp,label,confidence"]
    for index, ts in enumerate(range(0, 120_001, 2000)):
        label = "Bad posture" if index % 4 == 0 else "Good posture"
        lines.append(f"{ts},{label},0.9")
    lines.append("120500,,")
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    frames = load_recording(path)
    dispatcher = RecordingDispatcher()
    summary = replay(frames, memory_store, lambda: USER, dispatcher=dispatcher)

    assert summary.frames == 62
    assert summary.readings == 61
    assert summary.no_person == 1
    assert summary.alerts == 0
    session = summary.saved_session
    assert session is not None
    assert session.duration == 2
    assert session.total_readings == 61
    assert memory_store.stats[USER].total_sessions == 1


def test_replay_json_recording_with_keypoints(tmp_path, memory_store) -> None:
    keypoints = [{"part": part, "score": 0.8, "position": {"x": 1, "y": 2}} for part in KEY_JOINTS]
    rows = [
        {"timestamp": ts, "label": "Bad posture", "confidence": 0.9, "keypoints": keypoints}
        for ts in range(0, 30_000, 1000)
    ]
    path = tmp_path / "session.json"
    path.write_text(json.dumps(rows), encoding="utf-8")

    dispatcher = RecordingDispatcher()
    summary = replay(load_recording(path), memory_store, lambda: USER, dispatcher=dispatcher)

    assert summary.alerts == 3
    assert dispatcher.calls == 3
    assert summary.results[0].pose_quality == pytest.approx(0.8)
    assert summary.saved_session is None
    assert memory_store.saves == 0


def test_missing_recording_raises(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_recording(tmp_path / "missing.csv")


class CorruptStore:
    def load(self, user_id):
        raise ValueError("Could not parse users.json")

    def save(self, user_id, stats):
        raise AssertionError("save should not be reached")


def test_stop_resets_components_when_saving_fails(clock) -> None:
    monitor = PostureMonitor(
        lambda frame: frame,
        CorruptStore(),
        lambda: USER,
        dispatcher=RecordingDispatcher(),
        clock=clock,
        config=AppConfig(),
    )
    monitor.start()
    for _ in range(5):
        clock.advance(30_000)
        monitor.process(_result("Bad posture", 0.9))

    with pytest.raises(ValueError):
        monitor.stop()

    assert monitor.running is False
    assert not monitor.tracker.is_active
    assert monitor.smoother.window == ()
    assert len(monitor.consistency) == 0
    assert monitor.notifier.state.last_fired_at is None
    assert monitor.last_saved is None


def test_malformed_keypoints_in_recording_name_the_row(tmp_path) -> None:
    rows = [
        {"timestamp": 0, "label": "good", "confidence": 0.9, "keypoints": [{"part": "nose", "score": 0.9}]},
        {"timestamp": 1000, "label": "good", "confidence": 0.9, "keypoints": [{"part": "nose", "score": None}]},
    ]
    path = tmp_path / "broken.json"
    path.write_text(json.dumps(rows), encoding="utf-8")

    with pytest.raises(ValidationError, match="Row 2"):
        load_recording(path)


def test_non_object_rows_are_rejected() -> None:
    with pytest.raises(ValidationError, match="Row 1"):
        parse_rows([["0", "good", "0.9"]])
