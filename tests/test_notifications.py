from __future__ import annotations

import subprocess

import pytest

from posture_tracker.config import NotificationConfig
from posture_tracker.models import PostureClass
from posture_tracker.notifications import (
    ALERT_BODY,
    ALERT_TITLE,
    TEST_TITLE,
    ConsoleTransport,
    DesktopTransport,
    NotificationDispatcher,
    NotificationEngine,
)

GOOD = PostureClass.GOOD
BAD = PostureClass.BAD
LEANING = PostureClass.LEANING_FORWARD


class RecordingTransport:
    def __init__(self, name: str, succeed: bool = True) -> None:
        self.name = name
        self.succeed = succeed
        self.sent: list[tuple[str, str]] = []

    def send(self, title: str, body: str) -> bool:
        self.sent.append((title, body))
        return self.succeed


@pytest.fixture
def engine() -> NotificationEngine:
    return NotificationEngine(NotificationConfig(cooldown_ms=10_000, trigger_threshold=2))


def test_second_bad_observation_fires_then_cooldown_blocks(engine: NotificationEngine) -> None:
    assert engine.observe(BAD, 0.8, 0.0) is False
    assert engine.observe(BAD, 0.8, 3000.0) is True
    assert engine.state.consecutive_bad_count == 0
    assert engine.state.last_fired_at == 3000.0
    assert engine.observe(BAD, 0.8, 5000.0) is False
    assert engine.observe(BAD, 0.8, 7000.0) is False


def test_first_alert_is_not_blocked_near_clock_origin(engine: NotificationEngine) -> None:
    engine.observe(BAD, 0.9, 100.0)
    assert engine.observe(BAD, 0.9, 200.0) is True


def test_sustained_bad_posture_fires_once_per_cooldown(engine: NotificationEngine) -> None:
    fired_at = [t for t in range(0, 40_000, 1000) if engine.observe(BAD, 0.9, float(t))]
    assert fired_at == [1000, 12000, 23000, 34000]
    for earlier, later in zip(fired_at, fired_at[1:]):
        assert later - earlier >= 10_000


def test_confident_good_posture_clears_the_run(engine: NotificationEngine) -> None:
    engine.observe(BAD, 0.9, 0.0)
    engine.observe(GOOD, 0.9, 500.0)
    assert engine.state.consecutive_bad_count == 0
    assert engine.observe(BAD, 0.9, 1000.0) is False
    assert engine.observe(BAD, 0.9, 1500.0) is True


def test_low_confidence_observations_change_nothing(engine: NotificationEngine) -> None:
    engine.observe(BAD, 0.9, 0.0)
    assert engine.observe(GOOD, 0.6, 100.0) is False
    assert engine.observe(BAD, 0.6, 200.0) is False
    assert engine.state.consecutive_bad_count == 1


def test_leaning_forward_neither_counts_nor_resets(engine: NotificationEngine) -> None:
    engine.observe(BAD, 0.9, 0.0)
    assert engine.observe(LEANING, 0.95, 100.0) is False
    assert engine.state.consecutive_bad_count == 1
    assert engine.observe(BAD, 0.9, 200.0) is True


def test_disabled_engine_never_fires() -> None:
    engine = NotificationEngine(NotificationConfig(enabled=False))
    for t in range(10):
        assert engine.observe(BAD, 0.99, float(t * 1000)) is False


def test_reset_forgets_cooldown(engine: NotificationEngine) -> None:
    engine.observe(BAD, 0.9, 0.0)
    engine.observe(BAD, 0.9, 100.0)
    engine.reset()
    assert engine.state.last_fired_at is None
    engine.observe(BAD, 0.9, 200.0)
    assert engine.observe(BAD, 0.9, 300.0) is True


def test_dispatcher_falls_back_to_next_transport() -> None:
    native = RecordingTransport("native", succeed=False)
    visual = RecordingTransport("console")
    dispatcher = NotificationDispatcher([native, visual])

    assert dispatcher.dispatch() is True
    assert dispatcher.last_transport == "console"
    assert native.sent == [(ALERT_TITLE, ALERT_BODY)]
    assert visual.sent == [(ALERT_TITLE, ALERT_BODY)]


def test_dispatcher_reports_total_failure() -> None:
    dispatcher = NotificationDispatcher([RecordingTransport("native", succeed=False)])
    assert dispatcher.send_test() is False
    assert dispatcher.last_transport is None


def test_send_test_uses_test_title() -> None:
    transport = RecordingTransport("console")
    assert NotificationDispatcher([transport]).send_test() is True
    assert transport.sent[0][0] == TEST_TITLE


def test_desktop_transport_runs_command(monkeypatch) -> None:
    calls = []

    def fake_run(command, **kwargs):
        calls.append((command, kwargs))
        return subprocess.CompletedProcess(command, 0)

    monkeypatch.setattr(subprocess, "run", fake_run)
    transport = DesktopTransport(command_builder=lambda title, body: ["notify-send", title, body])
    assert transport.send("Title", "Body") is True
    assert calls[0][0] == ["notify-send", "Title", "Body"]
    assert calls[0][1]["check"] is True


def test_desktop_transport_failures_return_false(monkeypatch) -> None:
    def failing_run(command, **kwargs):
        raise subprocess.CalledProcessError(1, command)

    monkeypatch.setattr(subprocess, "run", failing_run)
    transport = DesktopTransport(command_builder=lambda title, body: ["notify-send", title, body])
    assert transport.send("Title", "Body") is False
    assert DesktopTransport(command_builder=lambda title, body: None).send("Title", "Body") is False


def test_console_transport_writes_to_stderr(capsys) -> None:
    assert ConsoleTransport().send(ALERT_TITLE, ALERT_BODY) is True
    captured = capsys.readouterr()
    assert ALERT_TITLE in captured.err
    assert ALERT_BODY in captured.err
