from __future__ import annotations

import logging
import platform
import shutil
import subprocess
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Sequence

import typer

from .config import NotificationConfig, get_config
from .models import PostureClass

LOGGER = logging.getLogger(__name__)

ALERT_TITLE = "Perfect Posture Alert"
ALERT_BODY = "Please sit up straight and adjust your posture!"
TEST_TITLE = "Perfect Posture Test"
TEST_BODY = "This is a test notification from Perfect Posture!"


@dataclass
class NotificationState:
    consecutive_bad_count: int = 0
    last_fired_at: Optional[float] = None
    cooldown_ms: int = 10_000
    trigger_threshold: int = 2


class NotificationEngine:
    """
    Decide when sustained bad posture warrants an alert.

    `trigger_threshold` consecutive confident "bad" observations are required
    (a confident "good" observation clears the run), and no two alerts are
    fired within `cooldown_ms` of each other.
    """

    def __init__(self, config: NotificationConfig | None = None) -> None:
        cfg = config or get_config().notifications
        self.enabled = cfg.enabled
        self.min_confidence = cfg.min_confidence
        self.state = NotificationState(
            cooldown_ms=cfg.cooldown_ms,
            trigger_threshold=cfg.trigger_threshold,
        )

    def reset(self) -> None:
        self.state.consecutive_bad_count = 0
        self.state.last_fired_at = None

    def _cooldown_elapsed(self, now: float) -> bool:
        last = self.state.last_fired_at
        return last is None or now - last > self.state.cooldown_ms

    def observe(self, posture_class: PostureClass, confidence: float, now: float) -> bool:
        if not self.enabled:
            return False
        state = self.state
        if confidence <= self.min_confidence:
            return False

        if posture_class is PostureClass.GOOD:
            if state.consecutive_bad_count:
                LOGGER.debug("Good posture detected - resetting bad posture counter")
            state.consecutive_bad_count = 0
            return False

        if posture_class is not PostureClass.BAD:
            return False

        state.consecutive_bad_count += 1
        LOGGER.debug(
            "Bad posture detected: %d/%d", state.consecutive_bad_count, state.trigger_threshold
        )
        if state.consecutive_bad_count >= state.trigger_threshold and self._cooldown_elapsed(now):
            state.last_fired_at = now
            state.consecutive_bad_count = 0
            LOGGER.info("Bad posture sustained; firing alert at %.0f ms", now)
            return True
        return False


class NotificationTransport(Protocol):
    name: str

    def send(self, title: str, body: str) -> bool:
        ...


def _desktop_command(title: str, body: str) -> list[str] | None:
    system = platform.system()
    if system == "Linux" and shutil.which("notify-send"):
        return ["notify-send", "--urgency=critical", title, body]
    if system == "Darwin" and shutil.which("osascript"):
        script = f'display notification "{body}" with title "{title}"'
        return ["osascript", "-e", script]
    return None


class DesktopTransport:
    """Native OS notification via `notify-send` (Linux) or `osascript` (macOS)."""

    name = "native"

    def __init__(
        self,
        command_builder: Callable[[str, str], list[str] | None] = _desktop_command,
        timeout: float = 5.0,
    ) -> None:
        self._command_builder = command_builder
        self._timeout = timeout

    def send(self, title: str, body: str) -> bool:
        command = self._command_builder(title, body)
        if not command:
            LOGGER.info("No native notification command available on this platform.")
            return False
        try:
            subprocess.run(command, check=True, capture_output=True, timeout=self._timeout)
        except (OSError, subprocess.SubprocessError) as exc:
            LOGGER.warning("Native notification failed: %s", exc)
            return False
        return True


class ConsoleTransport:
    """In-app visual alert written to the terminal."""

    name = "console"

    def send(self, title: str, body: str) -> bool:
        typer.secho(f"[!] {title}: {body}", fg=typer.colors.RED, bold=True, err=True)
        return True


class NotificationDispatcher:
    """Try each transport in turn until one reports success."""

    def __init__(self, transports: Sequence[NotificationTransport] | None = None) -> None:
        self.transports: list[NotificationTransport] = list(
            transports if transports is not None else (DesktopTransport(), ConsoleTransport())
        )
        self.last_transport: str | None = None

    def dispatch(self, title: str = ALERT_TITLE, body: str = ALERT_BODY) -> bool:
        for transport in self.transports:
            if transport.send(title, body):
                self.last_transport = transport.name
                LOGGER.info("Notification delivered via %s transport", transport.name)
                return True
            LOGGER.info("Transport %s failed; trying next fallback", transport.name)
        self.last_transport = None
        LOGGER.error("All notification transports failed for %r", title)
        return False

    def send_test(self) -> bool:
        return self.dispatch(TEST_TITLE, TEST_BODY)
