from __future__ import annotations

import logging
import math
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .config import SessionConfig, get_config
from .models import PostureClass, Reading, Session
from .storage import StatsStore

LOGGER = logging.getLogger(__name__)
MS_PER_MINUTE = 60_000
PROGRESS_LOG_EVERY = 50

Clock = Callable[[], float]
UserProvider = Callable[[], Optional[str]]


def wall_clock_ms() -> float:
    return time.time() * 1000.0


def duration_minutes(elapsed_ms: float) -> int:
    """Whole minutes, rounding halves up (30 s -> 1, 29.9 s -> 0)."""
    return int(math.floor(elapsed_ms / MS_PER_MINUTE + 0.5))


def _iso_from_ms(value: float) -> str:
    return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc).isoformat()


class SessionTracker:
    """
    Aggregate readings between camera start and stop into a `Session`.

    On `end()`, sessions of at least `min_duration_minutes` are folded into the
    current user's statistics through `store`. Without a logged-in user the
    session is dropped; there is nobody to attach it to.
    """

    def __init__(
        self,
        store: StatsStore,
        user_provider: UserProvider,
        *,
        clock: Clock = wall_clock_ms,
        config: SessionConfig | None = None,
    ) -> None:
        cfg = config or get_config().session
        self.store = store
        self.user_provider = user_provider
        self.clock = clock
        self.good_confidence = cfg.good_confidence
        self.min_duration_minutes = cfg.min_duration_minutes
        self.current: Optional[Session] = None
        self.readings: List[Reading] = []
        self._started_ms: Optional[float] = None

    @property
    def is_active(self) -> bool:
        return self.current is not None

    def start(self) -> None:
        if self.is_active:
            LOGGER.info("Session already active; ignoring start request")
            return
        now = self.clock()
        self._started_ms = now
        self.current = Session(timestamp=_iso_from_ms(now))
        self.readings = []
        LOGGER.info("Posture tracking session started")

    def add_reading(self, posture_class: PostureClass, confidence: float) -> None:
        session = self.current
        if session is None:
            LOGGER.debug("No active session for reading")
            return

        self.readings.append(Reading(self.clock(), posture_class, confidence))
        session.total_readings += 1
        session.confidence.append(confidence)
        if posture_class is PostureClass.GOOD and confidence > self.good_confidence:
            session.good_posture_readings += 1
        session.good_posture_percentage = (
            session.good_posture_readings / session.total_readings * 100.0
        )

        if session.total_readings % PROGRESS_LOG_EVERY == 0:
            LOGGER.info(
                "Session progress: %d readings, %d%% good posture",
                session.total_readings,
                round(session.good_posture_percentage),
            )

    def end(self) -> Optional[Session]:
        """Stop tracking; return the session if it was saved."""
        session = self.current
        if session is None or self._started_ms is None:
            return None

        elapsed_ms = self.clock() - self._started_ms
        session.duration = duration_minutes(elapsed_ms)
        saved: Optional[Session] = None
        try:
            if elapsed_ms >= self.min_duration_minutes * MS_PER_MINUTE:
                if self._finalize(session):
                    saved = session
            else:
                LOGGER.info("Session lasted under %d minute(s); not saved", self.min_duration_minutes)
        finally:
            self.current = None
            self.readings = []
            self._started_ms = None
        return saved

    def _finalize(self, session: Session) -> bool:
        user_id = self.user_provider()
        if not user_id:
            LOGGER.warning("Cannot save session: no user logged in")
            return False
        stats = self.store.load(user_id)
        stats.add_session(session)
        self.store.save(user_id, stats)
        LOGGER.info("Session saved! Total sessions: %d", stats.total_sessions)
        return True
