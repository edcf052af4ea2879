"""Single-threaded monitoring loop.

Each cycle runs the (possibly slow) classifier, then folds the result through
the smoothing, notification and session components synchronously. The next
cycle starts only after the previous one completes, so slow inference lowers
the frame rate instead of queuing frames.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional

from .config import AppConfig, get_config
from .feedback import NO_PERSON_FEEDBACK, feedback_for, status_for
from .models import (
    ClassificationResult,
    Reading,
    Session,
    StabilizedPrediction,
    ValidationError,
    coerce_confidence,
    parse_posture_class,
)
from .notifications import NotificationDispatcher, NotificationEngine
from .quality import is_low_quality, pose_quality, visible_fraction
from .sessions import Clock, SessionTracker, UserProvider, wall_clock_ms
from .smoothing import AdaptiveThreshold, ConsistencyTracker, PredictionSmoother
from .storage import StatsStore

LOGGER = logging.getLogger(__name__)

Classifier = Callable[[Any], Optional[ClassificationResult]]

STATUS_OK = "ok"
STATUS_NO_PERSON = "no_person"
STATUS_ERROR = "error"


@dataclass(frozen=True)
class FrameResult:
    status: str
    reading: Optional[Reading] = None
    prediction: Optional[StabilizedPrediction] = None
    pose_quality: float = 0.0
    visible_fraction: float = 0.0
    low_quality: bool = False
    consistency: float = 0.0
    adaptive_threshold: float = 0.0
    alert_fired: bool = False
    feedback: str = ""
    status_text: str = ""


class PostureMonitor:
    """Fold classifier output through every tracking component."""

    def __init__(
        self,
        classify: Classifier,
        store: StatsStore,
        user_provider: UserProvider,
        *,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock = wall_clock_ms,
        sleep: Callable[[float], None] = time.sleep,
        config: AppConfig | None = None,
    ) -> None:
        cfg = config or get_config()
        self.classify = classify
        self.clock = clock
        self.sleep = sleep
        self.interval = cfg.monitor_interval_seconds
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.smoother = PredictionSmoother(config=cfg.smoothing)
        self.consistency = ConsistencyTracker(cfg.smoothing.consistency_window)
        self.threshold = AdaptiveThreshold(cfg.adaptive_threshold)
        self.notifier = NotificationEngine(cfg.notifications)
        self.tracker = SessionTracker(store, user_provider, clock=clock, config=cfg.session)
        self.running = False
        self.alerts_fired = 0
        self.last_saved: Optional[Session] = None

    def start(self) -> None:
        if self.running:
            LOGGER.info("Monitor already running")
            return
        self.tracker.start()
        self.running = True
        LOGGER.info("Detection loop started")

    def stop(self) -> Optional[Session]:
        """Finalize the active session and reset all per-session state."""
        self.running = False
        saved: Optional[Session] = None
        try:
            saved = self.tracker.end()
        finally:
            self.smoother.reset()
            self.consistency.reset()
            self.threshold.reset()
            self.notifier.reset()
            self.last_saved = saved
        LOGGER.info("Detection loop stopped")
        return saved

    def process(self, frame: Any) -> FrameResult:
        try:
            result = self.classify(frame)
        except Exception as exc:  # model failures must not end the loop
            LOGGER.error("Error in pose detection: %s", exc)
            return FrameResult(status=STATUS_ERROR, status_text="Detection error")

        if result is None or not result.has_person:
            return FrameResult(
                status=STATUS_NO_PERSON,
                feedback=NO_PERSON_FEEDBACK,
                status_text="No person detected",
            )

        try:
            posture_class = parse_posture_class(result.label, field="label")
            confidence = coerce_confidence(result.confidence)
        except ValidationError as exc:
            LOGGER.error("Discarding unusable classification: %s", exc)
            return FrameResult(status=STATUS_ERROR, status_text="Detection error")

        now = self.clock()
        reading = Reading(timestamp=now, posture_class=posture_class, confidence=confidence)
        quality = pose_quality(result.keypoints)
        prediction = self.smoother.observe(reading)
        consistency = self.consistency.observe(prediction.posture_class)
        threshold = self.threshold.update(confidence)

        fired = self.notifier.observe(prediction.posture_class, prediction.confidence, now)
        if fired:
            self.alerts_fired += 1
            self.dispatcher.dispatch()

        self.tracker.add_reading(prediction.posture_class, prediction.confidence)

        return FrameResult(
            status=STATUS_OK,
            reading=reading,
            prediction=prediction,
            pose_quality=quality,
            visible_fraction=visible_fraction(result.keypoints),
            low_quality=is_low_quality(quality),
            consistency=consistency,
            adaptive_threshold=threshold,
            alert_fired=fired,
            feedback=feedback_for(prediction.posture_class, prediction.confidence),
            status_text=status_for(prediction.confidence),
        )

    def run(self, frames: Iterable[Any], *, interval: float | None = None) -> List[FrameResult]:
        """
        Process `frames` one cycle at a time until exhausted or `stop()` is called.

        The session is finalized when the loop ends.
        """
        delay = self.interval if interval is None else interval
        self.start()
        results: List[FrameResult] = []
        try:
            for frame in frames:
                if not self.running:
                    break
                results.append(self.process(frame))
                if delay > 0:
                    self.sleep(delay)
        finally:
            if self.running:
                self.stop()
        return results
