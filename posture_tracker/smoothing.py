"""Temporal smoothing of per-frame posture classifications.

Three independent signals are derived from the raw stream:

- `PredictionSmoother`: short-window majority vote, the class shown to the user
  and fed to notifications and session tracking.
- `ConsistencyTracker`: medium-window agreement ratio of the smoothed classes.
- `AdaptiveThreshold`: a slow walk driven by raw confidence, displayed as
  telemetry only.
"""

from __future__ import annotations

from collections import Counter, deque
from typing import Deque, Hashable, Optional

from .config import AdaptiveThresholdConfig, SmoothingConfig, get_config
from .models import PostureClass, Reading, StabilizedPrediction


NEUTRAL_CONSISTENCY = 0.5
MIN_CONSISTENCY_HISTORY = 3


class PredictionSmoother:
    """Majority vote over the last `window_size` readings."""

    def __init__(
        self,
        window_size: int | None = None,
        confidence_threshold: float | None = None,
        *,
        config: SmoothingConfig | None = None,
    ) -> None:
        cfg = config or get_config().smoothing
        self.window_size = int(window_size if window_size is not None else cfg.window_size)
        if self.window_size < 1:
            raise ValueError("window_size must be at least 1.")
        self.confidence_threshold = float(
            confidence_threshold if confidence_threshold is not None else cfg.confidence_threshold
        )
        self._window: Deque[Reading] = deque(maxlen=self.window_size)

    @property
    def window(self) -> tuple[Reading, ...]:
        return tuple(self._window)

    def reset(self) -> None:
        self._window.clear()

    def _passthrough(self, reading: Reading) -> StabilizedPrediction:
        return StabilizedPrediction(
            posture_class=reading.posture_class,
            confidence=reading.confidence,
            is_stable=reading.confidence > self.confidence_threshold,
        )

    def observe(self, reading: Reading) -> StabilizedPrediction:
        self._window.append(reading)
        if len(self._window) < 2:
            return self._passthrough(reading)

        # Counter keeps first-seen order, so the strict `>` scan below picks the
        # first class to reach the maximum count when several tie.
        counts: Counter[PostureClass] = Counter(item.posture_class for item in self._window)
        winner: Optional[PostureClass] = None
        max_count = 0
        for posture_class, count in counts.items():
            if count > max_count:
                winner, max_count = posture_class, count

        if max_count == 1 or winner is None:
            return self._passthrough(reading)

        confidences = [item.confidence for item in self._window if item.posture_class is winner]
        confidence = sum(confidences) / len(confidences)
        return StabilizedPrediction(
            posture_class=winner,
            confidence=confidence,
            is_stable=confidence > self.confidence_threshold,
        )


class ConsistencyTracker:
    """Share of the recent smoothed labels that agree with the modal label."""

    def __init__(self, capacity: int | None = None) -> None:
        self.capacity = int(capacity if capacity is not None else get_config().smoothing.consistency_window)
        if self.capacity < 1:
            raise ValueError("capacity must be at least 1.")
        self._history: Deque[Hashable] = deque(maxlen=self.capacity)

    def __len__(self) -> int:
        return len(self._history)

    def reset(self) -> None:
        self._history.clear()

    def observe(self, label: Hashable) -> float:
        self._history.append(label)
        if len(self._history) < MIN_CONSISTENCY_HISTORY:
            return NEUTRAL_CONSISTENCY
        _, mode_count = Counter(self._history).most_common(1)[0]
        return mode_count / len(self._history)


class AdaptiveThreshold:
    """
    Confidence-driven threshold walk used for diagnostics display.

    High-confidence frames nudge the threshold up, low-confidence frames nudge
    it down, each by `step` and clamped to [`lower`, `upper`]. Nothing in the
    notification or session logic reads this value.
    """

    def __init__(self, config: AdaptiveThresholdConfig | None = None) -> None:
        self.config = config or get_config().adaptive_threshold
        self.value = self.config.initial

    def reset(self) -> None:
        self.value = self.config.initial

    def update(self, confidence: float) -> float:
        cfg = self.config
        if confidence > cfg.raise_above:
            self.value = min(self.value + cfg.step, cfg.upper)
        elif confidence < cfg.lower_below:
            self.value = max(self.value - cfg.step, cfg.lower)
        return self.value
