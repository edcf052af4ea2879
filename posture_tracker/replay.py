"""Replay recorded classifier output through `PostureMonitor`.

A recording is a CSV or JSON list of rows with `timestamp`, `label` and
`confidence` (plus optional `quality` or `keypoints`). Rows with an empty label
stand for frames in which nobody was detected. Timestamps are epoch
milliseconds or ISO-8601 strings and drive a simulated clock, so cooldowns and
session durations follow the recording rather than wall time.
"""

from __future__ import annotations

import csv
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence

from .models import ClassificationResult, Keypoint, Session, ValidationError, coerce_confidence
from .notifications import NotificationDispatcher
from .pipeline import STATUS_ERROR, STATUS_NO_PERSON, FrameResult, PostureMonitor
from .quality import KEY_JOINTS
from .sessions import UserProvider
from .storage import StatsStore

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordedFrame:
    timestamp: float
    label: str
    confidence: float
    keypoints: Sequence[Keypoint] = ()


@dataclass
class ReplaySummary:
    frames: int = 0
    readings: int = 0
    no_person: int = 0
    errors: int = 0
    alerts: int = 0
    saved_session: Optional[Session] = None
    results: List[FrameResult] = field(default_factory=list)


class ReplayClock:
    """Clock that reports whatever time it was last set to."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


def _parse_timestamp(value: Any, index: int) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    text = str(value or "").strip()
    if not text:
        raise ValidationError(f"Row {index}: timestamp is required.")
    try:
        return float(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).timestamp() * 1000.0
    except ValueError as exc:
        raise ValidationError(f"Row {index}: invalid timestamp {text!r}.") from exc


def _parse_keypoints(row: Mapping[str, Any], index: int) -> List[Keypoint]:
    raw = row.get("keypoints")
    if isinstance(raw, str) and raw.strip():
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Row {index}: keypoints must be JSON.") from exc
    if isinstance(raw, list) and raw:
        try:
            return [Keypoint.from_mapping(item) for item in raw]
        except ValidationError as exc:
            raise ValidationError(f"Row {index}: {exc}") from exc

    quality_raw = row.get("quality")
    score = 1.0
    if quality_raw not in (None, ""):
        score = coerce_confidence(quality_raw, field=f"row {index} quality")
    return [Keypoint(part=part, score=score) for part in KEY_JOINTS]


def parse_rows(rows: Iterable[Mapping[str, Any]]) -> List[RecordedFrame]:
    frames: List[RecordedFrame] = []
    for index, row in enumerate(rows, start=1):
        if not isinstance(row, Mapping):
            raise ValidationError(f"Row {index}: expected an object; received {row!r}.")
        timestamp = _parse_timestamp(row.get("timestamp"), index)
        label = str(row.get("label") or "").strip()
        if not label:
            frames.append(RecordedFrame(timestamp=timestamp, label="", confidence=0.0))
            continue
        confidence = coerce_confidence(row.get("confidence"), field=f"row {index} confidence")
        frames.append(
            RecordedFrame(
                timestamp=timestamp,
                label=label,
                confidence=confidence,
                keypoints=_parse_keypoints(row, index),
            )
        )
    frames.sort(key=lambda frame: frame.timestamp)
    return frames


def load_recording(path: Path) -> List[RecordedFrame]:
    if not path.exists():
        raise FileNotFoundError(f"Recording not found: {path}")
    if path.suffix.lower() == ".json":
        payload = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(payload, list):
            raise ValueError(f"{path} must contain a JSON list of readings")
        return parse_rows(payload)
    with path.open(newline="", encoding="utf-8") as handle:
        return parse_rows(csv.DictReader(handle))


def replay(
    frames: Sequence[RecordedFrame],
    store: StatsStore,
    user_provider: UserProvider,
    *,
    dispatcher: NotificationDispatcher | None = None,
    on_frame: Callable[[FrameResult], None] | None = None,
) -> ReplaySummary:
    """Run every frame through a fresh monitor and finalize the session."""
    clock = ReplayClock(frames[0].timestamp if frames else 0.0)

    def classify(frame: RecordedFrame) -> Optional[ClassificationResult]:
        clock.now = frame.timestamp
        if not frame.label:
            return None
        return ClassificationResult(label=frame.label, confidence=frame.confidence, keypoints=frame.keypoints)

    monitor = PostureMonitor(classify, store, user_provider, dispatcher=dispatcher, clock=clock)
    summary = ReplaySummary()
    monitor.start()
    try:
        for frame in frames:
            result = monitor.process(frame)
            summary.frames += 1
            summary.results.append(result)
            if result.status == STATUS_NO_PERSON:
                summary.no_person += 1
            elif result.status == STATUS_ERROR:
                summary.errors += 1
            else:
                summary.readings += 1
            if result.alert_fired:
                summary.alerts += 1
            if on_frame is not None:
                on_frame(result)
    finally:
        summary.saved_session = monitor.stop()
    LOGGER.info(
        "Replayed %d frames (%d readings, %d alerts)", summary.frames, summary.readings, summary.alerts
    )
    return summary
