from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from statistics import mean
from typing import Any, Dict, List, Mapping, Optional, Sequence

DEFAULT_WEEKLY_GOAL = 80.0

__all__ = [
    "PostureClass",
    "parse_posture_class",
    "coerce_confidence",
    "Keypoint",
    "Reading",
    "StabilizedPrediction",
    "ClassificationResult",
    "Session",
    "UserPostureStats",
    "UserAccount",
    "ValidationError",
    "AuthError",
]


class ValidationError(ValueError):
    """Raised when user-supplied data cannot be normalised safely."""


class AuthError(ValidationError):
    """Raised when an account cannot be registered or authenticated."""


class PostureClass(str, Enum):
    """Posture categories emitted by the classifier."""

    GOOD = "Good posture"
    BAD = "Bad posture"
    LEANING_FORWARD = "Leaning Forward"


_ALIASES: Dict[str, PostureClass] = {
    "good posture": PostureClass.GOOD,
    "good": PostureClass.GOOD,
    "bad posture": PostureClass.BAD,
    "bad": PostureClass.BAD,
    "leaning forward": PostureClass.LEANING_FORWARD,
    "leaningforward": PostureClass.LEANING_FORWARD,
    "leaning": PostureClass.LEANING_FORWARD,
}


def parse_posture_class(value: Any, *, field: str = "posture") -> PostureClass:
    """
    Map a classifier label onto `PostureClass`.

    Accepts the model's display labels ("Good posture") and the short names
    ("good", "bad", "leaning"), case-insensitively.
    """
    if isinstance(value, PostureClass):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a posture label; received {value!r}.")
    key = " ".join(value.replace("_", " ").split()).lower()
    try:
        return _ALIASES[key]
    except KeyError as exc:
        raise ValidationError(f"Unknown {field} label {value!r}.") from exc


def coerce_confidence(value: Any, *, field: str = "confidence") -> float:
    """Convert a classifier probability into a float within [0, 1]."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number; received {value!r}.")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be a number; received {value!r}.") from exc
    if number != number or not 0.0 <= number <= 1.0:
        raise ValidationError(f"{field} must be between 0 and 1; received {value!r}.")
    return number


@dataclass(frozen=True)
class Keypoint:
    """A single PoseNet joint with its detection score."""

    part: str
    score: float
    x: float = 0.0
    y: float = 0.0

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "Keypoint":
        if not isinstance(payload, Mapping):
            raise ValidationError(f"Keypoint must be an object; received {payload!r}.")
        position = payload.get("position") or {}
        try:
            return cls(
                part=str(payload.get("part", "")),
                score=float(payload.get("score", 0.0)),
                x=float(payload.get("x", position.get("x", 0.0))),
                y=float(payload.get("y", position.get("y", 0.0))),
            )
        except (TypeError, ValueError, AttributeError) as exc:
            raise ValidationError(f"Malformed keypoint {payload!r}: {exc}") from exc


@dataclass(frozen=True)
class Reading:
    """One classified frame."""

    timestamp: float
    posture_class: PostureClass
    confidence: float


@dataclass(frozen=True)
class StabilizedPrediction:
    posture_class: PostureClass
    confidence: float
    is_stable: bool


@dataclass(frozen=True)
class ClassificationResult:
    """What the external pose/classification model returns for a frame."""

    label: str
    confidence: float
    keypoints: Sequence[Keypoint] = ()

    @property
    def has_person(self) -> bool:
        return bool(self.keypoints)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Session:
    """Aggregate of one capture-start to capture-stop interval."""

    timestamp: str
    duration: int = 0
    total_readings: int = 0
    good_posture_readings: int = 0
    good_posture_percentage: float = 0.0
    confidence: List[float] = field(default_factory=list)

    @property
    def started_at(self) -> datetime:
        return datetime.fromisoformat(self.timestamp.replace("Z", "+00:00"))

    def to_dict(self) -> Dict[str, Any]:
        """Make the session JSON serialisable using the stored key names."""
        return {
            "timestamp": self.timestamp,
            "duration": self.duration,
            "totalReadings": self.total_readings,
            "goodPostureReadings": self.good_posture_readings,
            "goodPosturePercentage": self.good_posture_percentage,
            "confidence": list(self.confidence),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Session":
        timestamp = payload.get("timestamp")
        if not isinstance(timestamp, str) or not timestamp.strip():
            raise ValidationError(f"Session timestamp is required; received {timestamp!r}.")
        try:
            return cls(
                timestamp=timestamp,
                duration=int(payload.get("duration", 0)),
                total_readings=int(payload.get("totalReadings", 0)),
                good_posture_readings=int(payload.get("goodPostureReadings", 0)),
                good_posture_percentage=float(payload.get("goodPosturePercentage", 0.0)),
                confidence=[float(value) for value in payload.get("confidence", [])],
            )
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Malformed session record: {exc}") from exc


@dataclass
class UserPostureStats:
    """Cumulative posture statistics attached to one account."""

    sessions: List[Session] = field(default_factory=list)
    total_sessions: int = 0
    total_time: int = 0
    avg_good_posture: float = 0.0
    weekly_goal: float = DEFAULT_WEEKLY_GOAL

    def add_session(self, session: Session) -> None:
        """Append a finished session, then recompute every aggregate."""
        self.sessions.append(session)
        self.total_sessions = len(self.sessions)
        self.total_time = sum(item.duration for item in self.sessions)
        self.avg_good_posture = mean(item.good_posture_percentage for item in self.sessions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessions": [session.to_dict() for session in self.sessions],
            "totalSessions": self.total_sessions,
            "totalTime": self.total_time,
            "avgGoodPosture": self.avg_good_posture,
            "weeklyGoal": self.weekly_goal,
        }

    @classmethod
    def from_dict(cls, payload: Optional[Mapping[str, Any]]) -> "UserPostureStats":
        if not payload:
            return cls()
        sessions = [Session.from_dict(item) for item in payload.get("sessions") or []]
        return cls(
            sessions=sessions,
            total_sessions=int(payload.get("totalSessions", len(sessions))),
            total_time=int(payload.get("totalTime", 0)),
            avg_good_posture=float(payload.get("avgGoodPosture", 0.0)),
            weekly_goal=float(payload.get("weeklyGoal", DEFAULT_WEEKLY_GOAL)),
        )


@dataclass
class UserAccount:
    name: str
    email: str
    password_hash: str
    created_at: str = field(default_factory=_utc_now_iso)
    last_login: str = field(default_factory=_utc_now_iso)
    posture_data: UserPostureStats = field(default_factory=UserPostureStats)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "email": self.email,
            "password": self.password_hash,
            "createdAt": self.created_at,
            "lastLogin": self.last_login,
            "postureData": self.posture_data.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "UserAccount":
        return cls(
            name=str(payload.get("name", "")),
            email=str(payload.get("email", "")),
            password_hash=str(payload.get("password", "")),
            created_at=str(payload.get("createdAt") or _utc_now_iso()),
            last_login=str(payload.get("lastLogin") or _utc_now_iso()),
            posture_data=UserPostureStats.from_dict(payload.get("postureData")),
        )
