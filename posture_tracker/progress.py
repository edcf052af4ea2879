from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, List, Optional, Sequence

import pandas as pd

from .models import Session, UserPostureStats

TREND_WINDOW = 3
TREND_INSIGHT_DELTA = 10
FREQUENCY_WINDOW_DAYS = 7
FREQUENCY_MIN_SESSIONS = 3


@dataclass(frozen=True)
class Insight:
    type: str
    icon: str
    title: str
    description: str


@dataclass(frozen=True)
class DailyAverage:
    date: date
    label: str
    value: float
    sessions: int


@dataclass(frozen=True)
class Dashboard:
    total_sessions: int
    total_time: int
    avg_good_posture: float
    improvement: int
    insights: List[Insight] = field(default_factory=list)
    recent: List[Session] = field(default_factory=list)
    daily: List[DailyAverage] = field(default_factory=list)


def _mean_percentage(sessions: Sequence[Session]) -> float:
    return sum(s.good_posture_percentage for s in sessions) / len(sessions)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def improvement(sessions: Sequence[Session]) -> int:
    """Mean of the last three sessions minus the mean of the three before them."""
    if not sessions or len(sessions) < 2:
        return 0
    recent = list(sessions[-TREND_WINDOW:])
    previous = list(sessions[-2 * TREND_WINDOW : -TREND_WINDOW])
    if not previous:
        return 0
    return _round_half_up(_mean_percentage(recent) - _mean_percentage(previous))


def _performance_insight(avg: float) -> Insight:
    if avg >= 85:
        return Insight(
            "excellent",
            "🌟",
            "Excellent Posture!",
            "You're maintaining great posture consistently. Keep up the fantastic work!",
        )
    if avg >= 70:
        return Insight(
            "good",
            "👍",
            "Good Progress",
            "Your posture is improving. Try to be more mindful during longer work sessions.",
        )
    if avg >= 50:
        return Insight(
            "warning",
            "⚠️",
            "Needs Attention",
            "Your posture needs improvement. Consider setting hourly reminders to check your position.",
        )
    return Insight(
        "urgent",
        "🚨",
        "Urgent Action Required",
        "Poor posture detected consistently. Consider consulting a healthcare professional "
        "and setting up ergonomic workspace improvements.",
    )


def _to_local(session: Session) -> datetime:
    # Naive timestamps are taken to be local time already.
    return session.started_at.astimezone()


def sessions_since(sessions: Sequence[Session], now: datetime, *, days: int) -> List[Session]:
    reference = now.astimezone()
    window = timedelta(days=days)
    return [s for s in sessions if reference - _to_local(s) <= window]


def insights(stats: UserPostureStats, now: Optional[datetime] = None) -> List[Insight]:
    """
    Qualitative feedback for the dashboard.

    Always one performance insight (from `avg_good_posture`), then an optional
    trend insight when the improvement exceeds +/-10 points, then an optional
    reminder when fewer than three sessions happened in the past week.
    """
    now = now or datetime.now().astimezone()
    results = [_performance_insight(stats.avg_good_posture or 0.0)]

    delta = improvement(stats.sessions)
    if delta > TREND_INSIGHT_DELTA:
        results.append(
            Insight(
                "excellent",
                "📈",
                "Great Improvement!",
                f"Your posture has improved by {delta}% in recent sessions.",
            )
        )
    elif delta < -TREND_INSIGHT_DELTA:
        results.append(
            Insight(
                "warning",
                "📉",
                "Declining Trend",
                f"Your posture has declined by {abs(delta)}% recently. Take breaks more frequently.",
            )
        )

    if len(sessions_since(stats.sessions, now, days=FREQUENCY_WINDOW_DAYS)) < FREQUENCY_MIN_SESSIONS:
        results.append(
            Insight(
                "info",
                "📅",
                "Monitor More Frequently",
                "Try to monitor your posture more regularly for better insights and improvement tracking.",
            )
        )
    return results


def recent_sessions(sessions: Sequence[Session], n: int = 5) -> List[Session]:
    if n <= 0:
        return []
    return list(reversed(sessions[-n:]))


def daily_averages(
    sessions: Sequence[Session],
    days: int = 7,
    today: Optional[date] = None,
) -> List[DailyAverage]:
    """Mean good-posture percentage per calendar day, oldest day first."""
    today = today or date.today()
    calendar = pd.date_range(end=pd.Timestamp(today), periods=days, freq="D")

    frame = pd.DataFrame(
        {
            "day": pd.to_datetime([_to_local(s).date() for s in sessions]),
            "value": pd.Series([s.good_posture_percentage for s in sessions], dtype="float64"),
        },
    )
    grouped = frame.groupby("day")["value"].agg(["mean", "count"]).reindex(calendar)
    grouped["mean"] = grouped["mean"].fillna(0.0)
    grouped["count"] = grouped["count"].fillna(0).astype(int)

    return [
        DailyAverage(
            date=day.date(),
            label=day.strftime("%a"),
            value=float(row["mean"]),
            sessions=int(row["count"]),
        )
        for day, row in grouped.iterrows()
    ]


def posture_quality(percentage: float) -> str:
    if percentage >= 85:
        return "Excellent"
    if percentage >= 70:
        return "Good"
    if percentage >= 50:
        return "Fair"
    return "Needs Work"


def format_minutes(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes}m"
    hours, mins = divmod(minutes, 60)
    return f"{hours}h {mins}m"


def build_dashboard(
    stats: UserPostureStats,
    *,
    now: Optional[datetime] = None,
    recent: int = 5,
    days: int = 7,
) -> Dashboard:
    now = now or datetime.now().astimezone()
    return Dashboard(
        total_sessions=stats.total_sessions,
        total_time=stats.total_time,
        avg_good_posture=stats.avg_good_posture,
        improvement=improvement(stats.sessions),
        insights=insights(stats, now),
        recent=recent_sessions(stats.sessions, recent),
        daily=daily_averages(stats.sessions, days, today=now.date()),
    )


def plot_daily_averages(daily: Sequence[DailyAverage], *, output_dir: Path) -> Path:
    """Render the good-posture trend chart to a PNG and return its path."""
    try:
        import matplotlib

        matplotlib.use("Agg", force=False)
        import matplotlib.pyplot as plt  # type: ignore
    except ImportError as exc:  # pragma: no cover - exercised via CLI
        raise RuntimeError("matplotlib is required to generate plots.") from exc

    if not daily:
        raise ValueError("No daily averages available to plot.")

    output_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    path = output_dir / f"posture_trend_{timestamp}.png"

    labels = [point.label for point in daily]
    values = [point.value for point in daily]
    fig, ax = plt.subplots()
    ax.plot(labels, values, marker="o", linewidth=2)
    ax.fill_between(range(len(values)), values, alpha=0.15)
    for index, point in enumerate(daily):
        if point.value > 0:
            ax.annotate(f"{point.value:.0f}%", (index, point.value), textcoords="offset points", xytext=(0, 6), ha="center")
    ax.set_ylim(0, 100)
    ax.set_title("Good Posture by Day")
    ax.set_xlabel("Day")
    ax.set_ylabel("Good posture (%)")
    fig.tight_layout()
    fig.savefig(path, dpi=150)
    plt.close(fig)
    return path


def dashboard_to_dict(dashboard: Dashboard) -> dict[str, Any]:
    return {
        "totalSessions": dashboard.total_sessions,
        "totalTime": dashboard.total_time,
        "avgGoodPosture": dashboard.avg_good_posture,
        "improvement": dashboard.improvement,
        "insights": [asdict(insight) for insight in dashboard.insights],
        "recentSessions": [session.to_dict() for session in dashboard.recent],
        "daily": [
            {"date": point.date.isoformat(), "label": point.label, "value": point.value, "sessions": point.sessions}
            for point in dashboard.daily
        ],
    }
