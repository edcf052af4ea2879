from __future__ import annotations

import json
import logging
from pathlib import Path

import typer
from rich.progress import Progress

from . import accounts
from .config import as_dict as config_as_dict, configure_logging
from .feedback import quality_class
from .models import AuthError, UserAccount, ValidationError
from .notifications import ConsoleTransport, DesktopTransport, NotificationDispatcher
from .progress import (
    build_dashboard,
    dashboard_to_dict,
    format_minutes,
    plot_daily_averages,
    posture_quality,
)
from .replay import load_recording, replay
from .storage import JsonUserStore

app = typer.Typer(help="Track sitting posture sessions and review your progress.")
QUALITY_COLORS = {"high": typer.colors.GREEN, "medium": typer.colors.YELLOW, "low": typer.colors.RED}


def _fail(message: str, *, code: int = 1) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


def _store() -> JsonUserStore:
    return JsonUserStore()


def _require_account(store: JsonUserStore) -> UserAccount:
    try:
        account = accounts.current_account(store)
    except ValueError as exc:
        _fail(f"Could not read account store: {exc}")
    if account is None:
        _fail("Not logged in. Run 'posture-tracker login' or 'posture-tracker register' first.")
    return account


def _dispatcher(native: bool) -> NotificationDispatcher:
    transports = [DesktopTransport(), ConsoleTransport()] if native else [ConsoleTransport()]
    return NotificationDispatcher(transports)


def _log_verbose(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
        logging.getLogger("posture_tracker").setLevel(logging.INFO)


@app.callback()
def main_callback() -> None:
    configure_logging()


@app.command()
def register(
    name: str = typer.Option(..., "--name", "-n", help="Display name."),
    email: str = typer.Option(..., "--email", "-e", help="Account email (used as the login)."),
    password: str = typer.Option(
        ..., "--password", "-p", prompt=True, hide_input=True, confirmation_prompt=True, help="Password (6+ characters)."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show where the account was stored."),
) -> None:
    """Create an account and log in to it."""
    _log_verbose(verbose)
    store = _store()
    try:
        account = accounts.register(store, name, email, password)
    except AuthError as exc:
        _fail(str(exc))
    except ValueError as exc:
        _fail(f"Could not read account store: {exc}")
    typer.secho(f"Account created successfully! Logged in as {account.email}.", fg=typer.colors.GREEN)
    if verbose:
        typer.echo(f"Account store: {store.path}")


@app.command()
def login(
    email: str = typer.Option(..., "--email", "-e", help="Account email."),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True, help="Password."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show the account's recorded totals."),
) -> None:
    """Log in so finished sessions are saved to your statistics."""
    _log_verbose(verbose)
    try:
        account = accounts.authenticate(_store(), email, password)
    except AuthError as exc:
        _fail(str(exc))
    except ValueError as exc:
        _fail(f"Could not read account store: {exc}")
    typer.secho(f"Login successful! Welcome back, {account.name}.", fg=typer.colors.GREEN)
    if verbose:
        stats = account.posture_data
        typer.echo(f"Sessions: {stats.total_sessions}  Time: {format_minutes(stats.total_time)}")


@app.command()
def logout() -> None:
    """Forget the logged-in account."""
    accounts.logout()
    typer.echo("Logged out.")


@app.command()
def whoami() -> None:
    """Show the logged-in account."""
    account = _require_account(_store())
    typer.echo(f"{account.name} <{account.email}>")


@app.command("replay")
def replay_command(
    source: Path = typer.Argument(..., help="CSV or JSON recording of classifier readings."),
    native: bool = typer.Option(
        True, "--native/--no-native", help="Try native desktop notifications before the console alert."
    ),
    show_frames: bool = typer.Option(False, "--frames", help="Print feedback for every frame."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log pipeline activity to stderr."),
) -> None:
    """
    Feed a recorded session through the smoothing, alert and session pipeline.

    Examples:
        posture-tracker replay recordings/morning.csv
        posture-tracker replay recordings/morning.json --no-native --frames
    """
    _log_verbose(verbose)
    try:
        frames = load_recording(source)
    except FileNotFoundError as exc:
        _fail(str(exc))
    except (ValidationError, ValueError) as exc:
        _fail(f"Could not read recording: {exc}")

    if not frames:
        typer.echo("Recording contains no frames.")
        raise typer.Exit(code=0)

    store = _store()
    try:
        account = accounts.current_account(store)
    except ValueError as exc:
        _fail(f"Could not read account store: {exc}")
    user_id = account.email if account else None
    if not user_id:
        typer.secho("Not logged in; the session will not be saved.", fg=typer.colors.YELLOW)

    with Progress() as progress:
        task = progress.add_task(f"Replaying {source.name}", total=len(frames))

        def on_frame(result) -> None:
            progress.advance(task)
            if show_frames and result.feedback:
                progress.console.print(
                    f"{result.status_text}: {result.feedback} "
                    f"[keypoints visible: {result.visible_fraction:.0%}]",
                    markup=False,
                )

        summary = replay(frames, store, lambda: user_id, dispatcher=_dispatcher(native), on_frame=on_frame)

    typer.echo(
        f"Frames: {summary.frames} ({summary.readings} readings, {summary.no_person} without a person, "
        f"{summary.errors} errors). Alerts fired: {summary.alerts}."
    )
    session = summary.saved_session
    if session is None:
        typer.echo("Session not saved (shorter than a minute or nobody logged in).")
        return
    typer.secho(
        f"Session saved: {format_minutes(session.duration)}, "
        f"{session.good_posture_percentage:.0f}% good posture "
        f"({posture_quality(session.good_posture_percentage)}).",
        fg=typer.colors.GREEN,
    )


@app.command()
def dashboard(
    as_json: bool = typer.Option(False, "--json", help="Emit the dashboard as JSON."),
    recent: int = typer.Option(5, "--recent", min=1, help="Number of recent sessions to list."),
    days: int = typer.Option(7, "--days", min=1, help="Number of days in the daily trend."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log storage activity to stderr."),
) -> None:
    """Summarise totals, trend, insights and recent sessions."""
    _log_verbose(verbose)
    account = _require_account(_store())
    report = build_dashboard(account.posture_data, recent=recent, days=days)

    if as_json:
        typer.echo(json.dumps(dashboard_to_dict(report), indent=2))
        return

    sign = "+" if report.improvement > 0 else ""
    typer.secho(
        f"Sessions: {report.total_sessions}  Time: {format_minutes(report.total_time)}  "
        f"Avg good posture: {round(report.avg_good_posture)}%  Improvement: {sign}{report.improvement}%",
        fg=QUALITY_COLORS[quality_class(report.avg_good_posture)],
    )
    typer.echo("")
    typer.echo("Insights:")
    for insight in report.insights:
        typer.echo(f"  {insight.icon} {insight.title} - {insight.description}")

    typer.echo("")
    typer.echo("Recent sessions:")
    if not report.recent:
        typer.echo("  No sessions recorded yet. Monitor for at least 1 minute to record one.")
    for session in report.recent:
        started = session.started_at.astimezone()
        typer.echo(
            f"  {started:%Y-%m-%d %H:%M}  {format_minutes(session.duration):>7}  "
            f"{round(session.good_posture_percentage):>3}% {posture_quality(session.good_posture_percentage)}"
        )

    typer.echo("")
    typer.echo("Daily good posture:")
    for point in report.daily:
        value = f"{point.value:.0f}%" if point.sessions else "-"
        typer.echo(f"  {point.label} {point.date.isoformat()}  {value:>4}  ({point.sessions} sessions)")


@app.command()
def plot(
    output_dir: Path = typer.Option(Path("plots"), "--output-dir", "-o", help="Directory for the PNG."),
    days: int = typer.Option(7, "--days", min=1, help="Number of days to chart."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show the charted values."),
) -> None:
    """Chart the daily good-posture average."""
    _log_verbose(verbose)
    account = _require_account(_store())
    report = build_dashboard(account.posture_data, days=days)
    try:
        path = plot_daily_averages(report.daily, output_dir=output_dir)
    except (RuntimeError, ValueError) as exc:
        _fail(str(exc))
    typer.echo(f"Saved plot to {path}")
    if verbose:
        typer.echo(", ".join(f"{point.label} {point.value:.0f}%" for point in report.daily))


@app.command("config")
def config_show() -> None:
    """Show the effective smoothing, notification and session settings."""
    config = config_as_dict()
    typer.echo(f"Config source: {config.pop('source')}")
    for section, values in config.items():
        if isinstance(values, dict):
            rendered = ", ".join(f"{key}={value}" for key, value in values.items())
            typer.echo(f"{section}: {rendered}")
        else:
            typer.echo(f"{section}: {values}")


@app.command("test-notification")
def test_notification(
    native: bool = typer.Option(True, "--native/--no-native", help="Try the native desktop transport first."),
) -> None:
    """Send a test alert through the notification chain."""
    dispatcher = _dispatcher(native)
    if not dispatcher.send_test():
        _fail("Notification could not be delivered.")
    typer.echo(f"Test notification sent via {dispatcher.last_transport}.")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
