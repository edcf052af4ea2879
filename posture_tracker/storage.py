from __future__ import annotations

import json
import logging
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any, Dict, Optional, Protocol

from .env import get_env
from .models import UserAccount, UserPostureStats, ValidationError

DEFAULT_DATA_DIR = Path.home() / ".posture_tracker"
LOGGER = logging.getLogger(__name__)


class StatsStore(Protocol):
    """Persistence boundary used when a finished session is folded in."""

    def load(self, user_id: str) -> UserPostureStats:
        ...

    def save(self, user_id: str, stats: UserPostureStats) -> None:
        ...


def _data_dir() -> Path:
    override = get_env("DATA_DIR")
    base = Path(override).expanduser() if override else DEFAULT_DATA_DIR
    base.mkdir(parents=True, exist_ok=True)
    return base


def users_file() -> Path:
    override = get_env("USERS_FILE")
    if override:
        target = Path(override).expanduser()
        target.parent.mkdir(parents=True, exist_ok=True)
        return target
    return _data_dir() / "users.json"


def current_user_file() -> Path:
    return _data_dir() / "current_user.json"


def _write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(payload, indent=2, sort_keys=True) + "\n"

    with NamedTemporaryFile("w", dir=path.parent, delete=False, encoding="utf-8") as tmp:
        tmp.write(text)
        temp_path = Path(tmp.name)
    temp_path.replace(path)


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    raw = path.read_text(encoding="utf-8").strip()
    if not raw:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Could not parse {path}: {exc}") from exc


class JsonUserStore:
    """
    Accounts keyed by email in a single JSON document.

    The file is re-read on every call so several stores (or processes run one
    after another from the CLI) always observe the latest write.
    """

    def __init__(self, path: Path | str | None = None) -> None:
        self.path = Path(path).expanduser() if path else users_file()

    def _load_all(self) -> Dict[str, Any]:
        payload = _read_json(self.path, {})
        if not isinstance(payload, dict):
            raise ValueError(f"{self.path} must contain a JSON object keyed by email")
        return payload

    def _save_all(self, payload: Dict[str, Any]) -> None:
        _write_json(self.path, payload)

    def get_account(self, email: str) -> Optional[UserAccount]:
        record = self._load_all().get(email)
        if record is None:
            return None
        try:
            return UserAccount.from_dict(record)
        except ValidationError as exc:
            raise ValueError(f"Stored account {email!r} is corrupt: {exc}") from exc

    def put_account(self, account: UserAccount) -> None:
        payload = self._load_all()
        payload[account.email] = account.to_dict()
        self._save_all(payload)

    def emails(self) -> list[str]:
        return sorted(self._load_all())

    def load(self, user_id: str) -> UserPostureStats:
        account = self.get_account(user_id)
        if account is None:
            raise KeyError(user_id)
        return account.posture_data

    def save(self, user_id: str, stats: UserPostureStats) -> None:
        account = self.get_account(user_id)
        if account is None:
            raise KeyError(user_id)
        account.posture_data = stats
        self.put_account(account)
        LOGGER.info("Saved posture data for %s (%d sessions)", user_id, stats.total_sessions)


def load_current_user() -> Optional[str]:
    """Email of the logged-in account, if any."""
    payload = _read_json(current_user_file(), {})
    email = payload.get("email") if isinstance(payload, dict) else None
    return email or None


def save_current_user(email: str) -> None:
    _write_json(current_user_file(), {"email": email})


def clear_current_user() -> None:
    path = current_user_file()
    if path.exists():
        path.unlink()
