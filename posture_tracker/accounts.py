"""Local accounts that own posture statistics.

The password hash is a 32-bit string fold kept for compatibility with the
existing account files; it offers no protection and is not meant to.
"""

from __future__ import annotations

import logging
import struct
from datetime import datetime, timezone
from typing import Optional

from .models import AuthError, UserAccount
from .storage import JsonUserStore, clear_current_user, load_current_user, save_current_user

LOGGER = logging.getLogger(__name__)
MIN_PASSWORD_LENGTH = 6


def toy_hash(password: str) -> str:
    """Fold UTF-16 code units as `h * 31 + unit`, wrapped to a signed 32-bit int."""
    value = 0
    encoded = password.encode("utf-16-le", "surrogatepass")
    for (unit,) in struct.iter_unpack("<H", encoded):
        value = (value * 31 + unit) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return str(value)


def register(store: JsonUserStore, name: str, email: str, password: str) -> UserAccount:
    name = (name or "").strip()
    email = (email or "").strip()
    if not name or not email or not password:
        raise AuthError("Please fill in all fields")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise AuthError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if store.get_account(email) is not None:
        raise AuthError("Email already registered")

    account = UserAccount(name=name, email=email, password_hash=toy_hash(password))
    store.put_account(account)
    save_current_user(email)
    LOGGER.info("Registered account %s", email)
    return account


def authenticate(store: JsonUserStore, email: str, password: str) -> UserAccount:
    email = (email or "").strip()
    if not email or not password:
        raise AuthError("Please fill in all fields")
    account = store.get_account(email)
    if account is None or account.password_hash != toy_hash(password):
        raise AuthError("Invalid email or password")

    account.last_login = datetime.now(timezone.utc).isoformat()
    store.put_account(account)
    save_current_user(email)
    LOGGER.info("Logged in %s", email)
    return account


def logout() -> None:
    clear_current_user()


def current_account(store: JsonUserStore) -> Optional[UserAccount]:
    """The logged-in account, or None when nobody is logged in."""
    email = load_current_user()
    if not email:
        return None
    account = store.get_account(email)
    if account is None:
        LOGGER.warning("Current user %s no longer exists; clearing login", email)
        clear_current_user()
    return account
