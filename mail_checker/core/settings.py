"""
Per-account preferences.

Preferences form a nested key-value store: account identifier -> key ->
value. They are persisted as one JSON object per account in the
``settings`` table.
"""
import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from mail_checker import config
from mail_checker.storage import db


logger = logging.getLogger(__name__)

AUTO_LOGIN = "auto-login"
CHECK_INTERVAL = "check-interval"

_KEY_PREFIX = "account:"


def default_account_settings() -> Dict[str, Any]:
    """Preferences given to a newly registered account."""
    return {
        AUTO_LOGIN: True,
        CHECK_INTERVAL: config.DEFAULT_CHECK_INTERVAL_SECONDS,
    }


class SettingsStore(ABC):
    """Get/set access to per-account preferences."""

    @abstractmethod
    def load(self, account: str) -> Dict[str, Any]:
        """Return all preferences of an account ({} if none are stored)."""
        pass

    @abstractmethod
    def save(self, account: str, values: Dict[str, Any]) -> None:
        """Replace all preferences of an account."""
        pass

    @abstractmethod
    def account_keys(self) -> List[str]:
        """List the accounts that have preferences stored."""
        pass

    def get(self, account: str, key: str, default: Any = None) -> Any:
        return self.load(account).get(key, default)

    def set(self, account: str, key: str, value: Any) -> None:
        values = self.load(account)
        values[key] = value
        self.save(account, values)

    def register(self, account: str) -> bool:
        """
        Give an account default preferences unless it already has some.

        Returns:
            True if the account was new.
        """
        if account in self.account_keys():
            return False
        self.save(account, default_account_settings())
        logger.info(f"Registered preferences for {account}")
        return True

    def remove(self, account: str) -> None:
        self.save(account, {})


class MemorySettingsStore(SettingsStore):
    """Preferences kept in memory only."""

    def __init__(self):
        self._values: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def load(self, account: str) -> Dict[str, Any]:
        with self._lock:
            return dict(self._values.get(account, {}))

    def save(self, account: str, values: Dict[str, Any]) -> None:
        with self._lock:
            if values:
                self._values[account] = dict(values)
            else:
                self._values.pop(account, None)

    def account_keys(self) -> List[str]:
        with self._lock:
            return sorted(self._values)


class SqliteSettingsStore(SettingsStore):
    """Preferences persisted in the application database."""

    def load(self, account: str) -> Dict[str, Any]:
        row = db.fetchone("SELECT value FROM settings WHERE key = ?", (_KEY_PREFIX + account,))
        if row is None:
            return {}
        try:
            values = json.loads(row["value"])
        except (json.JSONDecodeError, TypeError):
            logger.warning(f"Ignoring unreadable preferences of {account}")
            return {}
        return values if isinstance(values, dict) else {}

    def save(self, account: str, values: Dict[str, Any]) -> None:
        key = _KEY_PREFIX + account
        if not values:
            db.execute("DELETE FROM settings WHERE key = ?", (key,))
            return
        db.execute(
            """
            INSERT OR REPLACE INTO settings (key, value, updated_at)
            VALUES (?, ?, CURRENT_TIMESTAMP)
            """,
            (key, json.dumps(values, default=str)),
        )

    def account_keys(self) -> List[str]:
        rows = db.fetchall(
            "SELECT key FROM settings WHERE key LIKE ? ORDER BY key",
            (_KEY_PREFIX + "%",),
        )
        return [row["key"][len(_KEY_PREFIX):] for row in rows]
