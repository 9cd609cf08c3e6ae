"""
Global settings and constants for the webmail checker.

This module provides configuration constants and helpers. It is
framework-agnostic and designed to be easily unit-testable; modules read
the values through the module (``config.SQLITE_DB_PATH``) so tests can
override them.
"""
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


# Application paths
APP_DIR: Path = Path.home() / ".webmail_checker"
SQLITE_DB_PATH: Path = APP_DIR / "webmail_checker.db"
SECRET_KEY_FILE: Path = APP_DIR / "secret.key"
LOG_DIR: Path = APP_DIR / "logs"
COOKIE_EXPORT_DIR: Path = APP_DIR / "cookies"

# Credentials are stored against this realm
CREDENTIAL_REALM: str = "https://accounts.google.com"

# Addresses on these domains are regular (non-hosted) accounts
DEFAULT_DOMAINS = ("gmail.com", "googlemail.com")

# Login and mailbox endpoints
LOGIN_URL: str = "https://accounts.google.com/ServiceLoginAuth"
HOSTED_LOGIN_URL: str = "https://www.google.com/a/{domain}/LoginAction2"
CHECK_URL: str = "https://mail.google.com/mail/"
HOSTED_CHECK_URL: str = "https://mail.google.com/a/{domain}/"

# Network limits (seconds)
EXCHANGE_TIMEOUT: float = 30.0
CHECK_DEADLINE: float = 120.0
MAX_REDIRECTS: int = 20

# Periodic check interval
DEFAULT_CHECK_INTERVAL_SECONDS: int = 300

USER_AGENT: str = (
    "Mozilla/5.0 (X11; Linux x86_64; rv:128.0) Gecko/20100101 Firefox/128.0"
)


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def load_env(env_file: Optional[str] = None) -> None:
    """
    Load environment variables and apply sensible defaults.

    Reads a ``.env`` file if present, then applies path and timeout
    overrides. It should be called at application startup.

    Args:
        env_file: Optional explicit path to a dotenv file.
    """
    global SQLITE_DB_PATH, SECRET_KEY_FILE, LOG_DIR, COOKIE_EXPORT_DIR
    global EXCHANGE_TIMEOUT, CHECK_DEADLINE, DEFAULT_CHECK_INTERVAL_SECONDS

    load_dotenv(env_file)

    db_path_env = os.environ.get("WEBMAIL_CHECKER_DB_PATH")
    if db_path_env:
        SQLITE_DB_PATH = Path(db_path_env)

    key_file_env = os.environ.get("WEBMAIL_CHECKER_KEY_FILE")
    if key_file_env:
        SECRET_KEY_FILE = Path(key_file_env)

    log_dir_env = os.environ.get("WEBMAIL_CHECKER_LOG_DIR")
    if log_dir_env:
        LOG_DIR = Path(log_dir_env)

    cookie_dir_env = os.environ.get("WEBMAIL_CHECKER_COOKIE_DIR")
    if cookie_dir_env:
        COOKIE_EXPORT_DIR = Path(cookie_dir_env)

    EXCHANGE_TIMEOUT = _env_float("WEBMAIL_CHECKER_EXCHANGE_TIMEOUT", EXCHANGE_TIMEOUT)
    CHECK_DEADLINE = _env_float("WEBMAIL_CHECKER_CHECK_DEADLINE", CHECK_DEADLINE)
    DEFAULT_CHECK_INTERVAL_SECONDS = int(
        _env_float("WEBMAIL_CHECKER_CHECK_INTERVAL", DEFAULT_CHECK_INTERVAL_SECONDS)
    )

    # Ensure the application directory exists
    SQLITE_DB_PATH.parent.mkdir(parents=True, exist_ok=True)
