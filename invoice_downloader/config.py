"""
Runtime configuration for the invoice downloader.

This module is the only place allowed to read environment variables. Values
are resolved in this order (later wins):

    .env file at the project root  <  OS environment  <  CLI overrides

Credentials are required and must not be blank; every other key has a
default. The resulting ``Config`` is immutable and is passed explicitly to the
components that need it.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Mapping

from dotenv import load_dotenv


PROJECT_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_DOWNLOAD_PATH = PROJECT_ROOT / "downloads"

logger = logging.getLogger(__name__)

ENV_KEYS = {
    "email": "AMAZON_EMAIL",
    "password": "AMAZON_PASSWORD",
    "year": "INVOICE_YEAR",
    "download_path": "DOWNLOAD_PATH",
    "headless": "HEADLESS",
    "chrome_executable": "CHROME_EXECUTABLE",
    "json_log_file": "JSON_LOG_FILE",
    "verbose": "VERBOSE",
    "login_retries": "LOGIN_RETRIES",
    "captcha_solve_timeout_s": "CAPTCHA_SOLVE_TIMEOUT_S",
    "max_pages": "MAX_PAGES",
    "hold_on_error": "HOLD_ON_ERROR",
}

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}

MIN_YEAR = 1995


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded."""


def _fail(message: str) -> ConfigError:
    logger.error(message)
    return ConfigError(message)


def _parse_bool(value: Any, *, key: str) -> bool:
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    raise _fail(f"Config key {key} must be a boolean string; got {value!r}")


def _parse_int(value: Any, *, key: str, minimum: int | None = None) -> int:
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        raise _fail(f"Config key {key} must be an integer; got {value!r}")
    if minimum is not None and parsed < minimum:
        raise _fail(f"Config key {key} must be >= {minimum}; got {parsed}")
    return parsed


def _clean_text(value: Any, *, key: str) -> str:
    stripped = str(value or "").strip()
    if not stripped:
        raise _fail(f"Config key {key} cannot be blank")
    return stripped


def _raw_values(overrides: Mapping[str, Any] | None) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for field_name, env_key in ENV_KEYS.items():
        env_value = os.getenv(env_key)
        if env_value is not None and env_value.strip():
            values[field_name] = env_value
    for field_name, value in (overrides or {}).items():
        if field_name not in ENV_KEYS:
            raise _fail(f"Unknown config override: {field_name}")
        if value is not None:
            values[field_name] = value
    return values


@dataclass(slots=True, frozen=True)
class Config:
    email: str
    password: str
    year: int
    download_path: Path
    headless: bool = False
    chrome_executable: str = ""
    json_log_file: str = ""
    verbose: bool = False
    login_retries: int = 0
    captcha_solve_timeout_s: int = 300
    max_pages: int = 100
    hold_on_error: bool = False

    def redacted(self) -> dict[str, Any]:
        """Return a loggable view without the password."""

        return {
            "email": self.email,
            "year": self.year,
            "download_path": str(self.download_path),
            "headless": self.headless,
            "chrome_executable": self.chrome_executable or None,
            "login_retries": self.login_retries,
            "captcha_solve_timeout_s": self.captcha_solve_timeout_s,
            "max_pages": self.max_pages,
            "hold_on_error": self.hold_on_error,
        }

    @classmethod
    def load(
        cls,
        overrides: Mapping[str, Any] | None = None,
        *,
        env_file: Path | None = None,
        today: date | None = None,
    ) -> Config:
        load_dotenv(env_file or PROJECT_ROOT / ".env")
        values = _raw_values(overrides)
        current_year = (today or date.today()).year

        email = _clean_text(values.get("email"), key=ENV_KEYS["email"])
        password = _clean_text(values.get("password"), key=ENV_KEYS["password"])

        year = _parse_int(values.get("year", current_year), key=ENV_KEYS["year"], minimum=MIN_YEAR)
        if year > current_year:
            raise _fail(f"Config key {ENV_KEYS['year']} cannot be in the future; got {year}")

        download_path = Path(
            _clean_text(values.get("download_path", DEFAULT_DOWNLOAD_PATH), key=ENV_KEYS["download_path"])
        ).expanduser()

        return cls(
            email=email,
            password=password,
            year=year,
            download_path=download_path,
            headless=_parse_bool(values.get("headless", False), key=ENV_KEYS["headless"]),
            chrome_executable=str(values.get("chrome_executable", "")).strip(),
            json_log_file=str(values.get("json_log_file", "")).strip(),
            verbose=_parse_bool(values.get("verbose", False), key=ENV_KEYS["verbose"]),
            login_retries=_parse_int(
                values.get("login_retries", 0), key=ENV_KEYS["login_retries"], minimum=0
            ),
            captcha_solve_timeout_s=_parse_int(
                values.get("captcha_solve_timeout_s", 300),
                key=ENV_KEYS["captcha_solve_timeout_s"],
                minimum=1,
            ),
            max_pages=_parse_int(values.get("max_pages", 100), key=ENV_KEYS["max_pages"], minimum=1),
            hold_on_error=_parse_bool(values.get("hold_on_error", False), key=ENV_KEYS["hold_on_error"]),
        )
