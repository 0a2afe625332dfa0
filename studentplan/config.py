from pathlib import Path
import re
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings

BASE_DIR = Path(__file__).resolve().parent.parent

DEFAULT_DB_PATH = "sqlite+aiosqlite:///./data/plan.db"

_URL_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")
_WINDOWS_DRIVE_PATH_RE = re.compile(r"^[a-zA-Z]:[\\\\/]")


def _looks_like_sqlalchemy_url(value: str) -> bool:
    value = value.strip()
    if _WINDOWS_DRIVE_PATH_RE.match(value):
        return False
    return _URL_SCHEME_RE.match(value) is not None


def _sqlite_aiosqlite_url_from_path(value: str) -> str:
    value = value.strip()
    if value == ":memory:":
        return "sqlite+aiosqlite:///:memory:"

    path = Path(value).expanduser()
    path_posix = path.as_posix()

    # Windows absolute paths need: sqlite+aiosqlite:///C:/...
    if path.drive:
        return f"sqlite+aiosqlite:///{path_posix}"

    # Unix absolute paths need: sqlite+aiosqlite:////abs/path.db
    if path.is_absolute():
        return f"sqlite+aiosqlite:////{path_posix.lstrip('/')}"

    return f"sqlite+aiosqlite:///{path_posix}"


def normalize_db_path(value: str) -> str:
    """
    Normalize DB_PATH into a SQLAlchemy URL.

    - If DB_PATH already looks like a SQLAlchemy URL (sqlite:/postgres:/...), keep as-is.
    - If DB_PATH looks like a filesystem path, convert it to sqlite+aiosqlite URL.
    """
    value = (value or "").strip()
    if not value:
        return DEFAULT_DB_PATH
    if _looks_like_sqlalchemy_url(value):
        return value
    return _sqlite_aiosqlite_url_from_path(value)


class Settings(BaseSettings):
    DB_PATH: str = DEFAULT_DB_PATH

    TZ: str = "Europe/Warsaw"
    # Album number of the signed-in student; empty means "nothing to fetch".
    ALBUM_ID: Optional[str] = None

    PLAN_BASE_URL: str = "https://plan.zut.edu.pl/schedule_student.php"
    PLAN_SUGGEST_URL: str = "https://plan.zut.edu.pl/schedule.php"
    PLAN_USER_AGENT: str = "mZUT-Plan/1.0"
    PLAN_HTTP_TIMEOUT_SECONDS: float = 15.0

    PLAN_SCOPE_TTL_MINUTES: int = 20
    PLAN_START_HOUR: int = 6
    PLAN_END_HOUR: int = 22
    PLAN_HOUR_HEIGHT_PX: float = 48.0
    # 0 = background refresh disabled
    PLAN_REFRESH_INTERVAL_MINUTES: int = 0

    @field_validator("TZ")
    @classmethod
    def validate_timezone(cls, value: str):
        try:
            ZoneInfo(value)
        except ZoneInfoNotFoundError as exc:
            raise ValueError(f"TZ must be a valid IANA timezone, got '{value}'") from exc
        return value

    @field_validator("ALBUM_ID", mode="before")
    @classmethod
    def blank_album_is_none(cls, value):
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @field_validator("DB_PATH", mode="before")
    @classmethod
    def normalize_db_path_value(cls, value):
        if value is None:
            return DEFAULT_DB_PATH
        return normalize_db_path(str(value))

    @field_validator("PLAN_SCOPE_TTL_MINUTES", "PLAN_REFRESH_INTERVAL_MINUTES")
    @classmethod
    def validate_non_negative(cls, value: int, info):
        if value < 0:
            raise ValueError(f"{info.field_name} must be >= 0")
        return value

    @model_validator(mode="after")
    def validate_visible_hours(self):
        if not 0 <= self.PLAN_START_HOUR < self.PLAN_END_HOUR <= 24:
            raise ValueError("PLAN_START_HOUR/PLAN_END_HOUR must satisfy 0 <= start < end <= 24")
        if self.PLAN_HOUR_HEIGHT_PX <= 0:
            raise ValueError("PLAN_HOUR_HEIGHT_PX must be positive")
        return self

    class Config:
        env_file = BASE_DIR / ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

settings = Settings()
