"""feed-capture settings (Pydantic v2)."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# ---- Defaults ---------------------------------------------------------------

DEFAULT_FEED_API_URL = "http://127.0.0.1:8700/live/feed/v0.1"
DEFAULT_LISTENER_HOST = "0.0.0.0"
DEFAULT_LISTENER_PORT = 8787
DEFAULT_CALLBACK_HOST = "127.0.0.1"
DEFAULT_OUTPUT_DIR = Path("events")
DEFAULT_FILE_MODE = 0o640
DEFAULT_DIR_MODE = 0o750

CALLBACK_PATH = "/callback"

ErrorKind = Literal["transport", "server", "parse", "filesystem"]
FeedApiVersion = Literal["v0.1", "v1"]

_ERROR_KINDS = {"transport", "server", "parse", "filesystem"}


def _env_file() -> str:
    override = os.getenv("FEED_CAPTURE_ENV_FILE")
    if override and override.strip():
        return str(Path(override).expanduser().resolve())
    return ".env"


# ---- Helpers ----------------------------------------------------------------

def _list_from_env(value: Any) -> list[str]:
    """JSON array or comma string; strip empties; dedupe preserving order."""
    if value in (None, "", []):
        return []
    if isinstance(value, str):
        s = value.strip()
        if s.startswith("["):
            try:
                parsed = json.loads(s)
            except json.JSONDecodeError as exc:
                raise ValueError("Expected a JSON array") from exc
            if not isinstance(parsed, list):
                raise ValueError("Expected a JSON array")
            items = [str(x).strip() for x in parsed]
        else:
            items = [seg.strip() for seg in s.split(",")]
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = [str(x).strip() for x in value]
    else:
        raise TypeError("Expected string or list")

    seen: set[str] = set()
    out: list[str] = []
    for x in items:
        if x and x not in seen:
            seen.add(x)
            out.append(x)
    return out


def _parse_mode(value: Any, *, field_name: str) -> int:
    """Accept an int or an octal string such as '640' / '0o640'."""
    if isinstance(value, bool):
        raise TypeError(f"{field_name} must be an octal permission mode")
    if isinstance(value, int):
        mode = value
    elif isinstance(value, str):
        s = value.strip().lower()
        if s.startswith("0o"):
            s = s[2:]
        try:
            mode = int(s, 8)
        except ValueError as exc:
            raise ValueError(f"{field_name} must be an octal permission mode") from exc
    else:
        raise TypeError(f"{field_name} must be an octal permission mode")
    if not 0 <= mode <= 0o777:
        raise ValueError(f"{field_name} must be between 000 and 777")
    return mode


# ---- Settings ---------------------------------------------------------------

class Settings(BaseSettings):
    """Bridge settings loaded from FEED_CAPTURE_* environment variables."""

    model_config = SettingsConfigDict(
        env_file=_env_file(),
        env_file_encoding="utf-8",
        env_prefix="FEED_CAPTURE_",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
    )

    # ---- Feed API -------------------------------------------------------------
    feed_api_url: str = DEFAULT_FEED_API_URL
    feed_api_version: FeedApiVersion | None = None
    subscription_id: str | None = None
    categories: Annotated[list[str], NoDecode] = Field(default_factory=list)
    unsubscribe_style: Literal["subscriptions", "unsubscribe"] = "subscriptions"
    request_timeout: float = Field(10.0, gt=0)

    # ---- Listener ---------------------------------------------------------------
    listener_host: str = DEFAULT_LISTENER_HOST
    listener_port: int = Field(DEFAULT_LISTENER_PORT, ge=0, le=65535)
    callback_host: str = DEFAULT_CALLBACK_HOST
    callback_url: str | None = None
    readiness_timeout: float = Field(10.0, gt=0)

    # ---- Output store ---------------------------------------------------------
    output_dir: Path = Field(default=DEFAULT_OUTPUT_DIR)
    file_mode: int = DEFAULT_FILE_MODE
    dir_mode: int = DEFAULT_DIR_MODE

    # ---- Errors & logging -----------------------------------------------------
    fatal_errors: Annotated[list[ErrorKind], NoDecode] = Field(default_factory=list)
    log_level: str = "INFO"
    log_body_limit: int = Field(4096, ge=0)

    # ---- Validators ------------------------------------------------------------

    @field_validator("feed_api_url", mode="before")
    @classmethod
    def _v_feed_api_url(cls, v: Any) -> str:
        text = ("" if v is None else str(v)).strip().rstrip("/")
        return text or DEFAULT_FEED_API_URL

    @field_validator("subscription_id", "callback_url", mode="before")
    @classmethod
    def _v_optional_text(cls, v: Any) -> str | None:
        if v is None:
            return None
        text = str(v).strip()
        return text or None

    @field_validator("categories", mode="before")
    @classmethod
    def _v_categories(cls, v: Any) -> list[str]:
        return _list_from_env(v)

    @field_validator("fatal_errors", mode="before")
    @classmethod
    def _v_fatal_errors(cls, v: Any) -> list[str]:
        kinds = [item.lower() for item in _list_from_env(v)]
        unknown = [kind for kind in kinds if kind not in _ERROR_KINDS]
        if unknown:
            raise ValueError(
                f"FEED_CAPTURE_FATAL_ERRORS has unknown kinds {unknown}; "
                f"expected any of {sorted(_ERROR_KINDS)}"
            )
        return kinds

    @field_validator("file_mode", "dir_mode", mode="before")
    @classmethod
    def _v_mode(cls, v: Any, info) -> int:
        return _parse_mode(v, field_name=info.field_name)

    @field_validator("log_level", mode="before")
    @classmethod
    def _v_log_level(cls, v: Any) -> str:
        return ("" if v is None else str(v).strip()).upper() or "INFO"

    @model_validator(mode="after")
    def _finalize(self) -> "Settings":
        self.output_dir = self.output_dir.expanduser().resolve()

        if self.feed_api_version is None:
            self.feed_api_version = "v1" if self.feed_api_url.endswith("/v1") else "v0.1"

        if not self.callback_url:
            self.callback_url = (
                f"http://{self.callback_host}:{self.listener_port}{CALLBACK_PATH}"
            )
        return self

    @property
    def fatal_error_kinds(self) -> frozenset[str]:
        return frozenset(self.fatal_errors)


__all__ = [
    "CALLBACK_PATH",
    "DEFAULT_FEED_API_URL",
    "DEFAULT_LISTENER_PORT",
    "ErrorKind",
    "FeedApiVersion",
    "Settings",
]
