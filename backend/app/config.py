from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_DATA_DIR = ".athan-notes"
DEFAULT_GEMINI_MODELS: tuple[str, ...] = (
    "gemini-2.5-flash",
    "gemini-2.0-flash",
    "gemini-2.5-flash-lite",
)
MIN_SESSION_SECRET_LENGTH = 32
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (("log_dir", Path("logs")),)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    "categories_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = (
    "session_https_only",
    "rate_limit_sweep_enabled",
    "telemetry_enabled",
)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _data_dir_default_note(relative_path: Path) -> str:
    return f"Defaults to `${{ATHAN_NOTES_DATA_DIR}}/{relative_path}` when not explicitly set."


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _normalize_optional_text(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if normalized:
        return normalized
    return None


class AppSettings(BaseSettings):
    """
    Canonical runtime configuration.

    Every option is read from `ATHAN_NOTES_*` environment variables (or `.env`).
    Secrets default to `None` so that tooling such as the password-hash script can
    load settings without a complete deployment; `load_settings` enforces them.
    """

    model_config = SettingsConfigDict(
        env_prefix="ATHAN_NOTES_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Core paths.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for logs and other local artifacts.",
    )
    categories_dir: Path = Field(
        default=Path("config"),
        description=(
            "Directory holding `categories.json` (user-owned) or "
            "`categories.example.json` (shipped fallback)."
        ),
    )

    # Gemini.
    gemini_api_key: str | None = Field(
        default=None,
        description="Google Gemini API key used for transcription.",
    )
    gemini_models: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_GEMINI_MODELS,
        description=(
            "Ordered, comma-separated Gemini model ids. Later models are only tried "
            "when earlier ones fail with a transient error or time out."
        ),
    )
    gemini_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Upper bound for a single Gemini generation attempt.",
    )
    summary_max_length: int = Field(
        default=200,
        ge=20,
        description="Maximum accepted length of the model-produced summary.",
    )
    max_audio_size_bytes: int = Field(
        default=50 * 1024 * 1024,
        ge=1,
        description="Largest accepted audio upload.",
    )

    # Notion.
    notion_api_key: str | None = Field(
        default=None,
        description="Notion internal integration token.",
    )
    notion_database_id: str | None = Field(
        default=None,
        description="Notion database that receives voice-note pages.",
    )
    notion_base_url: str = Field(
        default="https://api.notion.com/v1",
        description="Notion REST API base URL.",
    )
    notion_version: str = Field(
        default="2022-06-28",
        description="Value sent in the `Notion-Version` header.",
    )
    notion_http_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout for Notion requests.",
    )

    # Authentication and session.
    app_username: str | None = Field(
        default=None,
        description="The single user allowed to log in.",
    )
    app_password_hash: str | None = Field(
        default=None,
        description=(
            "bcrypt hash of the user's password. Backslashes are stripped, so `\\$` "
            "escaped values copied from shell-style env files keep working."
        ),
    )
    session_secret: str | None = Field(
        default=None,
        description=f"Session cookie signing secret (at least {MIN_SESSION_SECRET_LENGTH} chars).",
    )
    session_cookie_name: str = Field(
        default="athan_session",
        description="Session cookie name.",
    )
    session_max_age_seconds: int = Field(
        default=345_600,
        ge=60,
        description="Session lifetime. Defaults to 4 days.",
    )
    session_https_only: bool = Field(
        default=False,
        description="Mark the session cookie `Secure`. Enable behind HTTPS.",
    )

    # Login rate limiting.
    login_rate_limit_max_attempts: int = Field(
        default=5,
        ge=1,
        le=1000,
        description="Login attempts allowed per client within one window.",
    )
    login_rate_limit_window_seconds: int = Field(
        default=15 * 60,
        ge=1,
        description="Login rate-limit window length in seconds.",
    )
    rate_limit_sweep_enabled: bool = Field(
        default=True,
        description="Run the background sweep that drops expired rate-limit entries.",
    )
    rate_limit_sweep_interval_seconds: int = Field(
        default=60 * 60,
        ge=1,
        description="Cadence of the expired rate-limit entry sweep.",
    )

    # Logging.
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description=f"Directory for backend log files. {_data_dir_default_note(Path('logs'))}",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description=(
            "Telemetry sink backend. `log` emits structured telemetry locally; "
            "`none` disables sink output."
        ),
    )

    @field_validator("gemini_models", mode="before")
    @classmethod
    def _normalize_models(cls, value: Any) -> tuple[str, ...]:
        if isinstance(value, str):
            raw_items: list[Any] = value.split(",")
        elif isinstance(value, list | tuple):
            raw_items = list(value)
        else:
            raise ValueError("ATHAN_NOTES_GEMINI_MODELS must be a comma-separated string.")

        models: list[str] = []
        for item in raw_items:
            normalized = _normalize_optional_text(item)
            if normalized is not None and normalized not in models:
                models.append(normalized)
        if not models:
            raise ValueError("ATHAN_NOTES_GEMINI_MODELS must name at least one model.")
        return tuple(models)

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("ATHAN_NOTES_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("ATHAN_NOTES_TELEMETRY_SINK must be set to: none, log.")

    @field_validator("notion_base_url", mode="before")
    @classmethod
    def _normalize_notion_base_url(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("ATHAN_NOTES_NOTION_BASE_URL must be a string.")
        normalized = value.strip().rstrip("/")
        if not normalized:
            raise ValueError("ATHAN_NOTES_NOTION_BASE_URL must not be empty.")
        return normalized

    @field_validator(*_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_paths(cls, value: Any) -> Any:
        if value is None:
            return None
        return _resolve_path(value)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)

    @field_validator(
        "gemini_api_key",
        "notion_api_key",
        "notion_database_id",
        "app_username",
        "app_password_hash",
        "session_secret",
        mode="before",
    )
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)


def _validate_runtime_secrets(settings: AppSettings) -> None:
    errors: list[str] = []

    if settings.gemini_api_key is None:
        errors.append("ATHAN_NOTES_GEMINI_API_KEY is required for transcription.")
    if settings.notion_api_key is None:
        errors.append("ATHAN_NOTES_NOTION_API_KEY is required to save notes.")
    if settings.notion_database_id is None:
        errors.append("ATHAN_NOTES_NOTION_DATABASE_ID is required to save notes.")
    if settings.app_username is None:
        errors.append("ATHAN_NOTES_APP_USERNAME is required for login.")
    if settings.app_password_hash is None:
        errors.append(
            "ATHAN_NOTES_APP_PASSWORD_HASH is required for login "
            "(generate one with `python -m backend.app.scripts.hash_password`)."
        )
    if settings.session_secret is None:
        errors.append(
            "ATHAN_NOTES_SESSION_SECRET is required "
            "(generate one with `python -m backend.app.scripts.generate_secret`)."
        )
    elif len(settings.session_secret) < MIN_SESSION_SECRET_LENGTH:
        errors.append(
            f"ATHAN_NOTES_SESSION_SECRET must be at least {MIN_SESSION_SECRET_LENGTH} characters."
        )

    if errors:
        bullets = "\n".join(f"- {message}" for message in errors)
        raise ValueError(f"Invalid runtime configuration:\n{bullets}")


def _apply_path_defaults(settings: AppSettings) -> AppSettings:
    updates: dict[str, Path] = {}
    for field_name, relative_default in _DATA_DIR_RELATIVE_DEFAULTS:
        if field_name in settings.model_fields_set:
            continue
        updates[field_name] = settings.data_dir / relative_default
    if not updates:
        return settings
    return settings.model_copy(update=updates)


def _resolve_path_fields(settings: AppSettings) -> AppSettings:
    resolved_updates = {
        field_name: _resolve_path(getattr(settings, field_name)) for field_name in _PATH_FIELDS
    }
    return settings.model_copy(update=resolved_updates)


def load_settings(*, validate_secrets: bool = True) -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    settings = _resolve_path_fields(settings)

    if validate_secrets:
        _validate_runtime_secrets(settings)

    return settings
