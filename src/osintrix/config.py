"""Centralized configuration: Pydantic BaseSettings with TOML + dotenv sources.

Non-secret settings live in config.toml. Secrets (the static fallback token)
live in .env. Environment variables override both using ``__`` as the nested
delimiter (e.g. ``SECRETS__STATIC_TOKEN``). Secrets use SecretStr for masking
in logs.

Priority (highest wins): init args > env vars > .env > config.toml

Usage::

    from osintrix.config import get_settings

    s = get_settings()
    print(s.quota.default_limit)
    print(s.browser.settle_ms)
"""

from __future__ import annotations

import typing
from functools import cached_property
from pathlib import Path

from pydantic import BaseModel, SecretStr, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in config.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config sub-models - reject unknown keys so typos fail loudly."""

    model_config = {"extra": "forbid"}


class BotConfig(_StrictModel):
    name: str = "osintrix"
    command_prefix: str = "/"


class LoggingConfig(_StrictModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


class QuotaConfig(_StrictModel):
    default_limit: int = 20  # granted to an identity on its first request
    owners: list[str] = []  # privileged identities, never deducted

    @field_validator("default_limit")
    @classmethod
    def validate_default_limit(cls, v: int) -> int:
        if v < 0:
            raise ValueError("default_limit must be >= 0")
        return v


class PluginsConfig(_StrictModel):
    # Dotted package names or filesystem directories, scanned recursively.
    locations: list[str] = ["osintrix.plugins"]
    entrypoints: bool = True  # also load the "osintrix" entry-point group


class CommandConfig(_StrictModel):
    """Per-command override under [commands.<name>]."""

    enabled: bool = True


class BrowserConfig(_StrictModel):
    headless: bool = True
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/136.0.0.0 Safari/537.36"
    )
    viewport_width: int = 1366
    viewport_height: int = 768
    navigation_timeout_ms: int = 60000
    selector_timeout_ms: int = 30000
    settle_ms: int = 8000
    search_attempts: int = 2  # bounded retry budget for locating the search input
    acquisition_timeout_s: float = 120.0  # caller-side cap on one whole browser run
    launch_args: list[str] = ["--no-sandbox", "--disable-setuid-sandbox"]

    @field_validator("search_attempts")
    @classmethod
    def clamp_search_attempts(cls, v: int) -> int:
        return max(1, v)


class RetrievalConfig(_StrictModel):
    page_url: str = "https://cekdptonline.kpu.go.id/"
    api_url: str = "https://cekdptonline.kpu.go.id/v2"
    root_field: str = "findNikSidalih"
    request_timeout_s: float = 30.0
    match_prefix_len: int = 6  # leading digits an intercepted subject id must share


class SecretsConfig(_StrictModel):
    static_token: SecretStr | None = None


class StorageConfig(_StrictModel):
    db_file: str = "osintrix.db"


# ---------------------------------------------------------------------------
# Explicit-field validation
# ---------------------------------------------------------------------------


def _is_exempt_field(model_cls: type[BaseModel], field_name: str) -> bool:
    """Optional fields and fields defaulting to an empty collection may be omitted."""
    info = model_cls.model_fields[field_name]
    if type(None) in typing.get_args(info.annotation):
        return True
    return info.default in ([], {})


def _collect_implicit_fields(model: BaseModel, path: str) -> list[str]:
    """Find fields of sections present in config.toml that were left implicit.

    Sections omitted entirely use known defaults and are not checked.
    """
    errors: list[str] = []
    for field_name in type(model).model_fields:
        value = getattr(model, field_name)
        items: list[tuple[str, BaseModel]] = []
        if isinstance(value, dict):
            items = [
                (f"{field_name}.{k}", v) for k, v in value.items() if isinstance(v, _StrictModel)
            ]
        elif isinstance(value, _StrictModel) and field_name in model.model_fields_set:
            items = [(field_name, value)]

        for child_name, child in items:
            child_path = f"{path}.{child_name}" if path else child_name
            child_cls = type(child)
            missing = {
                f
                for f in set(child_cls.model_fields) - child.model_fields_set
                if not _is_exempt_field(child_cls, f)
            }
            if missing:
                errors.append(f"{child_path}: missing {sorted(missing)}")
    return errors


# ---------------------------------------------------------------------------
# Root Settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="config.toml",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    bot: BotConfig = BotConfig()
    logging: LoggingConfig = LoggingConfig()
    quota: QuotaConfig = QuotaConfig()
    plugins: PluginsConfig = PluginsConfig()
    commands: dict[str, CommandConfig] = {}  # [commands.<name>]
    browser: BrowserConfig = BrowserConfig()
    retrieval: RetrievalConfig = RetrievalConfig()
    secrets: SecretsConfig = SecretsConfig()
    storage: StorageConfig = StorageConfig()

    @model_validator(mode="after")
    def _require_explicit_fields(self) -> Settings:
        """If a section appears in config.toml, every field in it must be spelled out."""
        errors = _collect_implicit_fields(self, "")
        if errors:
            msg = "Config fields must be explicitly set:\n"
            msg += "\n".join(f"  - {e}" for e in errors)
            raise ValueError(msg)
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > .env > config.toml > file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    # --- Computed properties ---

    @cached_property
    def project_root(self) -> Path:
        return Path.cwd()

    @cached_property
    def data_dir(self) -> Path:
        return (self.project_root / "data").resolve()

    @cached_property
    def db_path(self) -> Path:
        return self.data_dir / self.storage.db_file

    def command_enabled(self, name: str) -> bool:
        cfg = self.commands.get(name)
        return cfg is None or cfg.enabled


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None
