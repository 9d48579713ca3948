from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field


def _resolve_home() -> Path:
    override = os.getenv("COFOUND_HOME", "").strip()
    if override:
        return Path(override).expanduser().resolve()
    return Path(__file__).parent.resolve()


def _env(key: str, default: str = "") -> str:
    return os.getenv(key, default).strip()


class Settings(BaseModel):
    home: Path = Field(default_factory=_resolve_home)
    data_dir: Path = Field(default_factory=lambda: _resolve_home() / "data")

    database_url_override: str = Field(default_factory=lambda: _env("COFOUND_DATABASE_URL"))

    auth_url: str = Field(default_factory=lambda: _env("COFOUND_AUTH_URL").rstrip("/"))
    auth_anon_key: str = Field(default_factory=lambda: _env("COFOUND_AUTH_ANON_KEY"))
    # "provider" resolves bearer tokens against the identity provider,
    # "header" trusts X-User-Id (local development only).
    auth_mode: str = Field(default_factory=lambda: _env("COFOUND_AUTH_MODE", "provider").lower())
    auth_timeout_seconds: float = 10.0
    # Cached sessions are re-checked against the provider after this many seconds.
    session_ttl_seconds: int = Field(
        default_factory=lambda: int(_env("COFOUND_SESSION_TTL", "3600") or 3600),
    )

    stripe_webhook_secret: str = Field(default_factory=lambda: _env("COFOUND_STRIPE_WEBHOOK_SECRET"))
    stripe_tolerance_seconds: int = 300

    host: str = Field(default_factory=lambda: _env("COFOUND_HOST", "127.0.0.1"))
    port: int = Field(default_factory=lambda: int(_env("COFOUND_PORT", "8001") or 8001))

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self.data_dir / "cofound.db"

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return f"sqlite:///{self.database_path}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
