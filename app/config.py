"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DVRServerSettings(BaseModel):
    """Connection details for a single Radarr or Sonarr instance."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: int
    name: str = ""
    hostname: str
    port: int = Field(ge=1, le=65_535)
    api_key: str = Field(alias="apiKey")
    use_ssl: bool = Field(default=False, alias="useSsl")
    base_url: str = Field(default="", alias="baseUrl")
    is_4k: bool = Field(default=False, alias="is4k")
    sync_enabled: bool = Field(default=True, alias="syncEnabled")

    @field_validator("hostname", mode="before")
    @classmethod
    def _strip_hostname(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("base_url", mode="before")
    @classmethod
    def _normalise_base_url(cls, value: object) -> str:
        """Store base paths as ``/path`` without a trailing slash."""

        if value is None:
            return ""
        text = str(value).strip().strip("/")
        if not text:
            return ""
        return f"/{text}"

    @property
    def display_name(self) -> str:
        return self.name or f"{self.hostname}:{self.port}"

    def instance_key(self) -> tuple[str, int, str]:
        """Return the identity used to detect duplicate server entries."""

        return (self.hostname, self.port, self.base_url)

    def build_url(self, path: str = "") -> str:
        scheme = "https" if self.use_ssl else "http"
        return f"{scheme}://{self.hostname}:{self.port}{self.base_url}{path}"


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Availarr", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=5055, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_max_rps: int = Field(default=50, alias="TMDB_MAX_RPS", ge=1)

    http_timeout_seconds: float = Field(default=20.0, alias="HTTP_TIMEOUT", gt=0)
    http_proxy: str | None = Field(default=None, alias="HTTP_PROXY")
    https_proxy: str | None = Field(default=None, alias="HTTPS_PROXY")

    cache_rolling_buffer_seconds: float = Field(
        default=10.0, alias="CACHE_ROLLING_BUFFER", ge=0
    )

    scan_bundle_size: int = Field(default=50, alias="SCAN_BUNDLE_SIZE", ge=1, le=500)
    scan_update_rate_seconds: float = Field(
        default=4.0, alias="SCAN_UPDATE_RATE", ge=0
    )
    radarr_scan_interval_seconds: int = Field(
        default=86_400, alias="RADARR_SCAN_INTERVAL", ge=60
    )
    sonarr_scan_interval_seconds: int = Field(
        default=86_400, alias="SONARR_SCAN_INTERVAL", ge=60
    )
    download_sync_interval_seconds: int = Field(
        default=60, alias="DOWNLOAD_SYNC_INTERVAL", ge=5
    )

    radarr_servers: list[DVRServerSettings] = Field(
        default_factory=list, alias="RADARR_SERVERS"
    )
    sonarr_servers: list[DVRServerSettings] = Field(
        default_factory=list, alias="SONARR_SERVERS"
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./availarr.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("http_proxy", "https_proxy", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_log_level(cls, value: object) -> str:
        text = str(value or "INFO").strip().upper()
        if text not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError("LOG_LEVEL must be a standard logging level name")
        return text

    @model_validator(mode="after")
    def _check_server_ids(self) -> "Settings":
        """Server IDs identify snapshot slots so they must be unique per service."""

        for label, servers in (
            ("RADARR_SERVERS", self.radarr_servers),
            ("SONARR_SERVERS", self.sonarr_servers),
        ):
            ids = [server.id for server in servers]
            if len(ids) != len(set(ids)):
                raise ValueError(f"{label} contains duplicate server ids")
        return self

    @property
    def proxy_urls(self) -> dict[str, str]:
        """Return forward proxies keyed by the URL scheme they apply to."""

        proxies: dict[str, str] = {}
        if self.http_proxy:
            proxies["http://"] = self.http_proxy
        if self.https_proxy:
            proxies["https://"] = self.https_proxy
        return proxies

    @property
    def enable_4k_movie(self) -> bool:
        return any(server.is_4k for server in self.radarr_servers)

    @property
    def enable_4k_show(self) -> bool:
        return any(server.is_4k for server in self.sonarr_servers)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
