from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, PositiveFloat, PositiveInt, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_DISPATCH_POLICIES = {"advance", "hold"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CATALOGSYNC_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "catalogsync"
    environment: str = "production"
    log_level: str = "INFO"

    state_root: Path = Field(default=Path("/state"))
    database_url: str | None = None

    catalog_id: str | None = None
    graph_api_base_url: str = "https://graph.facebook.com"
    graph_api_version: str = "v21.0"
    access_token: SecretStr | None = None
    http_timeout_seconds: PositiveFloat = 30.0

    product_index_prefix: str = "p-"
    items_per_batch: PositiveInt | None = None

    time_limit_seconds: PositiveFloat = 20.0
    memory_limit_mib: PositiveInt = 256
    memory_limit_ratio: float = 0.9

    dispatch_failure_policy: str = "advance"
    dispatch_max_attempts: PositiveInt = 1

    default_page_size: PositiveInt = 50
    max_page_size: PositiveInt = 200

    @field_validator("state_root", mode="before")
    @classmethod
    def _normalize_path(cls, value: str | Path) -> Path:
        raw = str(value)
        if "~" in raw:
            raise ValueError("Home expansion syntax is not allowed in paths")
        if "$" in raw:
            raise ValueError("Environment variable syntax is not allowed in paths")
        path = Path(raw)
        if not path.is_absolute():
            raise ValueError("Path settings must be absolute")
        return path

    @model_validator(mode="after")
    def _validate_runtime_constraints(self) -> "Settings":
        self.state_root = self.state_root.resolve(strict=False)
        if self.database_url is None:
            self.state_root.mkdir(parents=True, exist_ok=True)

        if not 0.0 < self.memory_limit_ratio <= 1.0:
            raise ValueError("memory_limit_ratio must be in (0.0, 1.0]")

        normalized_policy = self.dispatch_failure_policy.lower().strip()
        if normalized_policy not in SUPPORTED_DISPATCH_POLICIES:
            raise ValueError(f"dispatch_failure_policy must be one of {sorted(SUPPORTED_DISPATCH_POLICIES)}")
        self.dispatch_failure_policy = normalized_policy

        if self.max_page_size < self.default_page_size:
            raise ValueError("max_page_size must be greater than or equal to default_page_size")

        self.graph_api_base_url = self.graph_api_base_url.rstrip("/")
        return self

    @property
    def effective_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        db_path = self.state_root / "catalogsync.sqlite3"
        return f"sqlite:///{db_path.as_posix()}"

    @property
    def memory_threshold_bytes(self) -> int:
        return int(self.memory_limit_mib * 1024 * 1024 * self.memory_limit_ratio)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
