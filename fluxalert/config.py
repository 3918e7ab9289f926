"""Configuration management for fluxalert."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server settings
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=9090)
    log_level: str = Field(default="INFO")

    # Alertmanager delivery
    alertmanager_address: str = Field(default="", description="Comma-separated webhook URLs")
    proxy_url: str = Field(default="")
    ca_file: str = Field(default="", description="PEM bundle trusted for TLS")
    request_timeout: float = Field(default=15.0, gt=0)

    # Relabeling
    relabel_config: str = Field(default="", description="Path to a relabel rules YAML file")

    # Keep the case of event reasons when building alert names
    title_preserve_case: bool = Field(default=False)

    @property
    def relabel_config_path(self) -> Path | None:
        return Path(self.relabel_config) if self.relabel_config else None

    @property
    def ca_file_path(self) -> Path | None:
        return Path(self.ca_file) if self.ca_file else None


@lru_cache
def get_settings() -> Settings:
    return Settings()
