from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PLACEHOLDER_VALUES = {
    "your_developer_token",
    "your_product_hunt_client_id",
    "your_product_hunt_client_secret",
    "your_openai_api_key",
}


def configured_value(value: Optional[str]) -> Optional[str]:
    cleaned = (value or "").strip()
    if not cleaned or cleaned in PLACEHOLDER_VALUES:
        return None
    return cleaned


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    data_dir: Path = Field(default=Path("data"))
    db_path: Path = Field(default=Path("data/hunt_analyzer.db"))
    report_dir: Path = Field(default=Path("data/reports"))
    token_file: Path = Field(default=Path("data/access_token.json"))
    log_dir: Path = Field(default=Path("logs"))

    ph_developer_token: Optional[str] = None
    ph_client_id: Optional[str] = None
    ph_client_secret: Optional[str] = None
    redirect_url: str = Field(default="http://localhost:3000/callback")
    ph_graphql_url: str = Field(default="https://api.producthunt.com/v2/api/graphql")
    ph_rest_url: str = Field(default="https://api.producthunt.com/v1/posts")
    ph_token_host: str = Field(default="https://api.producthunt.com")

    analysis_provider: str = Field(default="openai")
    openai_api_key: Optional[str] = None
    openai_model: str = Field(default="gpt-4o-mini")
    deepseek_api_key: Optional[str] = None
    deepseek_model: str = Field(default="deepseek-chat")
    deepseek_base_url: str = Field(default="https://api.deepseek.com")
    analysis_temperature: float = Field(default=0.3)
    analysis_max_tokens: int = Field(default=300)
    analysis_max_retries: int = Field(default=3)

    # Hosting platforms cut requests at ~30s; the ceilings keep a run inside that.
    fetch_timeout_sec: float = Field(default=15.0)
    analysis_timeout_sec: float = Field(default=8.0)
    item_delay_sec: float = Field(default=0.2)
    stream_max_items: int = Field(default=10)
    quick_max_items: int = Field(default=3)

    request_timeout_sec: float = Field(default=30.0)
    fetch_max_retries: int = Field(default=3)
    fetch_retry_delay_sec: float = Field(default=1.0)
    fetch_overscan_cap: int = Field(default=30)
    mock_fallback_enabled: bool = Field(default=True)

    archive_enabled: bool = Field(default=True)
    archive_keep_runs: int = Field(default=10)

    environment: str = Field(default="development")
    allowed_domains: str = Field(default="")
    rate_limit_max_requests: int = Field(default=100)
    rate_limit_window_sec: int = Field(default=900)
    # Only set behind a reverse proxy that overwrites X-Forwarded-For.
    trust_forwarded_for: bool = Field(default=False)

    log_level: str = Field(default="INFO")
    log_file_enabled: bool = Field(default=True)
    log_retention_days: int = Field(default=30)

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def allowed_domain_list(self) -> list[str]:
        return [d.strip() for d in self.allowed_domains.split(",") if d.strip()]


def get_settings() -> Settings:
    settings = Settings()
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.report_dir.mkdir(parents=True, exist_ok=True)
    settings.log_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.token_file.parent.mkdir(parents=True, exist_ok=True)
    return settings
