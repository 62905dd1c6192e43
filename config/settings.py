from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Paths ──────────────────────────────────────────────────
    output_dir: Path = Path("output")

    # ── Media ──────────────────────────────────────────────────
    app_url: str = ""                      # base for relative media locators
    bluesky_max_image_bytes: int = 1_000_000

    # ── Provider endpoints ─────────────────────────────────────
    graph_api_base: str = "https://graph.facebook.com/v21.0"
    bluesky_service_url: str = "https://bsky.social"
    tiktok_api_base: str = "https://open.tiktokapis.com/v2"
    tiktok_privacy_level: str = "MUTUAL_FOLLOW_FRIENDS"

    # ── Timeouts / retries / workers ───────────────────────────
    request_timeout: float = 30.0
    instagram_publish_attempts: int = 5
    instagram_publish_delay: float = 3.0
    publish_workers: int = 5
    metrics_workers: int = 4

    # ── Single-tenant credentials (CLI) ────────────────────────
    bluesky_handle: str = ""
    bluesky_app_password: str = ""
    instagram_access_token: str = ""
    facebook_access_token: str = ""
    tiktok_access_token: str = ""
    twitter_api_key: str = ""
    twitter_api_secret: str = ""
    twitter_access_token: str = ""
    twitter_access_secret: str = ""
    twitter_bearer_token: str = ""

    # ── App ────────────────────────────────────────────────────
    log_level: str = "INFO"

    @property
    def db_path(self) -> Path:
        return self.output_dir / "crosspost.db"

    def ensure_output_dirs(self) -> None:
        """Create output directories if they don't exist."""
        self.output_dir.mkdir(parents=True, exist_ok=True)


settings = Settings()
