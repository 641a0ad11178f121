"""Configuration using pydantic-settings."""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables (``HARVEST_`` prefix)."""

    # Remote catalog (WooCommerce REST)
    catalog_base_url: str = "http://localhost:8080"
    catalog_consumer_key: str = ""
    catalog_consumer_secret: str = ""
    catalog_api_version: str = "wc/v3"
    catalog_timeout: float = 60.0

    # WordPress application password for /wp/v2/media uploads
    wp_username: Optional[str] = None
    wp_app_password: Optional[str] = None

    # Products land in this category, or in one named after the site
    default_category: Optional[str] = None

    # Render bridge
    node_executable: str = "node"
    render_script: str = "scripts/render.js"
    render_timeout: float = 300.0
    render_grace: float = 10.0

    # Fetch engine
    http_timeout: float = 30.0
    max_retries: int = 5
    backoff_base: float = 2.0
    detail_concurrency: int = 20
    colour_concurrency: int = 8
    listing_concurrency: int = 5
    batch_size: int = 200
    wave_sleep: float = 0.1
    batch_sleep: float = 0.2
    round_sleep: float = 0.5
    gc_every_batches: int = 5
    use_fake_useragent: bool = True

    # Site profiles and local storage
    sites_config: str = "config/sites.json"
    storage_root: str = "data/storage"
    debug_dir: str = "data/debug"

    # Pricing policy: "passthrough" or "markup"
    pricing_policy: str = "passthrough"
    markup_conversion_rate: float = 150000.0

    # Description translation: "none" or "gemini"
    translator: str = "none"
    translation_api_key: Optional[str] = None
    translation_model: str = "gemini-2.5-flash"
    translation_language: str = "Persian"

    # Sync mapping persistence
    mapping_db_path: str = "data/sync_mappings.sqlite3"
    download_images: bool = True

    class Config:
        env_file = ".env"
        env_prefix = "HARVEST_"
        case_sensitive = False
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings
    """
    return Settings()
