"""
Configuration management for the Price Schedule API.
"""

import json
import re
from pathlib import Path
from typing import Dict, Optional
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings."""

    tenants_config_path: str = Field(
        default="./tenants_config.json",
        env="TENANTS_CONFIG_PATH"
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        env="REDIS_URL"
    )
    log_level: str = Field(
        default="INFO",
        env="LOG_LEVEL"
    )

    # Scheduler
    scheduler_embedded: bool = Field(default=False, env="SCHEDULER_EMBEDDED")
    scheduler_poll_interval: float = Field(default=15.0, env="SCHEDULER_POLL_INTERVAL")
    scheduler_batch_size: int = Field(default=20, env="SCHEDULER_BATCH_SIZE")
    item_concurrency: int = Field(default=5, env="ITEM_CONCURRENCY")
    stall_timeout_seconds: int = Field(default=1800, env="STALL_TIMEOUT_SECONDS")

    # Catalog API
    catalog_rate_limit_rps: float = Field(default=5.0, env="CATALOG_RATE_LIMIT_RPS")
    catalog_timeout: float = Field(default=30.0, env="CATALOG_TIMEOUT")
    catalog_max_retries: int = Field(default=4, env="CATALOG_MAX_RETRIES")
    catalog_initial_delay: float = Field(default=2.0, env="CATALOG_INITIAL_DELAY")
    catalog_backoff_factor: float = Field(default=2.0, env="CATALOG_BACKOFF_FACTOR")

    # Plan ceilings (None = unlimited)
    free_max_items: Optional[int] = Field(default=50, env="FREE_MAX_ITEMS")
    plus_max_items: Optional[int] = Field(default=500, env="PLUS_MAX_ITEMS")
    pro_max_items: Optional[int] = Field(default=None, env="PRO_MAX_ITEMS")

    # Seconds a derived (no Idempotency-Key header) duplicate guard lasts
    idempotency_ttl_seconds: int = Field(default=86400, env="IDEMPOTENCY_TTL_SECONDS")

    class Config:
        env_file = ".env"
        case_sensitive = False


_settings = Settings()


def load_tenants_config(config_path: Optional[str] = None) -> Dict:
    """
    Load tenants configuration from JSON file.

    Args:
        config_path: Optional path to config file. If None, uses TENANTS_CONFIG_PATH.

    Returns:
        Dict with a 'tenants' key.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ValueError: If config is invalid.
    """
    path = Path(config_path or _settings.tenants_config_path)

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if not isinstance(data, dict):
        raise ValueError("Config must be a JSON object")

    if "tenants" not in data:
        raise ValueError("Config must have 'tenants' key")

    return data


def get_all_tenants(config_path: Optional[str] = None) -> Dict[str, Dict]:
    """
    Get all tenants configuration.

    Args:
        config_path: Optional path to config file.

    Returns:
        Dict mapping shop names to their configs.
    """
    config = load_tenants_config(config_path)
    return config.get("tenants", {})


def generate_tenant_id(shop_name: str) -> str:
    """
    Generate a stable tenant_id (slug) from shop name.

    Args:
        shop_name: Shop display name.

    Returns:
        URL-safe slug.
    """
    slug = re.sub(r'[^\w\s-]', '', shop_name.lower())
    slug = re.sub(r'[-\s]+', '-', slug)
    return slug.strip('-')


def validate_tenant_config(config: Dict) -> tuple[bool, str]:
    """
    Validate a tenant's shop configuration.

    Args:
        config: Tenant config dict with store_url, consumer_key, consumer_secret, plan.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not config:
        return False, "Tenant config is missing"

    required_fields = ["store_url", "consumer_key", "consumer_secret"]

    for field in required_fields:
        if field not in config:
            return False, f"Missing required field: {field}"

        if not config[field] or not isinstance(config[field], str):
            return False, f"Invalid value for field: {field}"

    store_url = config["store_url"].strip()
    if not store_url.startswith(("http://", "https://")):
        return False, "store_url must start with http:// or https://"

    if store_url.endswith("/"):
        config["store_url"] = store_url.rstrip("/")

    plan = config.get("plan", "free")
    if not isinstance(plan, str) or not plan.strip():
        return False, "Invalid value for field: plan"

    return True, ""


def get_settings() -> Settings:
    """Get application settings."""
    return _settings
