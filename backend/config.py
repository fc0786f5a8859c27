import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


def load_config() -> Dict[str, Any]:
    """Load configuration from config.json file"""
    config_path = Path(__file__).parent / "config.json"
    if os.getenv("TEST") or os.getenv("TESTING"):
        config_path = Path(__file__).parent / "config.test.json"
    if not config_path.exists():
        # Create new from template if missing
        template_path = Path(__file__).parent / "config.template.json"
        if not template_path.exists():
            raise FileNotFoundError(
                f"Template config not found: {template_path}"
            )
        with open(template_path, "r") as f:
            template_config = json.load(f)
        with open(config_path, "w") as f:
            json.dump(template_config, f, indent=2)
    with open(config_path, "r") as f:
        return json.load(f)


# Load config once at module level
_config = load_config()

_sync = _config.get("sync", {})
_queue = _config.get("queue", {})
_attachments = _config.get("attachments", {})
_retention = _config.get("retention", {})
_health = _config.get("health", {})
_timeouts = _config.get("timeouts", {})
_cache = _config.get("cache", {})
_discord = _config.get("discord", {})


class Settings(BaseSettings):
    """Application settings loaded from config.json and the environment"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Zammad (from .env)
    zammad_base_url: str = os.getenv("ZAMMAD_BASE_URL", "")
    zammad_public_url: Optional[str] = os.getenv("ZAMMAD_PUBLIC_URL")
    zammad_api_token: str = os.getenv("ZAMMAD_API_TOKEN", "")
    zammad_webhook_secret: str = os.getenv("ZAMMAD_WEBHOOK_SECRET", "")

    # Discord (from .env)
    discord_token: str = os.getenv("DISCORD_TOKEN", "")
    discord_guild_id: str = os.getenv("DISCORD_GUILD_ID", "")
    discord_tickets_channel_id: str = os.getenv(
        "DISCORD_TICKETS_CHANNEL_ID", ""
    )
    discord_ticket_role_id: Optional[str] = os.getenv(
        "DISCORD_TICKET_ROLE_ID"
    )
    # Shared bearer token for the gateway relay (messages and commands)
    relay_token: str = os.getenv("RELAY_TOKEN", "")
    discord_api_base_url: str = _discord.get(
        "api_base_url", "https://discord.com/api/v10"
    )
    thread_name_max_length: int = _discord.get("thread_name_max_length", 100)
    message_max_length: int = _discord.get("message_max_length", 2000)
    thread_auto_archive_minutes: int = _discord.get(
        "thread_auto_archive_minutes", 10080
    )

    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    port: int = int(os.getenv("PORT", "3100"))

    # Reconciliation loop
    reconcile_interval_seconds: int = _sync.get(
        "reconcile_interval_seconds", 10
    )
    article_catchup_every: int = _sync.get("article_catchup_every", 6)
    reopen_grace_seconds: int = _sync.get("reopen_grace_seconds", 300)
    close_grace_seconds: int = _sync.get("close_grace_seconds", 120)
    open_tickets_max_pages: int = _sync.get("open_tickets_max_pages", 50)

    # Global Discord egress queue
    egress_concurrency: int = _queue.get("egress_concurrency", 10)
    egress_rate_limit: int = _queue.get("egress_rate_limit", 45)
    egress_interval_seconds: float = _queue.get(
        "egress_interval_seconds", 1.0
    )
    shutdown_drain_seconds: float = _queue.get("shutdown_drain_seconds", 10)

    # Attachment defaults (overridable at runtime, see AttachmentLimitService)
    attachment_per_file_mb: float = _attachments.get("per_file_mb", 5)
    attachment_total_mb: float = _attachments.get("total_mb", 24)
    attachment_max_count: int = _attachments.get("max_count", 10)
    attachment_download_cap_mb: float = _attachments.get(
        "download_cap_mb", 8
    )
    attachment_local_max_mb: float = _attachments.get("local_max_mb", 25)

    # Retention
    synced_article_retention_days: int = _retention.get(
        "synced_article_days", 30
    )
    webhook_delivery_retention_hours: int = _retention.get(
        "webhook_delivery_hours", 24
    )

    # Health monitor
    health_check_interval_seconds: int = _health.get("interval_seconds", 30)
    health_failure_threshold: int = _health.get("failure_threshold", 3)

    # Network timeouts (seconds)
    remote_timeout: float = _timeouts.get("remote", 30)
    attachment_timeout: float = _timeouts.get("attachment", 60)
    readiness_timeout: float = _timeouts.get("readiness", 5)
    health_check_timeout: float = _timeouts.get("health_check", 10)

    # Cache TTLs (seconds)
    role_members_ttl: float = _cache.get("role_members_ttl", 60)
    states_ttl: float = _cache.get("states_ttl", 600)
    user_names_ttl: float = _cache.get("user_names_ttl", 300)

    @property
    def zammad_link_base(self) -> str:
        """Public Zammad URL used in links, falls back to the API base"""
        return (self.zammad_public_url or self.zammad_base_url).rstrip("/")


# Global settings instance
settings = Settings()
