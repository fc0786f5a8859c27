import logging
from typing import Optional

import httpx

from config import settings
from services.discord_service import DiscordAPIError, DiscordService
from services.zammad_service import ZammadService

logger = logging.getLogger(__name__)

ALERT_MESSAGE = (
    "**Zammad is unreachable.** Ticket sync and webhooks are paused until "
    "connectivity is restored."
)
RECOVERY_MESSAGE = (
    "Zammad connectivity has been **restored**. Ticket sync is operational."
)


class HealthMonitor:
    """
    Probes Zammad on a fixed interval. After `threshold` consecutive
    failures presence flips to "down" and one alert is posted; the first
    success afterwards flips it back and posts one recovery notice.
    """

    def __init__(
        self,
        zammad: ZammadService,
        discord: DiscordService,
        channel_id: Optional[str] = None,
        threshold: Optional[int] = None,
    ):
        self.zammad = zammad
        self.discord = discord
        self.channel_id = channel_id or settings.discord_tickets_channel_id
        self.threshold = threshold or settings.health_failure_threshold
        self.failure_count = 0
        self.alert_sent = False
        self.checking = False

    @property
    def status(self) -> str:
        return "down" if self.alert_sent else "ok"

    async def check(self) -> Optional[bool]:
        """Run one check. Returns None when a check is already running."""
        if self.checking:
            return None
        self.checking = True
        try:
            healthy = await self.zammad.health_check(
                timeout=settings.health_check_timeout
            )
        finally:
            self.checking = False

        if healthy:
            if self.alert_sent:
                logger.info("✓ Zammad reachable again")
                await self._announce("ok", RECOVERY_MESSAGE)
            self.failure_count = 0
            self.alert_sent = False
            return True

        self.failure_count += 1
        logger.warning(
            f"Zammad health check failed ({self.failure_count} in a row)"
        )
        if self.failure_count >= self.threshold and not self.alert_sent:
            logger.error("✗ Zammad unreachable, alerting")
            await self._announce("down", ALERT_MESSAGE)
            self.alert_sent = True
        return False

    async def _announce(self, status: str, message: str) -> None:
        try:
            await self.discord.set_presence(status)
        except (DiscordAPIError, httpx.HTTPError) as e:
            logger.error(f"Failed to set presence {status}: {e}")
        try:
            await self.discord.send_message(self.channel_id, content=message)
        except (DiscordAPIError, httpx.HTTPError) as e:
            logger.error(f"Failed to post health notice: {e}")
