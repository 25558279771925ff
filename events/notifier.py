"""
Discord-style webhook notifications for finished mints.
"""

import asyncio

import aiohttp

from config.config import HTTP_TIMEOUT
from events.event_bus import Event, EventBus, EventTypes
from log_utils import get_logger

logger = get_logger(__name__)


class WebhookNotifier:
    def __init__(self, url: str, username: str = "Mint Bot", timeout: float = HTTP_TIMEOUT):
        self.url = url
        self.username = username
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def send(self, content: str) -> bool:
        """POST one message. Delivery problems are logged and reported as False."""
        if not self.enabled:
            return False
        payload = {"content": content, "username": self.username}
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                async with session.post(self.url, json=payload) as resp:
                    status = resp.status
                    body = await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Webhook delivery failed: {str(e) or type(e).__name__}")
            return False

        if status not in (200, 204):
            logger.warning(f"Webhook returned status {status}: {body[:200]}")
            return False
        return True

    async def on_mint_finalized(self, event: Event):
        name = event.data.get("asset_name", "?")
        await self.send(f"Minted NFT: {name}")

    def register(self, bus: EventBus):
        if not self.enabled:
            logger.info("DISCORD_WEBHOOK_URL not set; notifications disabled")
            return
        bus.subscribe(EventTypes.MINT_FINALIZED, self.on_mint_finalized)
