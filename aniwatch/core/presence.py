import time
from dataclasses import dataclass
from typing import Optional

from pypresence import AioPresence

from .errors import PresenceError
from ..config import (DISCORD_CLIENT_ID, PRESENCE_BUTTON_LABEL, PRESENCE_BUTTON_URL,
                      PRESENCE_FALLBACK_IMAGE)
from ..utils.format_utils import is_image_url
from ..utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PresenceImages:
    large_image: str
    large_text: str
    small_image: Optional[str] = None
    small_text: Optional[str] = None

    @classmethod
    def for_series(cls, series_name: str, poster_url: Optional[str], source_name: str) -> "PresenceImages":
        return cls(
            large_image=poster_url if is_image_url(poster_url) else PRESENCE_FALLBACK_IMAGE,
            large_text=series_name,
            small_image=source_name.lower(),
            small_text=source_name,
        )


class PresenceClient:
    """
    Owned handle to the Discord client. Connects on first use and reconnects
    once when an update fails; callers never see the connection state.
    """

    def __init__(self, client_id: str = DISCORD_CLIENT_ID,
                 button_label: str = PRESENCE_BUTTON_LABEL,
                 button_url: str = PRESENCE_BUTTON_URL):
        self.client_id = client_id
        self.rpc = None
        self.connected = False
        self.buttons = [{"label": button_label, "url": button_url}] if button_label and button_url else None

    async def connect(self):
        if self.connected:
            return
        try:
            self.rpc = AioPresence(self.client_id)
            await self.rpc.connect()
            self.connected = True
            logger.debug("Connected to Discord")
        except Exception as e:
            self.rpc = None
            self.connected = False
            raise PresenceError(f"Could not connect to Discord: {e}") from e

    async def _update(self, details: str, state: str, images: PresenceImages, start: Optional[int]):
        await self.rpc.update(
            details=details,
            state=state,
            large_image=images.large_image,
            large_text=images.large_text,
            small_image=images.small_image,
            small_text=images.small_text,
            start=start,
            buttons=self.buttons,
        )

    async def set_status(self, details: str, state: str, images: PresenceImages,
                         timestamp_start: Optional[float] = None):
        start = int(timestamp_start) if timestamp_start else int(time.time())
        await self.connect()
        try:
            await self._update(details, state, images, start)
            return
        except Exception as e:
            logger.debug(f"Presence update failed, reconnecting: {e}")
            self.connected = False

        await self.connect()
        try:
            await self._update(details, state, images, start)
        except Exception as e:
            self.connected = False
            raise PresenceError(f"Discord rejected the presence update: {e}") from e

    async def logout(self):
        """Clear the activity and drop the connection. Safe to call repeatedly."""
        if self.connected and self.rpc:
            try:
                await self.rpc.clear()
            except Exception as e:
                logger.debug(f"Could not clear Discord presence: {e}")
        self.rpc = None
        self.connected = False
