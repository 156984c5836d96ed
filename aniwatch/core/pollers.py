import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .errors import HistoryStoreError, IPCError, PresenceError
from .player import PlayerHandle
from .presence import PresenceClient, PresenceImages
from ..config import FINISH_THRESHOLD, HISTORY_POLL_INTERVAL, PRESENCE_POLL_INTERVAL
from ..database.history import HistoryStore
from ..database.models import HistoryEntry
from ..utils.format_utils import format_progress
from ..utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class NowPlaying:
    source: str
    series_name: str
    series_id: str
    episode_idx: int
    episode_title: str


class PlaybackPoller:
    """
    Periodic task bound to one player's lifetime.

    Each loop waits on either its interval or the shared stop event, so it exits
    within one interval of the player going away even if its own liveness
    check has not caught up.
    """

    name = "poller"

    def __init__(self, player: PlayerHandle, stop: asyncio.Event, interval: float):
        self.player = player
        self._stop = stop
        self.interval = interval
        self.ticks = 0

    async def run(self):
        logger.debug(f"{self.name} started (every {self.interval}s)")
        try:
            while not await self._wait_next_tick():
                self.ticks += 1
                if not await self.tick():
                    logger.debug(f"{self.name}: player is gone, stopping")
                    break
        finally:
            await self.on_stop()
            logger.debug(f"{self.name} stopped after {self.ticks} ticks")

    async def _wait_next_tick(self) -> bool:
        """True when the stop event fired before the interval elapsed."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            return True
        except asyncio.TimeoutError:
            return False

    async def tick(self) -> bool:
        """Return False to stop polling."""
        raise NotImplementedError

    async def on_stop(self):
        pass


class HistoryPoller(PlaybackPoller):
    """Writes one history entry once playback reaches the last few minutes."""

    name = "history-poller"

    def __init__(self, player: PlayerHandle, stop: asyncio.Event, store: HistoryStore,
                 now_playing: NowPlaying, interval: float = HISTORY_POLL_INTERVAL,
                 threshold: float = FINISH_THRESHOLD):
        super().__init__(player, stop, interval)
        self.store = store
        self.now_playing = now_playing
        self.threshold = threshold
        self.committed = False
        self.pending = False

    async def tick(self) -> bool:
        if not await self.player.is_alive():
            return False
        if self.committed:
            return True

        try:
            duration = await self.player.get_duration()
            position = await self.player.get_position()
        except IPCError as e:
            logger.debug(f"{self.name}: skipping tick, {e}")
            return True
        if duration is None or position is None or duration <= 0:
            return True

        if position >= duration - self.threshold:
            self.pending = True
            await self._commit()
        return True

    async def _commit(self):
        np = self.now_playing
        entry = HistoryEntry(
            last_episode_idx=np.episode_idx,
            last_episode_name=np.episode_title,
            series_id=np.series_id,
            last_watched=datetime.now().astimezone(),
        )
        try:
            await self.store.record(np.source, np.series_name, entry)
        except HistoryStoreError as e:
            logger.error(f"Could not save watch history, will retry: {e}")
            return
        self.committed = True
        self.pending = False

    async def on_stop(self):
        # The threshold was reached but the write failed; last chance.
        if self.pending and not self.committed:
            await self._commit()


class PresencePoller(PlaybackPoller):
    """Pushes the current episode and elapsed time to the presence service."""

    name = "presence-poller"

    def __init__(self, player: PlayerHandle, stop: asyncio.Event, presence: PresenceClient,
                 now_playing: NowPlaying, images: PresenceImages,
                 started_at: Optional[float] = None, interval: float = PRESENCE_POLL_INTERVAL):
        super().__init__(player, stop, interval)
        self.presence = presence
        self.now_playing = now_playing
        self.images = images
        self.started_at = started_at
        self.last_state: Optional[str] = None

    async def tick(self) -> bool:
        if not await self.player.is_alive():
            return False

        try:
            paused = await self.player.is_paused()
            duration = await self.player.get_duration()
            position = await self.player.get_position()
        except IPCError as e:
            logger.debug(f"{self.name}: skipping tick, {e}")
            return True
        if duration is None or position is None:
            return True

        state = f"{self.now_playing.episode_title} ({format_progress(position, duration, paused)})"
        try:
            await self.presence.set_status(
                details=self.now_playing.series_name,
                state=state,
                images=self.images,
                timestamp_start=self.started_at,
            )
            self.last_state = state
        except PresenceError as e:
            logger.warning(f"Presence update failed, retrying next tick: {e}")
        return True

    async def on_stop(self):
        await self.presence.logout()
