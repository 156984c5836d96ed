import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

from .errors import (BoundaryReached, HistoryStoreError, InvalidSelectionError, LaunchFailure,
                     NoEpisodesError, SessionError)
from .player import PlayerHandle, PlayerSupervisor
from .pollers import HistoryPoller, NowPlaying, PresencePoller
from .presence import PresenceClient, PresenceImages
from .resolver import StreamResolver
from ..config import FINISH_THRESHOLD, HISTORY_POLL_INTERVAL, PRESENCE_POLL_INTERVAL
from ..database.history import HistoryStore
from ..database.models import Episode, EpisodeExtra, Fansub, HistoryEntry, QualityLadder, Series, StreamOption
from ..sources.base import AnimeSource
from ..utils.logger import get_logger

logger = get_logger(__name__)

# How long a player whose control socket stopped answering gets to exit on its own.
EXIT_GRACE_PERIOD = 5.0


class SessionState(Enum):
    BROWSING = "browsing"
    RESOLUTION_PENDING = "resolution_pending"
    PLAYING = "playing"
    EXITED = "exited"


# Commands

@dataclass(frozen=True)
class SelectEpisode:
    index: int


@dataclass(frozen=True)
class NextEpisode:
    pass


@dataclass(frozen=True)
class PreviousEpisode:
    pass


@dataclass(frozen=True)
class SelectFansub:
    index: int


@dataclass(frozen=True)
class ShowFansubs:
    pass


@dataclass(frozen=True)
class SelectResolution:
    label: str


@dataclass(frozen=True)
class ShowResolutions:
    pass


@dataclass(frozen=True)
class Play:
    pass


@dataclass(frozen=True)
class SwitchSource:
    source: AnimeSource
    series: Optional[Series] = None


@dataclass(frozen=True)
class Quit:
    pass


@dataclass
class DispatchResult:
    hint: str = ""
    error: Optional[SessionError] = None
    options: List[str] = field(default_factory=list)
    switch_to: Optional[SwitchSource] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def resume_index(entry: Optional[HistoryEntry], episode_count: int) -> int:
    """The episode after the last finished one, or the first episode."""
    if entry is None or entry.last_episode_idx < 0:
        return 0
    next_idx = entry.last_episode_idx + 1
    return next_idx if next_idx < episode_count else 0


def movie_episode(series: Series) -> Episode:
    return Episode(title=series.name, season=1, number=1, locator=series.id,
                   extra=EpisodeExtra(season_num=1, episode_num=1))


class WatchSession:
    """
    Navigation and playback state for one series on one source.

    Commands run one at a time. ``play`` blocks until the player exits; while it
    runs, the history and presence pollers are the only other activity.
    """

    def __init__(self, source: AnimeSource, series: Series, episodes: List[Episode],
                 is_movie: bool = False,
                 history_entry: Optional[HistoryEntry] = None,
                 supervisor: Optional[PlayerSupervisor] = None,
                 history_store: Optional[HistoryStore] = None,
                 presence: Optional[PresenceClient] = None,
                 started_at: Optional[float] = None,
                 history_interval: float = HISTORY_POLL_INTERVAL,
                 presence_interval: float = PRESENCE_POLL_INTERVAL,
                 finish_threshold: float = FINISH_THRESHOLD,
                 exit_grace: float = EXIT_GRACE_PERIOD):
        if not episodes:
            raise NoEpisodesError(f"{series.name} has no episodes")
        self.source = source
        self.series = series
        self.episodes = list(episodes)
        self.is_movie = is_movie
        self.resolver = StreamResolver(source)
        self.supervisor = supervisor
        self.history_store = history_store
        self.presence = presence
        self.started_at = started_at or time.time()
        self.history_interval = history_interval
        self.presence_interval = presence_interval
        self.finish_threshold = finish_threshold
        self.exit_grace = exit_grace

        self.state = SessionState.BROWSING
        self.selected_episode_idx = resume_index(history_entry, len(self.episodes))
        self.selected_season_idx = self.episodes[self.selected_episode_idx].season_index
        self.selected_fansub_idx: Optional[int] = 0 if source.supports_fansubs else None
        self.selected_resolution: Optional[str] = None
        self.ladder: Optional[QualityLadder] = None
        self.ladder_stale = True
        self.fansubs: Optional[List[Fansub]] = None
        self.last_exit_code: Optional[int] = None

        self._handlers = {
            SelectEpisode: self._on_select_episode,
            NextEpisode: self._on_next,
            PreviousEpisode: self._on_previous,
            SelectFansub: self._on_select_fansub,
            ShowFansubs: self._on_show_fansubs,
            SelectResolution: self._on_select_resolution,
            ShowResolutions: self._on_show_resolutions,
            Play: self._on_play,
            SwitchSource: self._on_switch_source,
            Quit: self._on_quit,
        }

    # Read-only views

    @property
    def current_episode(self) -> Episode:
        return self.episodes[self.selected_episode_idx]

    @property
    def episode_titles(self) -> List[str]:
        return [e.title for e in self.episodes]

    @property
    def selected_resolution_idx(self) -> int:
        if self.ladder is None or self.selected_resolution is None:
            return 0
        return max(self.ladder.index_of(self.selected_resolution), 0)

    @property
    def player_title(self) -> str:
        if self.is_movie:
            return self.series.name
        return f"{self.series.name} - {self.current_episode.title}"

    # Dispatch

    async def dispatch(self, command: Any) -> DispatchResult:
        handler = self._handlers.get(type(command))
        if handler is None:
            return DispatchResult(error=InvalidSelectionError(f"Unknown command: {command!r}"))
        try:
            return await handler(command)
        except SessionError as e:
            logger.info(f"{type(command).__name__} rejected: {e}")
            return DispatchResult(hint=str(e), error=e)

    async def _on_select_episode(self, command: SelectEpisode) -> DispatchResult:
        self.select_episode(command.index)
        return DispatchResult(hint=f"Selected: {self.current_episode.title}")

    async def _on_next(self, command: NextEpisode) -> DispatchResult:
        self.next_episode()
        return DispatchResult(hint=f"Selected: {self.current_episode.title}")

    async def _on_previous(self, command: PreviousEpisode) -> DispatchResult:
        self.previous_episode()
        return DispatchResult(hint=f"Selected: {self.current_episode.title}")

    async def _on_select_fansub(self, command: SelectFansub) -> DispatchResult:
        fansub = await self.select_fansub(command.index)
        return DispatchResult(hint=f"Fansub: {fansub.name}")

    async def _on_show_fansubs(self, command: ShowFansubs) -> DispatchResult:
        fansubs = await self.fansub_options()
        return DispatchResult(hint="Choose a fansub", options=[f.name for f in fansubs])

    async def _on_select_resolution(self, command: SelectResolution) -> DispatchResult:
        await self.select_resolution(command.label)
        return DispatchResult(hint=f"Resolution: {command.label}")

    async def _on_show_resolutions(self, command: ShowResolutions) -> DispatchResult:
        labels = await self.resolution_options()
        return DispatchResult(hint="Choose a resolution", options=labels)

    async def _on_play(self, command: Play) -> DispatchResult:
        return DispatchResult(hint=await self.play())

    async def _on_switch_source(self, command: SwitchSource) -> DispatchResult:
        self.switch_source()
        return DispatchResult(hint=f"Switching to {command.source.display_name}", switch_to=command)

    async def _on_quit(self, command: Quit) -> DispatchResult:
        self._require_browsing()
        self.state = SessionState.EXITED
        return DispatchResult(hint="Bye")

    # Transitions

    def _require_browsing(self):
        if self.state is SessionState.EXITED:
            raise InvalidSelectionError("This session has ended")
        if self.state is not SessionState.BROWSING:
            raise InvalidSelectionError("Wait for the current playback to finish")

    def _set_episode(self, index: int):
        if index == self.selected_episode_idx:
            return
        self.selected_episode_idx = index
        self.selected_season_idx = self.episodes[index].season_index
        self.ladder_stale = True
        self.fansubs = None

    def select_episode(self, index: int):
        self._require_browsing()
        if not 0 <= index < len(self.episodes):
            raise InvalidSelectionError(f"No episode #{index + 1}; this series has {len(self.episodes)}")
        self._set_episode(index)

    def next_episode(self):
        self._require_browsing()
        if self.selected_episode_idx + 1 >= len(self.episodes):
            raise BoundaryReached("Already at the last episode")
        self._set_episode(self.selected_episode_idx + 1)

    def previous_episode(self):
        self._require_browsing()
        if self.selected_episode_idx <= 0:
            raise BoundaryReached("Already at the first episode")
        self._set_episode(self.selected_episode_idx - 1)

    async def fansub_options(self) -> List[Fansub]:
        self._require_browsing()
        if not self.source.supports_fansubs:
            raise InvalidSelectionError(f"{self.source.display_name} does not offer fansub selection")
        if self.fansubs is None:
            resolution = await self.resolver.resolve(
                self.series, self.episodes, self.selected_episode_idx,
                self.selected_season_idx, self.is_movie, fansub_idx=None,
            )
            self.fansubs = resolution.fansubs or []
        return self.fansubs

    async def select_fansub(self, index: int) -> Fansub:
        fansubs = await self.fansub_options()
        if not 0 <= index < len(fansubs):
            raise InvalidSelectionError(f"No fansub #{index + 1}; {len(fansubs)} available")
        if index != self.selected_fansub_idx:
            self.selected_fansub_idx = index
            self.ladder_stale = True
        return fansubs[index]

    async def ensure_ladder(self) -> QualityLadder:
        """Current ladder, rebuilt if the episode or fansub changed since it was fetched."""
        if self.ladder is not None and not self.ladder_stale:
            return self.ladder
        resolution = await self.resolver.resolve(
            self.series, self.episodes, self.selected_episode_idx,
            self.selected_season_idx, self.is_movie, fansub_idx=self.selected_fansub_idx,
        )
        # Only a complete answer replaces the previous ladder.
        self.ladder = resolution.ladder
        self.ladder_stale = False
        if resolution.fansubs is not None:
            self.fansubs = resolution.fansubs
        return self.ladder

    async def resolution_options(self) -> List[str]:
        self._require_browsing()
        self.state = SessionState.RESOLUTION_PENDING
        try:
            ladder = await self.ensure_ladder()
        finally:
            self.state = SessionState.BROWSING
        return ladder.labels

    async def select_resolution(self, label: str):
        labels = await self.resolution_options()
        if label not in labels:
            raise InvalidSelectionError(f"Invalid resolution: {label}")
        self.selected_resolution = label

    def _pick_stream(self, ladder: QualityLadder) -> StreamOption:
        idx = ladder.index_of(self.selected_resolution) if self.selected_resolution else -1
        if idx < 0:
            idx = 0
        option = ladder.options[idx]
        self.selected_resolution = option.label
        return option

    def switch_source(self):
        self._require_browsing()
        self.state = SessionState.EXITED

    async def play(self) -> str:
        self._require_browsing()
        if self.supervisor is None:
            raise LaunchFailure("No player is configured")

        self.state = SessionState.RESOLUTION_PENDING
        try:
            ladder = await self.ensure_ladder()
            option = self._pick_stream(ladder)
            handle = await self.supervisor.launch(option.url, ladder.subtitle_url or None, self.player_title)
        except Exception:
            self.state = SessionState.BROWSING
            raise

        self.state = SessionState.PLAYING
        logger.info(f"Playing {self.player_title} [{option.label}]")
        history_poller = None
        try:
            history_poller = await self._supervise(handle)
        finally:
            self._player_exited(handle)

        hint = f"Finished: {self.player_title}"
        if history_poller is not None and history_poller.committed:
            hint += " (saved to history)"
        return hint

    def _now_playing(self) -> NowPlaying:
        return NowPlaying(
            source=self.source.name,
            series_name=self.series.name,
            series_id=self.series.id,
            episode_idx=self.selected_episode_idx,
            episode_title=self.current_episode.title,
        )

    async def _supervise(self, handle: PlayerHandle) -> Optional[HistoryPoller]:
        """Run the pollers until the player exits or stops answering, then stop them."""
        stop = asyncio.Event()
        now_playing = self._now_playing()
        history_poller = None
        pollers = []
        if self.history_store is not None:
            history_poller = HistoryPoller(handle, stop, self.history_store, now_playing,
                                           interval=self.history_interval, threshold=self.finish_threshold)
            pollers.append(history_poller)
        if self.presence is not None:
            images = PresenceImages.for_series(self.series.name, self.series.poster_url, self.source.display_name)
            pollers.append(PresencePoller(handle, stop, self.presence, now_playing, images,
                                          started_at=self.started_at, interval=self.presence_interval))

        poller_tasks = [asyncio.create_task(p.run(), name=p.name) for p in pollers]
        wait_task = asyncio.create_task(handle.wait(), name="player-wait")
        try:
            pending = {wait_task, *poller_tasks}
            while not wait_task.done():
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                if wait_task in done:
                    break
                if pending - {wait_task}:
                    continue
                # A crashed poller says nothing about the player; only a clean stop means liveness failed.
                if any(t.exception() is None for t in poller_tasks):
                    # Every poller saw liveness fail: the player is gone as far as we can tell.
                    logger.warning("Player stopped answering on its control socket")
                    try:
                        await asyncio.wait_for(asyncio.shield(wait_task), timeout=self.exit_grace)
                    except asyncio.TimeoutError:
                        await handle.terminate()
                    break
                logger.error("Every poller crashed; waiting for the player to exit on its own")
        finally:
            stop.set()
            results = await asyncio.gather(*poller_tasks, return_exceptions=True)
            for poller, result in zip(pollers, results):
                if isinstance(result, Exception):
                    logger.error(f"{poller.name} crashed: {result!r}")
            if not wait_task.done():
                await handle.terminate()
                wait_task.cancel()
                await asyncio.gather(wait_task, return_exceptions=True)
        return history_poller

    def _player_exited(self, handle: PlayerHandle):
        self.last_exit_code = handle.process.returncode
        if self.last_exit_code:
            logger.warning(f"Player exited with code {self.last_exit_code}")
        self.state = SessionState.BROWSING


async def new_session(source: AnimeSource, series: Series,
                      history_store: Optional[HistoryStore] = None,
                      supervisor: Optional[PlayerSupervisor] = None,
                      presence: Optional[PresenceClient] = None,
                      **kwargs) -> WatchSession:
    """Fetch episodes for ``series`` and open a session at the resume position."""
    is_movie = series.is_movie
    if not is_movie:
        seasons = await source.list_seasons(series)
        is_movie = bool(seasons) and seasons[0].is_movie

    if is_movie:
        episodes = [movie_episode(series)]
    else:
        episodes = await source.list_episodes(series)
        if not episodes:
            raise NoEpisodesError(f"No episodes found for {series.name}")

    entry = None
    if history_store is not None:
        try:
            entry = await history_store.get(source.name, series.name)
        except HistoryStoreError as e:
            logger.warning(f"Could not read watch history, starting from the first episode: {e}")

    session = WatchSession(source, series, episodes, is_movie=is_movie, history_entry=entry,
                           supervisor=supervisor, history_store=history_store,
                           presence=presence, **kwargs)
    logger.info(f"Session opened: [{source.name}] {series.name}, {len(episodes)} episodes, "
                f"starting at #{session.selected_episode_idx + 1}")
    return session
