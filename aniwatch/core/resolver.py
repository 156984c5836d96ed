import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from .errors import InvalidSelectionError, NoStreamsError, ResolutionError, TransientFetchError
from ..database.models import Episode, Fansub, QualityLadder, Series, StreamOption, StreamSet
from ..sources.base import AnimeSource
from ..utils.logger import get_logger

logger = get_logger(__name__)

_TRAILING_UNIT = re.compile(r'\D+$')
_LEADING_DIGITS = re.compile(r'^\d+')


def resolution_value(label: str) -> int:
    """'1080p' -> 1080. Labels without a leading number ('Auto') rank as 0."""
    match = _LEADING_DIGITS.match(_TRAILING_UNIT.sub("", (label or "").strip()))
    return int(match.group(0)) if match else 0


def sort_ladder(options: Iterable[StreamOption]) -> Tuple[StreamOption, ...]:
    """Deduplicate by label (first wins) and order by resolution, highest first."""
    unique = []
    seen = set()
    for option in options:
        if option.label in seen:
            continue
        seen.add(option.label)
        unique.append(option)
    # sorted() is stable even with reverse=True, so ties keep source order.
    return tuple(sorted(unique, key=lambda o: resolution_value(o.label), reverse=True))


def season_episode_offset(episodes: Sequence[Episode], index: int, season_idx: int) -> int:
    """Position of episodes[index] inside its season, counted from the episodes before it."""
    return sum(1 for episode in episodes[:index] if episode.season_index == season_idx)


@dataclass
class Resolution:
    ladder: Optional[QualityLadder]
    fansubs: Optional[List[Fansub]] = None


class StreamResolver:
    """Turns a source's per-episode answer into a sorted quality ladder."""

    def __init__(self, source: AnimeSource):
        self.source = source

    async def resolve(self, series: Series, episodes: Sequence[Episode], index: int,
                      season_idx: int, is_movie: bool = False,
                      fansub_idx: Optional[int] = None) -> Resolution:
        """
        Fetch and normalize the ladder for ``episodes[index]``.

        For fansub-capable sources the fansub list is always returned alongside
        the ladder. With ``fansub_idx=None`` only the list is fetched and
        ``ladder`` is None; the caller has to pick a fansub first.

        Raises ResolutionError on adapter failures, NoStreamsError on an empty
        answer and InvalidSelectionError for an out-of-range index.
        """
        if not 0 <= index < len(episodes):
            raise InvalidSelectionError(f"Episode index {index} is out of range")
        episode = episodes[index]

        fansubs = None
        subtitle_url = None
        try:
            if self.source.supports_fansubs:
                fansubs = await self.source.list_fansubs(series, episode)
                if fansub_idx is None:
                    return Resolution(ladder=None, fansubs=fansubs)
                if not fansubs:
                    raise NoStreamsError(f"No fansub has released {episode.title}")
                if not 0 <= fansub_idx < len(fansubs):
                    raise InvalidSelectionError(f"Fansub index {fansub_idx} is out of range")
                streams = await self.source.get_fansub_streams(series, episode, fansubs[fansub_idx])
            elif is_movie:
                streams = await self.source.get_movie_streams(series)
            else:
                streams = await self.source.get_episode_streams(series, episode)
                subtitle_url = await self._episode_subtitle(series, episodes, index, season_idx)
        except ResolutionError:
            raise
        except TransientFetchError as e:
            raise ResolutionError(f"Could not load streams for {episode.title}: {e}") from e

        ladder = self._build_ladder(streams, subtitle_url)
        logger.debug(f"Resolved {len(ladder)} streams for {series.name} / {episode.title}: {ladder.labels}")
        return Resolution(ladder=ladder, fansubs=fansubs)

    async def _episode_subtitle(self, series: Series, episodes: Sequence[Episode],
                                index: int, season_idx: int) -> str:
        offset = season_episode_offset(episodes, index, season_idx)
        try:
            return await self.source.get_episode_subtitle(series, season_idx, offset) or ""
        except TransientFetchError as e:
            logger.warning(f"Subtitle lookup failed for {series.name} S{season_idx + 1} #{offset}: {e}")
            return ""

    @staticmethod
    def _build_ladder(streams: StreamSet, subtitle_url: Optional[str]) -> QualityLadder:
        options = sort_ladder(streams.options)
        if not options:
            raise NoStreamsError("The source returned no playable streams")
        return QualityLadder(options=options, subtitle_url=streams.subtitle_url or subtitle_url or "")
