from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Tuple, Union

EpisodeNumber = Union[int, float]


@dataclass(frozen=True)
class Series:
    id: str  # numeric id or slug, depending on the source
    name: str
    poster_url: Optional[str] = None
    is_movie: bool = False


@dataclass(frozen=True)
class SeasonInfo:
    number: int  # 1-based
    name: str = ""
    is_movie: bool = False


@dataclass(frozen=True)
class Fansub:
    id: str
    name: str


@dataclass(frozen=True)
class EpisodeExtra:
    """Source-specific numbering, resolved once when the episode list is ingested."""
    season_num: int = 1
    episode_num: Optional[EpisodeNumber] = None
    fansubs: Tuple[Fansub, ...] = ()


@dataclass(frozen=True)
class Episode:
    title: str
    season: int  # 1-based
    number: EpisodeNumber  # 1-based, fractional for specials
    locator: str  # opaque per-source handle used to request streams
    extra: EpisodeExtra = field(default_factory=EpisodeExtra)

    @property
    def season_index(self) -> int:
        return self.season - 1


@dataclass(frozen=True)
class StreamOption:
    label: str
    url: str


@dataclass(frozen=True)
class StreamSet:
    """Raw adapter answer for one episode or movie, before normalization."""
    options: Tuple[StreamOption, ...] = ()
    subtitle_url: Optional[str] = None


@dataclass(frozen=True)
class QualityLadder:
    options: Tuple[StreamOption, ...]
    subtitle_url: str = ""

    def __len__(self):
        return len(self.options)

    @property
    def labels(self) -> List[str]:
        return [o.label for o in self.options]

    @property
    def urls(self) -> List[str]:
        return [o.url for o in self.options]

    def index_of(self, label: str) -> int:
        for i, option in enumerate(self.options):
            if option.label == label:
                return i
        return -1


def _local_now() -> datetime:
    return datetime.now().astimezone()


@dataclass
class HistoryEntry:
    last_episode_idx: int
    last_episode_name: str
    series_id: str
    last_watched: datetime = field(default_factory=_local_now)

    def __post_init__(self):
        # Naive timestamps are taken as local time so entries always compare.
        if self.last_watched.tzinfo is None:
            self.last_watched = self.last_watched.astimezone()

    def to_dict(self) -> dict:
        return {
            "lastEpisodeIdx": self.last_episode_idx,
            "lastEpisodeName": self.last_episode_name,
            "seriesId": self.series_id,
            "lastWatchedAt": self.last_watched.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Optional["HistoryEntry"]:
        """Returns None for entries missing any field (older or hand-edited files)."""
        idx = data.get("lastEpisodeIdx")
        name = data.get("lastEpisodeName")
        series_id = data.get("seriesId")
        watched = data.get("lastWatchedAt")
        if idx is None or name is None or series_id is None or not watched:
            return None
        try:
            # fromisoformat only accepts a "Z" suffix from Python 3.11 on.
            if isinstance(watched, str) and watched.endswith("Z"):
                watched = watched[:-1] + "+00:00"
            last_watched = datetime.fromisoformat(watched)
            idx = int(idx)
        except (TypeError, ValueError):
            return None
        return cls(
            last_episode_idx=idx,
            last_episode_name=str(name),
            series_id=str(series_id),
            last_watched=last_watched,
        )
