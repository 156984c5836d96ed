"""
AnimeciX source.

Series are identified by numeric title ids. Episodes are listed per season via
the related-videos endpoint; each episode's ``url`` is an embed path that
redirects to the video player, whose API returns the label/url ladder.
Turkish subtitles live on a separate endpoint and are looked up by season and
the episode's offset inside that season.
"""

from typing import Any, List, Optional, Tuple
from urllib.parse import parse_qs, quote, urljoin, urlparse

from .base import HttpSource, dig, normalize_number, stream_options
from ..config import ANIMECIX_ALT_URL, ANIMECIX_BASE_URL, ANIMECIX_PLAYER_API_URL
from ..core.errors import TransientFetchError
from ..database.models import Episode, EpisodeExtra, SeasonInfo, Series, StreamSet
from ..utils.format_utils import parse_episode_number
from ..utils.logger import get_logger

logger = get_logger(__name__)

# The related-videos endpoint needs some video id; any valid one returns the whole title.
_ANCHOR_VIDEO_ID = 637113
SUBTITLE_LANGUAGE = "tr"


def parse_search_results(payload: Any) -> List[Series]:
    results = []
    for item in dig(payload, "results", default=[]):
        if not isinstance(item, dict) or item.get("id") is None:
            continue
        results.append(_series_from_title(item))
    return results


def parse_title(payload: Any) -> Optional[Series]:
    title = dig(payload, "title")
    if not isinstance(title, dict) or title.get("id") is None:
        return None
    return _series_from_title(title)


def _series_from_title(item: dict) -> Series:
    title_type = str(item.get("title_type") or item.get("type") or "").lower()
    return Series(
        id=str(item["id"]),
        name=item.get("name") or item.get("original_title") or str(item["id"]),
        poster_url=item.get("poster"),
        is_movie=title_type == "movie",
    )


def parse_season_count(payload: Any) -> int:
    seasons = dig(payload, "videos", 0, "title", "seasons", default=[])
    return len(seasons) if isinstance(seasons, list) else 0


def parse_episodes(payload: Any, season_number: int) -> List[Episode]:
    episodes = []
    for video in dig(payload, "videos", default=[]):
        if not isinstance(video, dict) or not video.get("url"):
            continue
        title = video.get("name") or ""
        season = normalize_number(video.get("season_num"), default=season_number)
        number = normalize_number(video.get("episode_num"))
        if number is None:
            number = parse_episode_number(title) or len(episodes) + 1
        episodes.append(Episode(
            title=title,
            season=int(season),
            number=number,
            locator=video["url"],
            extra=EpisodeExtra(season_num=int(season), episode_num=number),
        ))
    return episodes


def parse_caption(payload: Any, episode_idx: int, language: str = SUBTITLE_LANGUAGE) -> Optional[str]:
    captions = dig(payload, "videos", episode_idx, "captions", default=[])
    return _pick_caption(captions, language)


def _pick_caption(captions: Any, language: str) -> Optional[str]:
    for caption in captions or []:
        if isinstance(caption, dict) and str(caption.get("language", "")).lower() == language and caption.get("url"):
            return caption["url"]
    return None


def parse_embed_target(url: str) -> Tuple[str, str]:
    """Split the player URL an embed redirect lands on into (embed id, vid)."""
    parsed = urlparse(url)
    parts = [p for p in parsed.path.split("/") if p]
    vid = parse_qs(parsed.query).get("vid", [""])[0]
    if len(parts) < 2 or not vid:
        raise TransientFetchError(f"Unexpected AnimeciX player URL: {url}")
    return parts[1], vid


class AnimeCixSource(HttpSource):
    name = "animecix"
    display_name = "AnimeciX"

    def __init__(self, client=None, base_url: str = ANIMECIX_BASE_URL,
                 alt_url: str = ANIMECIX_ALT_URL, player_api_url: str = ANIMECIX_PLAYER_API_URL):
        super().__init__(client)
        self.base_url = base_url
        self.alt_url = alt_url
        self.player_api_url = player_api_url

    def _related_videos_url(self, series_id: str, season_number: int) -> str:
        return (f"{self.alt_url}secure/related-videos?episode=1&season={season_number}"
                f"&titleId={series_id}&videoId={_ANCHOR_VIDEO_ID}")

    async def search(self, query: str) -> List[Series]:
        payload = await self._get_json(f"{self.base_url}secure/search/{quote(query)}",
                                       params={"type": "", "limit": 20})
        return parse_search_results(payload)

    async def get_series(self, series_id: str) -> Series:
        payload = await self._get_json(f"{self.base_url}secure/titles/{series_id}",
                                       params={"titleId": series_id})
        series = parse_title(payload)
        if series is None:
            raise TransientFetchError(f"AnimeciX has no title with id {series_id}")
        return series

    async def list_seasons(self, series: Series) -> List[SeasonInfo]:
        payload = await self._get_json(self._related_videos_url(series.id, 1))
        return [SeasonInfo(number=i + 1) for i in range(parse_season_count(payload))]

    async def list_episodes(self, series: Series) -> List[Episode]:
        seasons = await self.list_seasons(series)
        episodes: List[Episode] = []
        seen = set()
        for season in seasons:
            payload = await self._get_json(self._related_videos_url(series.id, season.number))
            for episode in parse_episodes(payload, season.number):
                # Neighbouring seasons sometimes repeat the same videos.
                if episode.title in seen:
                    continue
                seen.add(episode.title)
                episodes.append(episode)
        logger.debug(f"AnimeciX: {len(episodes)} episodes across {len(seasons)} seasons for {series.name}")
        return episodes

    async def _streams_for_embed(self, embed_path: str) -> StreamSet:
        response = await self._get(urljoin(self.base_url, embed_path.lstrip("/")))
        embed_id, vid = parse_embed_target(str(response.url))
        payload = await self._get_json(f"{self.player_api_url}{embed_id}", params={"vid": vid})
        return StreamSet(options=stream_options(dig(payload, "urls", default=[])))

    async def get_episode_streams(self, series: Series, episode: Episode) -> StreamSet:
        return await self._streams_for_embed(episode.locator)

    async def get_episode_subtitle(self, series: Series, season_idx: int,
                                   season_episode_idx: int) -> Optional[str]:
        payload = await self._get_json(self._related_videos_url(series.id, season_idx + 1))
        return parse_caption(payload, season_episode_idx)

    async def get_movie_streams(self, series: Series) -> StreamSet:
        payload = await self._get_json(f"{self.base_url}secure/titles/{series.id}",
                                       params={"titleId": series.id})
        video = dig(payload, "title", "videos", 0)
        if not isinstance(video, dict) or not video.get("url"):
            return StreamSet()
        streams = await self._streams_for_embed(video["url"])
        return StreamSet(options=streams.options,
                         subtitle_url=_pick_caption(video.get("captions"), SUBTITLE_LANGUAGE))
