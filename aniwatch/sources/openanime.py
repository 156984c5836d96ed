"""
OpenAnime source.

Series are identified by slugs. Every episode is released by one or more
fansub groups; the stream ladder is requested for a (season, episode, fansub)
triple and files are served from the CDN under the series slug.
"""

from typing import Any, List, Optional

from .base import HttpSource, dig, normalize_number
from ..config import OPENANIME_API_URL, OPENANIME_CDN_URL
from ..core.errors import NoStreamsError, TransientFetchError
from ..database.models import (Episode, EpisodeExtra, Fansub, SeasonInfo, Series,
                               StreamOption, StreamSet)
from ..utils.logger import get_logger

logger = get_logger(__name__)


def _display_name(item: dict) -> str:
    return (item.get("english") or item.get("turkish") or item.get("romaji")
            or item.get("name") or item.get("slug") or "")


def _poster(item: dict) -> Optional[str]:
    return dig(item, "pictures", "avatar") or dig(item, "pictures", "banner")


def parse_search_results(payload: Any) -> List[Series]:
    items = payload if isinstance(payload, list) else dig(payload, "results", default=[])
    results = []
    for item in items:
        if not isinstance(item, dict) or not item.get("slug"):
            continue
        results.append(Series(
            id=item["slug"],
            name=_display_name(item),
            poster_url=_poster(item),
            is_movie=str(item.get("type") or "").lower() == "movie",
        ))
    return results


def parse_anime(payload: Any) -> Optional[Series]:
    if not isinstance(payload, dict) or not payload.get("slug"):
        return None
    return Series(
        id=payload["slug"],
        name=_display_name(payload),
        poster_url=_poster(payload),
        is_movie=str(payload.get("type") or "").lower() == "movie",
    )


def parse_seasons(payload: Any) -> List[SeasonInfo]:
    anime_is_movie = str(dig(payload, "type", default="")).lower() == "movie"
    seasons = []
    for season in dig(payload, "seasons", default=[]):
        if not isinstance(season, dict):
            continue
        number = normalize_number(season.get("season_number"), default=len(seasons) + 1)
        seasons.append(SeasonInfo(
            number=int(number),
            name=season.get("name") or f"Season {number}",
            is_movie=bool(season.get("isMovie", anime_is_movie)),
        ))
    if not seasons:
        count = normalize_number(dig(payload, "numberOfSeasons"), default=0)
        seasons = [SeasonInfo(number=i + 1, name=f"Season {i + 1}", is_movie=anime_is_movie)
                   for i in range(int(count))]
    return seasons


def parse_season_episodes(payload: Any, slug: str, season_number: int) -> List[Episode]:
    episodes = []
    for item in dig(payload, "season", "episodes", default=None) or dig(payload, "episodes", default=[]):
        if not isinstance(item, dict):
            continue
        number = normalize_number(item.get("episodeNumber"))
        if number is None:
            continue
        title = item.get("name") or f"{season_number}. Sezon, {number}. Bölüm"
        episodes.append(Episode(
            title=title,
            season=season_number,
            number=number,
            locator=f"{slug}/{season_number}/{number}",
            extra=EpisodeExtra(season_num=season_number, episode_num=number),
        ))
    return episodes


def parse_fansubs(payload: Any) -> List[Fansub]:
    fansubs = []
    for item in dig(payload, "fansubs", default=[]):
        if not isinstance(item, dict) or item.get("id") is None:
            continue
        fansubs.append(Fansub(id=str(item["id"]), name=item.get("name") or str(item["id"])))
    return fansubs


def parse_watch_files(payload: Any, slug: str, season_number: int, cdn_url: str = OPENANIME_CDN_URL) -> StreamSet:
    options = []
    for item in dig(payload, "episodeData", "files", default=[]):
        if not isinstance(item, dict) or not item.get("file"):
            continue
        resolution = item.get("resolution")
        label = f"{resolution}p" if resolution else "Auto"
        options.append(StreamOption(label=label, url=f"{cdn_url}animes/{slug}/{season_number}/{item['file']}"))
    subtitle = dig(payload, "episodeData", "caption", "tr") or dig(payload, "caption", "tr")
    return StreamSet(options=tuple(options), subtitle_url=subtitle)


class OpenAnimeSource(HttpSource):
    name = "openanime"
    display_name = "OpenAnime"
    supports_fansubs = True

    def __init__(self, client=None, api_url: str = OPENANIME_API_URL, cdn_url: str = OPENANIME_CDN_URL):
        super().__init__(client)
        self.api_url = api_url
        self.cdn_url = cdn_url

    def _episode_url(self, slug: str, season_num, episode_num) -> str:
        return f"{self.api_url}anime/{slug}/season/{season_num}/episode/{episode_num}"

    async def search(self, query: str) -> List[Series]:
        payload = await self._get_json(f"{self.api_url}anime/search", params={"q": query})
        return parse_search_results(payload)

    async def get_series(self, series_id: str) -> Series:
        series = parse_anime(await self._get_json(f"{self.api_url}anime/{series_id}"))
        if series is None:
            raise TransientFetchError(f"OpenAnime has no anime with slug {series_id}")
        return series

    async def list_seasons(self, series: Series) -> List[SeasonInfo]:
        return parse_seasons(await self._get_json(f"{self.api_url}anime/{series.id}"))

    async def list_episodes(self, series: Series) -> List[Episode]:
        episodes: List[Episode] = []
        for season in await self.list_seasons(series):
            payload = await self._get_json(f"{self.api_url}anime/{series.id}/season/{season.number}")
            episodes.extend(parse_season_episodes(payload, series.id, season.number))
        return episodes

    async def list_fansubs(self, series: Series, episode: Episode) -> List[Fansub]:
        episode_num = episode.extra.episode_num if episode.extra.episode_num is not None else episode.number
        payload = await self._get_json(self._episode_url(series.id, episode.extra.season_num, episode_num))
        return parse_fansubs(payload)

    async def get_fansub_streams(self, series: Series, episode: Episode, fansub: Fansub) -> StreamSet:
        episode_num = episode.extra.episode_num if episode.extra.episode_num is not None else episode.number
        payload = await self._get_json(self._episode_url(series.id, episode.extra.season_num, episode_num),
                                       params={"fansub": fansub.id})
        return parse_watch_files(payload, series.id, episode.extra.season_num, self.cdn_url)

    async def _first_fansub_streams(self, series: Series, episode: Episode) -> StreamSet:
        fansubs = await self.list_fansubs(series, episode)
        if not fansubs:
            raise NoStreamsError(f"No fansub has released {episode.title}")
        return await self.get_fansub_streams(series, episode, fansubs[0])

    async def get_episode_streams(self, series: Series, episode: Episode) -> StreamSet:
        return await self._first_fansub_streams(series, episode)

    async def get_movie_streams(self, series: Series) -> StreamSet:
        movie = Episode(title=series.name, season=1, number=1, locator=f"{series.id}/1/1",
                        extra=EpisodeExtra(season_num=1, episode_num=1))
        return await self._first_fansub_streams(series, movie)
