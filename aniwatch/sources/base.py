"""
Base class for anime sources.

A source turns its own HTTP/JSON payloads into the canonical models in
``aniwatch.database.models``; nothing above this layer ever sees a raw payload.

Every source must implement search, episode listing and stream lookup.
Fansub-capable sources set ``supports_fansubs`` and override the two fansub
methods.
"""

from abc import ABC, abstractmethod
from typing import Any, List, Optional, Tuple

import httpx

from ..config import HTTP_TIMEOUT, USER_AGENT
from ..core.errors import InvalidSelectionError, TransientFetchError
from ..database.models import Episode, Fansub, SeasonInfo, Series, StreamOption, StreamSet
from ..utils.logger import get_logger

logger = get_logger(__name__)


class AnimeSource(ABC):
    name: str = "base"
    display_name: str = "Base"
    supports_fansubs: bool = False

    @abstractmethod
    async def search(self, query: str) -> List[Series]:
        """Search for anime by title."""
        ...

    @abstractmethod
    async def get_series(self, series_id: str) -> Series:
        """Re-open a series from its stored identifier (used by the history menu)."""
        ...

    async def list_seasons(self, series: Series) -> List[SeasonInfo]:
        """Seasons of a series. Sources that do not expose seasons return an empty list."""
        return []

    @abstractmethod
    async def list_episodes(self, series: Series) -> List[Episode]:
        """All episodes of a series, ordered by season then episode."""
        ...

    @abstractmethod
    async def get_episode_streams(self, series: Series, episode: Episode) -> StreamSet:
        ...

    @abstractmethod
    async def get_movie_streams(self, series: Series) -> StreamSet:
        ...

    async def get_episode_subtitle(self, series: Series, season_idx: int,
                                   season_episode_idx: int) -> Optional[str]:
        return None

    async def list_fansubs(self, series: Series, episode: Episode) -> List[Fansub]:
        raise InvalidSelectionError(f"{self.display_name} does not offer fansub selection")

    async def get_fansub_streams(self, series: Series, episode: Episode, fansub: Fansub) -> StreamSet:
        raise InvalidSelectionError(f"{self.display_name} does not offer fansub selection")

    async def aclose(self):
        pass


class HttpSource(AnimeSource):
    """Shared httpx plumbing for sources backed by a JSON API."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=HTTP_TIMEOUT,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
            )
        return self._client

    async def _get(self, url: str, **kwargs) -> httpx.Response:
        logger.debug(f"[{self.name}] GET {url} {kwargs.get('params') or ''}")
        try:
            response = await self.client.get(url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise TransientFetchError(f"{self.display_name} request failed: {e}") from e
        return response

    async def _get_json(self, url: str, **kwargs) -> Any:
        response = await self._get(url, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise TransientFetchError(f"{self.display_name} returned malformed JSON from {url}") from e

    async def aclose(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


def dig(data: Any, *path, default=None):
    """Walk nested dicts/lists, returning ``default`` on any missing step."""
    current = data
    for key in path:
        if isinstance(current, dict):
            current = current.get(key)
        elif isinstance(current, list) and isinstance(key, int) and -len(current) <= key < len(current):
            current = current[key]
        else:
            return default
        if current is None:
            return default
    return current


def as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def normalize_number(value: Any, default=None):
    """Whole numbers become ints; fractional ones (specials like 7.5) stay floats."""
    number = as_number(value)
    if number is None:
        return default
    number = float(number)
    return int(number) if number.is_integer() else number


def stream_options(items: Any, label_key: str = "label", url_key: str = "url") -> Tuple[StreamOption, ...]:
    result = []
    for item in items or []:
        if not isinstance(item, dict):
            continue
        url = item.get(url_key)
        if not url:
            continue
        result.append(StreamOption(label=str(item.get(label_key) or ""), url=str(url)))
    return tuple(result)
