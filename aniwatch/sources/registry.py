from typing import Dict, List, Type

from .animecix import AnimeCixSource
from .base import AnimeSource
from .openanime import OpenAnimeSource
from ..core.errors import InvalidSelectionError

SOURCES: Dict[str, Type[AnimeSource]] = {
    OpenAnimeSource.name: OpenAnimeSource,
    AnimeCixSource.name: AnimeCixSource,
}


def available_sources() -> List[str]:
    return [cls.display_name for cls in SOURCES.values()]


def get_source(name: str) -> AnimeSource:
    key = (name or "").strip().lower()
    if key not in SOURCES:
        raise InvalidSelectionError(f"Unknown source: {name} (available: {', '.join(available_sources())})")
    return SOURCES[key]()
