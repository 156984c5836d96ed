import asyncio
import json
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import aiofiles
import aiofiles.os

from .models import HistoryEntry
from ..config import HISTORY_PATH
from ..core.errors import HistoryStoreError
from ..utils.logger import get_logger

logger = get_logger(__name__)

History = Dict[str, Dict[str, HistoryEntry]]


class HistoryStore:
    """
    Watch history kept as one JSON document: source -> series name -> entry.
    Reads and writes always cover the whole document.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path or HISTORY_PATH)
        self._lock = asyncio.Lock()
        logger.debug(f"HistoryStore initialized with path: {self.path}")

    async def _read_raw(self) -> dict:
        """The document exactly as stored, including entries this version cannot parse."""
        if not await aiofiles.os.path.exists(self.path):
            return {}
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                content = await f.read()
        except OSError as e:
            raise HistoryStoreError(f"Could not read history file {self.path}: {e}") from e

        if not content.strip():
            return {}
        try:
            raw = json.loads(content)
        except json.JSONDecodeError as e:
            raise HistoryStoreError(f"History file {self.path} is not valid JSON: {e}") from e
        if not isinstance(raw, dict):
            raise HistoryStoreError(f"History file {self.path} has an unexpected layout")
        return raw

    async def _write_raw(self, raw: dict):
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(raw, indent=2, ensure_ascii=False))
            await aiofiles.os.replace(tmp_path, self.path)
        except OSError as e:
            raise HistoryStoreError(f"Could not write history file {self.path}: {e}") from e

    async def read_all(self) -> History:
        """Parsed entries only; incomplete ones are left out."""
        history: History = {}
        for source, series_map in (await self._read_raw()).items():
            if not isinstance(series_map, dict):
                continue
            entries = history.setdefault(source.lower(), {})
            for series_name, data in series_map.items():
                entry = HistoryEntry.from_dict(data) if isinstance(data, dict) else None
                if entry is not None:
                    entries[series_name] = entry
        return history

    async def write_all(self, history: History):
        await self._write_raw({
            source: {name: entry.to_dict() for name, entry in entries.items()}
            for source, entries in history.items()
        })

    async def get(self, source: str, series_name: str) -> Optional[HistoryEntry]:
        history = await self.read_all()
        return history.get(source.lower(), {}).get(series_name)

    async def record(self, source: str, series_name: str, entry: HistoryEntry):
        """Create or overwrite the entry for one series; everything else in the file is kept as is."""
        async with self._lock:
            raw = await self._read_raw()
            key = next((k for k in raw if k.lower() == source.lower() and isinstance(raw[k], dict)),
                       source.lower())
            if not isinstance(raw.get(key), dict):
                raw[key] = {}
            raw[key][series_name] = entry.to_dict()
            await self._write_raw(raw)
        logger.info(f"History updated: [{source}] {series_name} -> {entry.last_episode_name} (#{entry.last_episode_idx})")

    async def recent(self, source: str, limit: int = 0) -> List[Tuple[str, HistoryEntry]]:
        """Entries for a source, newest first. limit <= 0 means no limit."""
        history = await self.read_all()
        items = sorted(
            history.get(source.lower(), {}).items(),
            key=lambda item: item[1].last_watched,
            reverse=True,
        )
        if limit > 0:
            items = items[:limit]
        return items
