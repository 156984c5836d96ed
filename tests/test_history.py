import json
from datetime import datetime, timedelta

import pytest

from aniwatch.core.errors import HistoryStoreError
from aniwatch.database.history import HistoryStore
from aniwatch.database.models import HistoryEntry


@pytest.fixture
def store(tmp_path):
    return HistoryStore(tmp_path / "history.json")


def make_entry(idx, name="Bölüm", series_id="42", when=None):
    return HistoryEntry(last_episode_idx=idx, last_episode_name=name, series_id=series_id,
                        last_watched=when or datetime(2024, 5, 1, 12, 0))


@pytest.mark.asyncio
async def test_missing_file_is_empty(store):
    assert await store.read_all() == {}
    assert await store.get("openanime", "Frieren") is None


@pytest.mark.asyncio
async def test_record_and_get(store):
    await store.record("OpenAnime", "Frieren", make_entry(3, "4. Bölüm", "sousou-no-frieren"))

    entry = await store.get("openanime", "Frieren")
    assert entry.last_episode_idx == 3
    assert entry.last_episode_name == "4. Bölüm"
    assert entry.series_id == "sousou-no-frieren"


@pytest.mark.asyncio
async def test_record_overwrites_one_series_only(store):
    await store.record("animecix", "A", make_entry(0))
    await store.record("animecix", "B", make_entry(5))
    await store.record("animecix", "A", make_entry(1))

    history = await store.read_all()
    assert history["animecix"]["A"].last_episode_idx == 1
    assert history["animecix"]["B"].last_episode_idx == 5


@pytest.mark.asyncio
async def test_file_layout(store):
    await store.record("animecix", "A", make_entry(2, "3. Bölüm", "77"))

    raw = json.loads(store.path.read_text(encoding="utf-8"))
    saved = raw["animecix"]["A"]
    assert saved["lastEpisodeIdx"] == 2
    assert saved["lastEpisodeName"] == "3. Bölüm"
    assert saved["seriesId"] == "77"
    watched = datetime.fromisoformat(saved["lastWatchedAt"])
    assert watched.tzinfo is not None
    assert watched == datetime(2024, 5, 1, 12, 0).astimezone()
    assert not store.path.with_suffix(".json.tmp").exists()


@pytest.mark.asyncio
async def test_incomplete_entries_are_skipped(store):
    store.path.write_text(json.dumps({"animecix": {
        "Good": {"lastEpisodeIdx": 1, "lastEpisodeName": "2", "seriesId": "1",
                 "lastWatchedAt": "2024-01-01T00:00:00"},
        "NoDate": {"lastEpisodeIdx": 1, "lastEpisodeName": "2", "seriesId": "1"},
    }}), encoding="utf-8")

    history = await store.read_all()
    assert list(history["animecix"]) == ["Good"]


@pytest.mark.asyncio
async def test_corrupt_file_raises(store):
    store.path.write_text("{not json", encoding="utf-8")
    with pytest.raises(HistoryStoreError):
        await store.read_all()


@pytest.mark.asyncio
async def test_recent_is_newest_first(store):
    base = datetime(2024, 1, 1)
    await store.record("openanime", "Old", make_entry(0, when=base))
    await store.record("openanime", "New", make_entry(0, when=base + timedelta(days=2)))
    await store.record("openanime", "Mid", make_entry(0, when=base + timedelta(days=1)))

    names = [name for name, _ in await store.recent("openanime")]
    assert names == ["New", "Mid", "Old"]
    assert [name for name, _ in await store.recent("openanime", limit=1)] == ["New"]
    assert await store.recent("animecix") == []


@pytest.mark.asyncio
async def test_record_keeps_entries_it_cannot_parse(store):
    old = {"lastEpisodeIdx": 1, "lastEpisodeName": "2", "seriesId": "9"}
    store.path.write_text(json.dumps({
        "AnimeCix": {"Old": old},
        "legacy": ["not", "a", "map"],
    }), encoding="utf-8")

    await store.record("animecix", "New", make_entry(0))

    raw = json.loads(store.path.read_text(encoding="utf-8"))
    assert raw["AnimeCix"]["Old"] == old
    assert "New" in raw["AnimeCix"]
    assert raw["legacy"] == ["not", "a", "map"]
    assert "animecix" not in raw


@pytest.mark.asyncio
async def test_empty_episode_name_round_trips(store):
    await store.record("animecix", "Show", make_entry(3, name=""))

    entry = await store.get("animecix", "Show")
    assert entry is not None
    assert entry.last_episode_idx == 3
    assert entry.last_episode_name == ""


@pytest.mark.asyncio
async def test_recent_with_mixed_offsets(store):
    store.path.write_text(json.dumps({"animecix": {
        "Istanbul": {"lastEpisodeIdx": 0, "lastEpisodeName": "1", "seriesId": "1",
                     "lastWatchedAt": "2024-01-01T10:00:00+03:00"},
        "Utc": {"lastEpisodeIdx": 0, "lastEpisodeName": "1", "seriesId": "2",
                "lastWatchedAt": "2024-01-01T08:00:00Z"},
    }}), encoding="utf-8")
    await store.record("animecix", "Local", make_entry(0, when=datetime(2030, 1, 1)))

    names = [name for name, _ in await store.recent("animecix")]
    assert names == ["Local", "Utc", "Istanbul"]


def test_naive_timestamps_become_local():
    entry = make_entry(0, when=datetime(2024, 1, 1, 12, 0))
    assert entry.last_watched.tzinfo is not None
    parsed = HistoryEntry.from_dict({"lastEpisodeIdx": 0, "lastEpisodeName": "x", "seriesId": "1",
                                     "lastWatchedAt": "2024-01-01T12:00:00"})
    assert parsed.last_watched == entry.last_watched
