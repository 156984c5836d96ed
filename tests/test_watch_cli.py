import pytest

from aniwatch.cli import watch
from aniwatch.core.session import SessionState, WatchSession
from aniwatch.database.history import HistoryStore
from aniwatch.database.models import HistoryEntry

from fakes import SERIES, FakeFansubSource, FakeSource, FakeSupervisor, make_episodes


@pytest.fixture
def answers(monkeypatch):
    """Scripted replies for the prompt, consumed in order."""
    queue = []

    async def fake_ask(prompt):
        return queue.pop(0)

    monkeypatch.setattr(watch, "ask", fake_ask)
    return queue


def make_session(**kwargs):
    source = FakeSource(episodes=make_episodes([3]))
    return WatchSession(source, SERIES, source.episodes, history_interval=0.01,
                        presence_interval=0.01, **kwargs)


def test_session_menu():
    assert watch.session_menu(make_session()) == [
        "Play", "Next episode", "Previous episode", "Select episode", "Select resolution",
        "Search anime", "Switch source", "Quit",
    ]
    source = FakeFansubSource()
    session = WatchSession(source, SERIES, source.episodes, is_movie=True)
    assert watch.session_menu(session) == ["Play", "Select resolution", "Select fansub",
                                           "Search anime", "Switch source", "Quit"]


@pytest.mark.asyncio
async def test_select_episode_and_resolution_then_back(answers):
    session = make_session()
    # Select episode -> #3, Select resolution -> 720p, then back out to search.
    answers.extend(["4", "3", "5", "2", ""])

    assert await watch.run_session(session) is None

    assert session.selected_episode_idx == 2
    assert session.selected_resolution == "720p"
    assert session.state is SessionState.EXITED
    assert answers == []


@pytest.mark.asyncio
async def test_next_episode_starts_playback(answers):
    supervisor = FakeSupervisor()
    session = make_session(supervisor=supervisor)
    answers.extend(["2", "99", "6"])

    assert await watch.run_session(session) is None

    assert [launch[2] for launch in supervisor.launches] == ["Test Anime - S1E2"]
    assert session.state is SessionState.EXITED


@pytest.mark.asyncio
async def test_switch_source_returns_new_source(answers, monkeypatch):
    other = FakeFansubSource()

    async def fake_pick_source(current):
        return other

    monkeypatch.setattr(watch, "pick_source", fake_pick_source)
    session = make_session()
    answers.append("7")

    assert await watch.run_session(session) is other
    assert session.state is SessionState.EXITED


@pytest.mark.asyncio
async def test_history_pick_keeps_stored_name(answers, tmp_path):
    store = HistoryStore(tmp_path / "history.json")
    await store.record("fake", "Şimdiki Ad", HistoryEntry(1, "S1E2", "42"))
    answers.append("1")

    series = await watch.pick_from_history(FakeSource(), store, limit=0)

    assert series.id == "42"
    assert series.name == "Şimdiki Ad"


@pytest.mark.asyncio
async def test_history_pick_with_empty_history(answers, tmp_path):
    store = HistoryStore(tmp_path / "history.json")
    assert await watch.pick_from_history(FakeSource(), store, limit=0) is None
