import asyncio
import time
from typing import List, Optional

from ..config import HISTORY_LIMIT
from ..core.errors import SessionError
from ..core.player import PlayerSupervisor
from ..core.presence import PresenceClient
from ..core.session import (DispatchResult, NextEpisode, Play, PreviousEpisode, Quit, SelectEpisode,
                            SelectFansub, SelectResolution, ShowFansubs, ShowResolutions,
                            SwitchSource, WatchSession, new_session)
from ..database.history import HistoryStore
from ..database.models import Series
from ..sources.base import AnimeSource
from ..sources.registry import available_sources, get_source
from ..utils.logger import get_logger

logger = get_logger(__name__)


async def ask(prompt: str) -> str:
    # input() would block the event loop, and with it any running poller.
    return (await asyncio.to_thread(input, prompt)).strip()


def show_error(message: str):
    print(f"\033[31m[!] {message}\033[0m")


async def choose(title: str, options: List[str]) -> Optional[int]:
    """Numbered menu. Returns the chosen index, or None when the user backs out."""
    if not options:
        show_error("Nothing to choose from.")
        return None
    while True:
        print(f"\n{title}")
        for i, option in enumerate(options, 1):
            print(f"  {i:>3}. {option}")
        answer = await ask("Choice (empty to go back): ")
        if not answer:
            return None
        if answer.isdigit() and 1 <= int(answer) <= len(options):
            return int(answer) - 1
        show_error(f"Invalid choice: {answer}")


def report(result: DispatchResult):
    if result.error is not None:
        show_error(result.hint)
    elif result.hint:
        print(result.hint)


async def search_series(source: AnimeSource) -> Optional[Series]:
    query = await ask(f"Search anime on {source.display_name}: ")
    if not query:
        return None
    print("Searching...")
    results = await source.search(query)
    if not results:
        show_error("No results found!")
        return None
    idx = await choose("Select anime", [s.name + (" (movie)" if s.is_movie else "") for s in results])
    return results[idx] if idx is not None else None


async def pick_from_history(source: AnimeSource, store: HistoryStore, limit: int) -> Optional[Series]:
    items = await store.recent(source.name, limit)
    if not items:
        show_error(f"No history for {source.display_name}")
        return None
    labels = [f"{name} - {entry.last_episode_name}" for name, entry in items]
    idx = await choose("History", labels)
    if idx is None:
        return None
    name, entry = items[idx]
    print("Loading...")
    series = await source.get_series(entry.series_id)
    # History is keyed by the name the series was first watched under.
    return Series(id=series.id, name=name, poster_url=series.poster_url, is_movie=series.is_movie)


async def pick_source(current: AnimeSource) -> AnimeSource:
    names = available_sources()
    idx = await choose("Select source", names)
    if idx is None or names[idx].lower() == current.name:
        return current
    return get_source(names[idx])


def session_menu(session: WatchSession) -> List[str]:
    if session.is_movie:
        options = ["Play", "Select resolution"]
    else:
        options = ["Play", "Next episode", "Previous episode", "Select episode", "Select resolution"]
    if session.source.supports_fansubs:
        options.append("Select fansub")
    options.extend(["Search anime", "Switch source", "Quit"])
    return options


async def run_session(session: WatchSession) -> Optional[AnimeSource]:
    """Drive one session. Returns a new source when the user switched sources."""
    while True:
        options = session_menu(session)
        title = f"{session.series.name} | {session.current_episode.title}"
        idx = await choose(title, options)
        option = options[idx] if idx is not None else "Search anime"

        if option == "Play":
            print("Starting player...")
            report(await session.dispatch(Play()))
        elif option in ("Next episode", "Previous episode"):
            command = NextEpisode() if option == "Next episode" else PreviousEpisode()
            result = await session.dispatch(command)
            report(result)
            if result.ok:
                print("Starting player...")
                report(await session.dispatch(Play()))
        elif option == "Select episode":
            choice = await choose("Select episode", session.episode_titles)
            if choice is not None:
                report(await session.dispatch(SelectEpisode(choice)))
        elif option == "Select resolution":
            result = await session.dispatch(ShowResolutions())
            if not result.ok:
                report(result)
                continue
            choice = await choose("Select resolution", result.options)
            if choice is not None:
                report(await session.dispatch(SelectResolution(result.options[choice])))
        elif option == "Select fansub":
            result = await session.dispatch(ShowFansubs())
            if not result.ok:
                report(result)
                continue
            choice = await choose("Select fansub", result.options)
            if choice is not None:
                report(await session.dispatch(SelectFansub(choice)))
        elif option == "Switch source":
            new_source = await pick_source(session.source)
            if new_source is session.source:
                continue
            result = await session.dispatch(SwitchSource(new_source))
            report(result)
            if result.switch_to is not None:
                return result.switch_to.source
        elif option == "Search anime":
            await session.dispatch(Quit())
            return None
        elif option == "Quit":
            await session.dispatch(Quit())
            raise SystemExit(0)


async def run_app(source_name: str, disable_rpc: bool = False, open_history: bool = False,
                  history_limit: int = HISTORY_LIMIT):
    started_at = time.time()
    store = HistoryStore()
    supervisor = PlayerSupervisor()
    presence = None if disable_rpc else PresenceClient()
    source = get_source(source_name)

    try:
        while True:
            if open_history:
                choice, open_history = "History", False
            else:
                menu = ["Search anime", "History", "Switch source", "Quit"]
                idx = await choose(f"Source: {source.display_name}", menu)
                choice = menu[idx] if idx is not None else "Quit"

            if choice == "Quit":
                return
            if choice == "Switch source":
                new_source = await pick_source(source)
                if new_source is not source:
                    await source.aclose()
                    source = new_source
                continue

            try:
                if choice == "History":
                    series = await pick_from_history(source, store, history_limit)
                else:
                    series = await search_series(source)
                if series is None:
                    continue
                print("Loading episodes...")
                session = await new_session(source, series, history_store=store, supervisor=supervisor,
                                            presence=presence, started_at=started_at)
            except SessionError as e:
                logger.error(f"Could not open {choice.lower()}: {e}")
                show_error(str(e))
                continue

            new_source = await run_session(session)
            if new_source is not None and new_source is not source:
                await source.aclose()
                source = new_source
    finally:
        await source.aclose()
        if presence is not None:
            await presence.logout()
