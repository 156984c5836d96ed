import asyncio
import logging
import sys

from .cli.watch import run_app
from .config import DEFAULT_SOURCE, DISABLE_RPC, LOG_LEVEL
from .core.errors import InvalidSelectionError
from .sources.registry import available_sources, get_source
from .utils.logger import setup_logging

USAGE = """usage: aniwatch [--source NAME] [--history] [--disable-rpc] [--debug]

  --source NAME   start on this source ({sources})
  --history       open the watch history first
  --disable-rpc   do not publish Discord presence
  --debug         verbose logging on the console
"""


def main(argv=None):
    args = list(sys.argv[1:] if argv is None else argv)
    if "-h" in args or "--help" in args:
        print(USAGE.format(sources=", ".join(available_sources())))
        return 0

    source_name = DEFAULT_SOURCE
    disable_rpc = DISABLE_RPC
    open_history = False
    debug = False

    if "--disable-rpc" in args:
        disable_rpc = True
        args.remove("--disable-rpc")
    if "--history" in args:
        open_history = True
        args.remove("--history")
    if "--debug" in args:
        debug = True
        args.remove("--debug")
    if "--source" in args:
        i = args.index("--source")
        if i + 1 >= len(args):
            print("Error: --source needs a name")
            return 2
        source_name = args[i + 1]
        del args[i:i + 2]
    if args:
        print(f"Error: unknown arguments: {' '.join(args)}")
        print(USAGE.format(sources=", ".join(available_sources())))
        return 2

    try:
        get_source(source_name)
    except InvalidSelectionError as e:
        print(f"Error: {e}")
        return 2

    level = logging.DEBUG if debug else getattr(logging, LOG_LEVEL.upper(), logging.INFO)
    setup_logging(level=level, console_level=level if debug else logging.WARNING)
    logging.getLogger("AniWatch").info(
        f"Starting (source={source_name}, rpc={'off' if disable_rpc else 'on'})")

    try:
        asyncio.run(run_app(source_name, disable_rpc=disable_rpc, open_history=open_history))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
