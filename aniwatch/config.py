import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Base Paths
DATA_DIR = Path(os.getenv("ANIWATCH_HOME", Path.home() / ".aniwatch"))
HISTORY_PATH = DATA_DIR / "history.json"
LOG_PATH = DATA_DIR / "aniwatch.log"
LOG_LEVEL = os.getenv("ANIWATCH_LOG_LEVEL", "INFO")

# Source Settings
DEFAULT_SOURCE = os.getenv("ANIWATCH_DEFAULT_SOURCE", "openanime")
HISTORY_LIMIT = int(os.getenv("ANIWATCH_HISTORY_LIMIT", "0"))  # 0 = unlimited
HTTP_TIMEOUT = float(os.getenv("ANIWATCH_HTTP_TIMEOUT", "15"))
USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64; rv:128.0) Gecko/20100101 Firefox/128.0"

ANIMECIX_BASE_URL = os.getenv("ANIMECIX_BASE_URL", "https://animecix.tv/")
ANIMECIX_ALT_URL = os.getenv("ANIMECIX_ALT_URL", "https://mangacix.net/")
ANIMECIX_PLAYER_API_URL = os.getenv("ANIMECIX_PLAYER_API_URL", "https://tau-video.xyz/api/video/")
OPENANIME_API_URL = os.getenv("OPENANIME_API_URL", "https://api.openani.me/")
OPENANIME_CDN_URL = os.getenv("OPENANIME_CDN_URL", "https://de2---vn-t9g4tsan-5qcl.yeshi.eu.org/")

# Playback Settings
MPV_PATH = os.getenv("ANIWATCH_MPV_PATH", "")
LIVENESS_PROBE_INTERVAL = 0.3  # seconds
LIVENESS_PROBE_ATTEMPTS = 10
IPC_TIMEOUT = 2.0  # seconds, per control-socket request
HISTORY_POLL_INTERVAL = 10  # seconds
PRESENCE_POLL_INTERVAL = 5  # seconds
FINISH_THRESHOLD = 300  # last five minutes count as watched

# Discord Rich Presence Settings
DISABLE_RPC = _env_bool("ANIWATCH_DISABLE_RPC")
DISCORD_CLIENT_ID = os.getenv("ANIWATCH_DISCORD_CLIENT_ID", "1383421771159572600")
PRESENCE_FALLBACK_IMAGE = os.getenv("ANIWATCH_PRESENCE_IMAGE", "aniwatch")
PRESENCE_BUTTON_LABEL = os.getenv("ANIWATCH_PRESENCE_BUTTON_LABEL", "")
PRESENCE_BUTTON_URL = os.getenv("ANIWATCH_PRESENCE_BUTTON_URL", "")
