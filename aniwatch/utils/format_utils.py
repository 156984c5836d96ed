import re
from urllib.parse import urlparse

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp")


def format_time(seconds: float) -> str:
    total = int(max(seconds, 0) + 0.5)
    hours = total // 3600
    minutes = (total % 3600) // 60
    secs = total % 60
    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def format_progress(position: float, duration: float, paused: bool = False) -> str:
    """Elapsed/total display used for the presence state line."""
    text = f"{format_time(position)} / {format_time(duration)}"
    if paused:
        text += " (Paused)"
    return text


def is_image_url(url) -> bool:
    if not url:
        return False
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return False
    return parsed.path.lower().endswith(IMAGE_EXTENSIONS)


def parse_episode_number(title: str):
    """Pull an episode number out of a title like '3. Bölüm' or 'Episode 7.5'."""
    match = re.search(r'(\d+(?:\.\d+)?)', title or "")
    if not match:
        return None
    value = float(match.group(1))
    return int(value) if value.is_integer() else value
