from typing import Optional
from urllib.parse import urlparse

from slugify import slugify

_ALLOWED_SCHEMES = ("http", "https")


def is_valid_url(value: str) -> bool:
    if not isinstance(value, str) or value != value.strip():
        return False

    try:
        parsed = urlparse(value)
        # .port raises on a malformed port
        parsed.port
    except ValueError:
        return False

    return parsed.scheme in _ALLOWED_SCHEMES and bool(parsed.hostname)


def host_slug(url: str) -> Optional[str]:
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return None

    if not hostname:
        return None

    return slugify(hostname) or None


def build_capture_filename(url: str, index: int, now_ms: int) -> str:
    """Name of the image of the ``index``-th successful capture (1-based)."""
    slug = host_slug(url)
    if slug is None:
        return f"{index}_{now_ms}.png"
    return f"{index}_{slug}_{now_ms}.png"
