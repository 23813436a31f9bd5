import math
import re
import unicodedata
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def minutes_between(a: datetime, b: datetime) -> int:
    diff = b - a
    minutes = diff.total_seconds() / 60.0
    return max(0, int(math.floor(minutes)))


def sanitize_filename(name: str) -> str:
    """ASCII-only file name safe for a Content-Disposition header."""
    ascii_name = unicodedata.normalize("NFD", name).encode("ascii", "ignore").decode("ascii")
    cleaned = re.sub(r"[^a-zA-Z0-9._-]+", "_", ascii_name)
    cleaned = re.sub(r"_+", "_", cleaned).strip("_")
    return cleaned or "film"
