"""Process health: uptime, memory and cache size for the /health endpoint."""
import resource
import sys
import time
from typing import Any, Optional

_STARTED_AT = time.monotonic()


def _to_mb(num_bytes: float) -> str:
    return f"{num_bytes / (1024 * 1024):.2f}MB"


def _current_rss_bytes() -> Optional[int]:
    """Resident set size from /proc (Linux). None where unavailable."""
    try:
        with open("/proc/self/statm") as f:
            pages = int(f.read().split()[1])
    except (OSError, ValueError, IndexError):
        return None
    return pages * resource.getpagesize()


def _max_rss_bytes() -> int:
    # ru_maxrss is kilobytes on Linux, bytes on macOS.
    max_rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    return max_rss if sys.platform == "darwin" else max_rss * 1024


def get_process_health(conversations: Optional[int] = None) -> dict[str, Any]:
    """
    Build health payload: {"status": "ok", "uptime": "12.34s", "memory": {"rss", "max_rss"}, "conversations": n}.
    rss falls back to max_rss where the current value cannot be read.
    """
    max_rss = _max_rss_bytes()
    rss = _current_rss_bytes()
    out: dict[str, Any] = {
        "status": "ok",
        "uptime": f"{time.monotonic() - _STARTED_AT:.2f}s",
        "memory": {
            "rss": _to_mb(rss if rss is not None else max_rss),
            "max_rss": _to_mb(max_rss),
        },
    }
    if conversations is not None:
        out["conversations"] = conversations
    return out
