"""
Snapshot naming.

Names embed a recency component that sorts newest-first:

    compaction-<stream>-snapshot-<base36(MAX - epoch_millis)>.dat

so listing a stream's snapshots lexically yields the most recent one first.
"""

import string
import threading
import time
from typing import Optional

SNAPSHOT_FILE_SUFFIX = ".dat"
SNAPSHOT_HEADER_KEY = "__snapshot_header__"

_DIGITS = string.digits + string.ascii_lowercase
_SUFFIX_WIDTH = 9
_MAX_TIMESTAMP = 36 ** _SUFFIX_WIDTH - 1

_clock_lock = threading.Lock()
_last_issued_ms = 0


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_DIGITS[remainder])
    return "".join(reversed(digits))


def _next_timestamp_ms() -> int:
    """Current epoch millis, bumped so no two calls in a process return the same value."""
    global _last_issued_ms
    with _clock_lock:
        _last_issued_ms = max(int(time.time() * 1000), _last_issued_ms + 1)
        return _last_issued_ms


def snapshot_prefix(stream_name: str) -> str:
    return f"compaction-{stream_name}-snapshot-"


def snapshot_name(stream_name: str, timestamp_ms: Optional[int] = None) -> str:
    """
    Build a snapshot name.

    Args:
        stream_name: Stream the snapshot belongs to
        timestamp_ms: Epoch millis of the snapshot (default: now)

    Returns:
        Snapshot name
    """
    if timestamp_ms is None:
        timestamp_ms = _next_timestamp_ms()

    if not 0 <= timestamp_ms <= _MAX_TIMESTAMP:
        raise ValueError(f"Timestamp out of range: {timestamp_ms}")

    suffix = _to_base36(_MAX_TIMESTAMP - timestamp_ms).rjust(_SUFFIX_WIDTH, "0")
    return f"{snapshot_prefix(stream_name)}{suffix}{SNAPSHOT_FILE_SUFFIX}"


def snapshot_timestamp(name: str) -> Optional[int]:
    """
    Recover the epoch millis encoded in a snapshot name.

    Returns:
        Timestamp, or None if the name is not a snapshot name
    """
    if not name.endswith(SNAPSHOT_FILE_SUFFIX) or "-snapshot-" not in name:
        return None

    suffix = name[: -len(SNAPSHOT_FILE_SUFFIX)].rsplit("-snapshot-", 1)[1]
    try:
        return _MAX_TIMESTAMP - int(suffix, 36)
    except ValueError:
        return None
