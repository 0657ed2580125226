from __future__ import annotations

import re
from typing import Any, Iterable, List, Optional
from urllib.parse import urlsplit


_SIZE_UNITS = {
    'b': 1,
    'kb': 1000,
    'mb': 1000 ** 2,
    'gb': 1000 ** 3,
    'tb': 1000 ** 4,
    'kib': 1024,
    'mib': 1024 ** 2,
    'gib': 1024 ** 3,
    'tib': 1024 ** 4,
}

_SIZE_RE = re.compile(r'^\s*(-?\d+(?:\.\d+)?)\s*([a-zA-Z]*)\s*$')


def parse_byte_size(value: Any) -> int:
    """Convert ``"10 MB"``, ``"1.5GiB"`` or a bare number of bytes into an int."""
    if isinstance(value, bool):
        raise ValueError(f'Invalid byte size: {value!r}')
    if isinstance(value, (int, float)):
        return int(value)
    m = _SIZE_RE.match(str(value))
    if not m:
        raise ValueError(f'Invalid byte size: {value!r}')
    number, unit = m.groups()
    factor = _SIZE_UNITS.get((unit or 'b').lower())
    if factor is None:
        raise ValueError(f'Unknown byte size unit in {value!r}')
    return int(float(number) * factor)


def optional_byte_size(value: Any) -> Optional[int]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_byte_size(value)


def format_bytes(num: Optional[float]) -> str:
    if num is None:
        return 'n/a'
    size = float(num)
    for unit in ('B', 'KB', 'MB', 'GB'):
        if abs(size) < 1000:
            return f'{size:.1f} {unit}' if unit != 'B' else f'{int(size)} B'
        size /= 1000
    return f'{size:.1f} TB'


def hours_to_seconds(hours: float) -> float:
    return float(hours) * 3600.0


def tracker_host(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    try:
        host = urlsplit(str(url).strip()).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def tracker_hosts(urls: Iterable[Optional[str]]) -> List[str]:
    out: List[str] = []
    for url in urls:
        host = tracker_host(url)
        if host and host not in out:
            out.append(host)
    return out
