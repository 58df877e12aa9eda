from __future__ import annotations

import re

_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}

_DURATION_RE = re.compile(r"^(?:\d+(?:\.\d+)?(?:ms|s|m|h))+$")
_PART_RE = re.compile(r"(?P<value>\d+(?:\.\d+)?)(?P<unit>ms|s|m|h)")


def parse_duration_to_seconds(raw: str | int | float) -> float:
    """Parse duration strings like '500ms', '10s', '5m', '1m30s', '1h' into seconds.

    Bare numbers are taken as seconds.
    """
    if isinstance(raw, bool):
        raise ValueError("duration must be a number or a <number><unit> string")
    if isinstance(raw, (int, float)):
        if raw < 0:
            raise ValueError("duration must be non-negative")
        return float(raw)

    text = raw.strip()
    if not _DURATION_RE.match(text):
        raise ValueError("duration must match <number><unit>[<number><unit>...] where unit is ms|s|m|h")

    return sum(
        float(match.group("value")) * _UNIT_SECONDS[match.group("unit")]
        for match in _PART_RE.finditer(text)
    )


def format_seconds(seconds: float) -> str:
    """Render seconds back into the compact form used in logs ('1m30s', '500ms')."""
    if seconds < 1 and seconds != 0:
        return f"{round(seconds * 1000)}ms"
    minutes, secs = divmod(seconds, 60.0)
    if minutes and secs:
        return f"{int(minutes)}m{secs:g}s"
    if minutes:
        return f"{int(minutes)}m"
    return f"{secs:g}s"
