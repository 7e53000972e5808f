"""
Small text helpers shared by the emission stages: identifier sanitising,
Python literal rendering, duration parsing and comment formatting.
"""

from __future__ import annotations

import builtins
import json
import keyword
import re
from typing import Any, Iterable, List

INDENT = "    "

# Names bound by the emitted program itself, plus every builtin it or a user
# expression may call; user-derived identifiers must not shadow them.
RESERVED_NAMES = frozenset(dir(builtins)) | frozenset(
    {
        "asyncio",
        "timedelta",
        "Any",
        "workflow",
        "RetryPolicy",
        "ApplicationError",
        "self",
        "state",
        "workflow_input",
        "signal_queue",
        "workflow_start_time",
        "history_reset_count",
        "history_length",
        "elapsed_ms",
    }
)

_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([a-zA-Z]*)\s*$")
_DURATION_UNITS = {
    "ms": 0.001,
    "millisecond": 0.001,
    "milliseconds": 0.001,
    "s": 1.0,
    "sec": 1.0,
    "secs": 1.0,
    "second": 1.0,
    "seconds": 1.0,
    "m": 60.0,
    "min": 60.0,
    "mins": 60.0,
    "minute": 60.0,
    "minutes": 60.0,
    "h": 3600.0,
    "hr": 3600.0,
    "hour": 3600.0,
    "hours": 3600.0,
    "d": 86400.0,
    "day": 86400.0,
    "days": 86400.0,
}


def indent(level: int) -> str:
    return INDENT * level


def to_identifier(raw: str, *, prefix: str = "v") -> str:
    """Turn an arbitrary node id or variable name into a safe Python identifier."""

    sanitized = re.sub(r"\W", "_", raw.strip())
    if not sanitized:
        sanitized = prefix
    if sanitized[0].isdigit():
        sanitized = f"{prefix}_{sanitized}"
    if keyword.iskeyword(sanitized) or keyword.issoftkeyword(sanitized) or sanitized in RESERVED_NAMES:
        sanitized = f"{prefix}_{sanitized}"
    return sanitized


def to_camel_case(raw: str) -> str:
    parts = [part for part in re.split(r"[^a-zA-Z0-9]+", raw) if part]
    if not parts:
        return "activity"
    head, *tail = parts
    return head[:1].lower() + head[1:] + "".join(part[:1].upper() + part[1:] for part in tail)


def to_pascal_case(raw: str) -> str:
    parts = [part for part in re.split(r"[^a-zA-Z0-9]+", raw) if part]
    name = "".join(part[:1].upper() + part[1:] for part in parts) or "Workflow"
    if name[0].isdigit():
        name = f"Workflow{name}"
    return name


def format_value(value: Any) -> str:
    """Render a JSON-compatible value as a Python literal."""

    if isinstance(value, dict):
        entries = ", ".join(f"{format_value(str(key))}: {format_value(item)}" for key, item in value.items())
        return "{" + entries + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(format_value(item) for item in value) + "]"
    if isinstance(value, bool) or value is None:
        return repr(value)
    if isinstance(value, (int, float)):
        return repr(value)
    return json.dumps(str(value))


def format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def parse_duration(value: Any) -> float:
    """
    Parse a duration into seconds.

    Strings use a number plus unit ("500ms", "30s", "5 minutes", "2h", "1d");
    bare numbers are milliseconds.
    """

    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"Duration must not be negative: {value!r}")
        return float(value) / 1000.0
    if not isinstance(value, str):
        raise ValueError(f"Invalid duration: {value!r}")
    match = _DURATION_PATTERN.match(value)
    if not match:
        raise ValueError(f"Invalid duration format: {value!r}")
    amount, unit = match.groups()
    unit = unit.lower() or "ms"
    if unit not in _DURATION_UNITS:
        raise ValueError(f"Unknown duration unit '{unit}' in {value!r}")
    return float(amount) * _DURATION_UNITS[unit]


def format_timedelta(seconds: float) -> str:
    return f"timedelta(seconds={format_number(seconds)})"


def comment_text(text: str) -> str:
    """Collapse arbitrary label text onto one comment-safe line."""

    return " ".join(str(text).split())


def has_statements(lines: Iterable[str]) -> bool:
    return any(line.strip() and not line.strip().startswith("#") for line in lines)


def indent_lines(lines: Iterable[str], level: int) -> List[str]:
    pad = indent(level)
    return [f"{pad}{line}" if line else line for line in lines]
