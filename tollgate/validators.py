"""
Input validation utilities for operator and CLI parameters.
Durations follow the Kubernetes (Go) duration grammar: "90m", "1h30m", "1.5h".
"""
import re
from datetime import timedelta


# Ordered so that two-letter units win over their one-letter prefixes.
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r'(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)')

# Largest duration Go's time.Duration can hold (int64 nanoseconds, about 2562047h).
_MAX_DURATION_SECONDS = (2 ** 63 - 1) / 1e9

_REQUEST_NAME_PREFIX = re.compile(r'^[a-z][a-z0-9-][a-z0-9]+')
_NAMESPACE = re.compile(r'^[a-z0-9]([-a-z0-9]*[a-z0-9])?$')


def parse_duration(value) -> timedelta:
    """
    Parses a Go-style duration string into a timedelta.

    An absent value, the empty string and "0" all mean zero, which callers
    treat as "not supplied".

    Args:
        value: Duration string such as "30m" or "1h30m"

    Returns:
        The parsed duration

    Raises:
        ValueError: If the string is malformed or negative
    """
    if value is None:
        return timedelta(0)

    text = str(value).strip()
    if text in ("", "0"):
        return timedelta(0)

    if text.startswith("-"):
        raise ValueError(f"Duration must not be negative, got: {value}")
    if text.startswith("+"):
        text = text[1:]

    total_seconds = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total_seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()

    if position == 0 or position != len(text):
        raise ValueError(f"Invalid duration {value!r}. Valid time units are: ns, us, ms, s, m, h")

    if total_seconds > _MAX_DURATION_SECONDS:
        raise ValueError(f"Invalid duration {value!r}: out of range (maximum is 2562047h47m16.854775807s)")

    return timedelta(seconds=total_seconds)


def _decimal(value: int, unit: int) -> str:
    whole, frac = divmod(value, unit)
    if not frac:
        return str(whole)
    digits = len(str(unit)) - 1
    return f"{whole}.{frac:0{digits}d}".rstrip("0")


def format_duration(duration: timedelta) -> str:
    """Renders a timedelta compactly: 2h, 1h30m, 1.5s, 500ms, 0s."""
    total_us = duration // timedelta(microseconds=1)
    if total_us <= 0:
        return "0s"

    # Below one second Go switches to the largest sub-second unit.
    if total_us < 1000:
        return f"{total_us}us"
    if total_us < 1_000_000:
        return f"{_decimal(total_us, 1000)}ms"

    hours, remainder = divmod(total_us, 3_600_000_000)
    minutes, remainder = divmod(remainder, 60_000_000)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if remainder:
        parts.append(f"{_decimal(remainder, 1_000_000)}s")
    return "".join(parts)


def validate_request_name_prefix(prefix: str) -> str:
    """
    Validates the prefix used for generated request names.
    Must start with a-z, may contain dashes, must end in a letter or number.

    Raises:
        ValueError: If the prefix is invalid
    """
    if not prefix or not _REQUEST_NAME_PREFIX.match(prefix):
        raise ValueError(f"invalid request name prefix: {prefix}")
    return prefix


def validate_wait_time(wait_time: str) -> timedelta:
    """
    Validates the CLI --wait-time flag.

    Raises:
        ValueError: If the value is not a positive duration
    """
    try:
        parsed = parse_duration(wait_time)
    except ValueError:
        raise ValueError(f"invalid time supplied: {wait_time}")

    if parsed <= timedelta(0):
        raise ValueError(f"invalid time supplied: {wait_time}")
    return parsed


def validate_namespace(namespace: str) -> str:
    """Validates a Kubernetes namespace name (RFC 1123 label)."""
    if not namespace:
        raise ValueError("Namespace cannot be empty")

    if len(namespace) > 63 or not _NAMESPACE.match(namespace):
        raise ValueError(f"Invalid namespace name: {namespace}")

    return namespace
