"""
Helpers for turning a declaration's string configuration into typed values.

All functions are pure: they never mutate their input and raise
``ConfigurationError`` naming the offending key instead of guessing.
"""

import re
from collections.abc import Mapping
from datetime import timedelta

from .errors import ConfigurationError

INTERVAL_KEY = "interval"

# Microseconds per duration unit
_UNITS: dict[str, float] = {
    "ns": 0.001,
    "us": 1.0,
    "µs": 1.0,
    "μs": 1.0,
    "ms": 1_000.0,
    "s": 1_000_000.0,
    "m": 60_000_000.0,
    "h": 3_600_000_000.0,
}

_DURATION_PART = re.compile(r"([0-9]+(?:\.[0-9]*)?|\.[0-9]+)(ns|us|µs|μs|ms|s|m|h)")
_INTEGER = re.compile(r"[+-]?[0-9]+")


def require(raw: Mapping[str, str], key: str) -> str:
    """Return a required, non-empty configuration value."""
    value = raw.get(key)
    if value is None or value == "":
        raise ConfigurationError(f"missing required config key '{key}'", key=key)
    return value


def parse_int(raw: Mapping[str, str], key: str, default: int | None = None) -> int:
    """Parse an integer strictly; ``default`` applies only when the key is absent."""
    value = raw.get(key)
    if value is None:
        if default is None:
            raise ConfigurationError(f"missing required config key '{key}'", key=key)
        return default
    if not _INTEGER.fullmatch(value):
        raise ConfigurationError(
            f"config key '{key}' must be an integer, got {value!r}", key=key
        )
    return int(value)


def parse_duration(text: str) -> timedelta:
    """
    Parse a duration such as ``300ms``, ``5m`` or ``1h30m``.

    Raises:
        ValueError: If the text is not a valid duration
    """
    if not text:
        raise ValueError("empty duration")

    sign = 1
    body = text
    if body[0] in "+-":
        sign = -1 if body[0] == "-" else 1
        body = body[1:]

    if body == "0":
        return timedelta(0)
    if not body:
        raise ValueError(f"invalid duration {text!r}")

    total = 0.0
    pos = 0
    while pos < len(body):
        match = _DURATION_PART.match(body, pos)
        if match is None:
            raise ValueError(f"invalid duration {text!r}")
        number, unit = match.groups()
        total += float(number) * _UNITS[unit]
        pos = match.end()

    try:
        return timedelta(microseconds=sign * total)
    except OverflowError as e:
        raise ValueError(f"duration {text!r} is out of range") from e


def format_duration(value: timedelta) -> str:
    """Render a timedelta in the grammar accepted by ``parse_duration``."""
    micros = (value.days * 86_400 + value.seconds) * 1_000_000 + value.microseconds
    if micros == 0:
        return "0s"

    sign = "-" if micros < 0 else ""
    micros = abs(micros)

    parts = []
    for unit, size in (("h", 3_600_000_000), ("m", 60_000_000), ("s", 1_000_000), ("ms", 1_000), ("us", 1)):
        count, micros = divmod(micros, size)
        if count:
            parts.append(f"{count}{unit}")
    return sign + "".join(parts)


def parse_positive_duration(
    raw: Mapping[str, str],
    key: str,
    default: timedelta,
) -> timedelta:
    """Parse an optional duration key that must be strictly positive."""
    value = raw.get(key)
    if value is None:
        return default
    try:
        duration = parse_duration(value)
    except ValueError as e:
        raise ConfigurationError(
            f"config key '{key}' is not a valid duration: {e}", key=key
        ) from e
    if duration <= timedelta(0):
        raise ConfigurationError(
            f"config key '{key}' must be a positive duration, got {value!r}", key=key
        )
    return duration


def split_list(
    raw: Mapping[str, str],
    key: str,
    default: tuple[str, ...] = (),
) -> tuple[str, ...]:
    """Split a comma separated value, keeping order and case."""
    value = raw.get(key)
    if value is None:
        return default
    return tuple(item.strip() for item in value.split(",") if item.strip())


def extract_prefixed(raw: Mapping[str, str], prefix: str) -> dict[str, str]:
    """Collect ``prefix<name>`` keys into ``{name: value}``."""
    return {
        key[len(prefix):]: value
        for key, value in raw.items()
        if key.startswith(prefix) and len(key) > len(prefix)
    }


def resolve_interval(raw: Mapping[str, str], default: timedelta) -> timedelta:
    """The declaration's own ``interval`` wins over the registry default."""
    return parse_positive_duration(raw, INTERVAL_KEY, default)
