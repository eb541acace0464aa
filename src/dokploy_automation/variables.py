from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence


def resolve(layers: Sequence[Optional[Mapping[str, Any]]]) -> dict[str, Any]:
    """Merge ``layers`` in order; a key set by a later layer wins.

    The merge is shallow: a mapping value in a later layer replaces the whole
    value of an earlier one instead of being combined with it.
    """

    merged: dict[str, Any] = {}
    for layer in layers:
        if not layer:
            continue
        for key, value in layer.items():
            merged[str(key)] = value
    return merged


def parse_assignment(text: str) -> tuple[str, Any]:
    """Parse a ``KEY=VALUE`` override given on the command line."""

    key, sep, raw = text.partition("=")
    key = key.strip()
    if not sep or not key:
        raise ValueError(f"variable override '{text}' must look like KEY=VALUE")
    return key, _coerce_scalar(raw.strip())


def _coerce_scalar(raw: str) -> Any:
    lowered = raw.lower()
    if lowered in {"true", "yes", "on"}:
        return True
    if lowered in {"false", "no", "off"}:
        return False
    if raw.isdigit() or (raw.startswith("-") and raw[1:].isdigit()):
        return int(raw)
    return raw
