from __future__ import annotations

import json
from dataclasses import fields
from pathlib import Path
from typing import Any, Mapping

from .contracts import EngineConfig, OutputFormat

_FIELD_NAMES = frozenset(f.name for f in fields(EngineConfig))


def _coerce_extra_options(raw: Any) -> tuple[tuple[str, str], ...]:
    # Accept {"k": "v"} or [["k", "v"], ...]; the list form allows repeated keys.
    if isinstance(raw, Mapping):
        items = raw.items()
    elif isinstance(raw, (list, tuple)):
        items = raw
    else:
        raise TypeError("extra_options must be an object or a list of [key, value] pairs")

    pairs: list[tuple[str, str]] = []
    for item in items:
        key, value = item
        pairs.append((str(key), str(value)))
    return tuple(pairs)


def parse_extra_option(text: str) -> tuple[str, str]:
    """Parse a `key=value` engine option as given on a command line."""

    key, sep, value = text.partition("=")
    if not sep or not key:
        raise ValueError(f"expected key=value, got {text!r}")
    return key.strip(), value.strip()


def engine_config_from_dict(data: Mapping[str, Any], *, base: EngineConfig | None = None) -> EngineConfig:
    """
    Build an EngineConfig from a mapping keyed by field name.

    Unknown keys are rejected rather than ignored. Fields missing from `data`
    keep the value from `base` (or the defaults).
    """

    unknown = sorted(set(data) - _FIELD_NAMES)
    if unknown:
        raise ValueError(f"unknown engine config keys: {unknown}")

    values = (base or EngineConfig()).to_dict()
    values.update(data)
    values["output_format"] = OutputFormat(values["output_format"])
    values["extra_options"] = _coerce_extra_options(values["extra_options"])
    return EngineConfig(**values)


def load_engine_config(path: Path, *, base: EngineConfig | None = None) -> EngineConfig:
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"engine config must be a JSON object: {path}")
    return engine_config_from_dict(data, base=base)
