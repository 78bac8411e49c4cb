"""Field masks: keep only selected dotted paths of a record."""

from __future__ import annotations

import copy
import dataclasses
from collections.abc import Iterable, Mapping
from typing import Any

_MISSING = object()


def _get_nested(value: Any, keys: list[str]) -> Any:
    current = value
    for key in keys:
        if not isinstance(current, Mapping) or key not in current:
            return _MISSING
        current = current[key]
    return current


def _set_nested(target: dict, keys: list[str], new_value: Any) -> None:
    *parents, last = keys
    current = target
    for key in parents:
        current = current.setdefault(key, {})
    current[last] = new_value


def _mask(data: Mapping, paths: Iterable[str]) -> dict:
    out: dict = {}
    for path in paths:
        keys = path.split(".")
        value = _get_nested(data, keys)
        if value is not _MISSING:
            _set_nested(out, keys, copy.deepcopy(value))
    return out


def _is_instance(value: Any) -> bool:
    return dataclasses.is_dataclass(value) and not isinstance(value, type)


def _build(template: Any, data: Mapping) -> Any:
    """Rebuild a dataclass shaped like template from masked data."""
    cls = type(template)
    kwargs = {}
    for field in dataclasses.fields(cls):
        if not field.init or field.name not in data:
            continue
        value = data[field.name]
        current = getattr(template, field.name, None)
        if _is_instance(current) and isinstance(value, Mapping):
            value = _build(current, value)
        kwargs[field.name] = value
    try:
        return cls(**kwargs)
    except TypeError as exc:
        raise ValueError(f"cannot rebuild {cls.__name__} from masked data: {exc}") from exc


def apply_mask(obj: Any, paths: Iterable[str]) -> Any:
    """Return a copy of obj holding only the given dotted paths.

    obj is a dataclass instance or a mapping. Fields left out of a dataclass
    take their defaults; ValueError is raised if a field has none.
    """
    if _is_instance(obj):
        masked = _mask(dataclasses.asdict(obj), paths)
        return _build(obj, masked)
    if isinstance(obj, Mapping):
        return _mask(obj, paths)
    raise TypeError(f"cannot mask a value of type {type(obj).__name__}")