from __future__ import annotations

import json
from typing import Any, Dict, Optional

import yaml

from emplode.emplode_datatypes import Symbol, EmplodeError
from emplode.emplode_scope import Scope


# --------------------------
# Helpers
# --------------------------

def _to_builtin(symbol: Symbol) -> Any:
    if isinstance(symbol, Scope):
        return {entry.name: _to_builtin(entry) for entry in symbol.entries if not entry.is_function}
    return symbol.value


def detect_format(data_hint: Optional[str] = None, filename: Optional[str] = None) -> Optional[str]:
    """
    Returns 'json' or 'yaml'. Uses the filename extension first and falls back
    to sniffing the data.
    """
    name = (filename or "").lower()
    if name.endswith(".json"):
        return "json"
    if name.endswith((".yaml", ".yml")):
        return "yaml"
    if data_hint is not None:
        s = data_hint.lstrip()
        if s.startswith("{") or s.startswith("["):
            return "json"
        return "yaml"
    return None


# --------------------------
# Public API
# --------------------------

def to_builtin(scope: Scope) -> Dict[str, Any]:
    """The declared values of scope as nested plain dicts (functions and built-ins left out)."""
    return _to_builtin(scope)


def serialize(scope: Scope, *, fmt: str, pretty: bool = True) -> str:
    """
    Convert the declared values of a scope tree into text.
    - fmt: 'json' | 'yaml'
    """
    f = (fmt or "").lower()
    built = to_builtin(scope)
    if f == "json":
        return json.dumps(built, ensure_ascii=False, indent=2 if pretty else None)
    if f == "yaml":
        return yaml.safe_dump(built, sort_keys=False)
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


def deserialize(data: bytes | bytearray | str, *, fmt: Optional[str] = None) -> Dict[str, Any]:
    """Parse JSON or YAML text into a mapping of names to values."""
    text = data.decode("utf-8", errors="replace") if isinstance(data, (bytes, bytearray)) else data
    f = fmt or detect_format(text)
    if f == "json":
        out = json.loads(text)
    elif f == "yaml":
        out = yaml.safe_load(text)
    else:
        raise ValueError(f"Unsupported serialization format: {fmt!r}")
    if out is None:
        return {}
    if not isinstance(out, dict):
        raise ValueError(f"Expected a mapping at the top level, got {type(out).__name__}.")
    return out


def apply_mapping(scope: Scope, data: Dict[str, Any]) -> Scope:
    """Assign values from a (possibly nested) mapping onto existing symbols."""
    for name, value in data.items():
        symbol = scope.get_entry(name)
        if symbol is None:
            raise EmplodeError(f"Unknown name '{name}' in scope '{scope.name}'.")
        if isinstance(value, dict):
            if not symbol.is_scope:
                raise EmplodeError(f"'{name}' is not a scope.")
            apply_mapping(symbol.as_scope(), value)
        elif isinstance(value, str):
            symbol.set_string(value)
        elif isinstance(value, (bool, int, float)):
            symbol.set_value(value)
        else:
            raise EmplodeError(f"Cannot assign {type(value).__name__} to '{name}'.")
    return scope


__all__ = [
    "to_builtin",
    "serialize",
    "deserialize",
    "apply_mapping",
    "detect_format",
]
