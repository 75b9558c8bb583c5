# blockflow/scope.py
# Save/restore of named variables in the single shared variable namespace.
#
# A block or call that introduces locals captures the prior binding of each
# name (or the fact that it did not exist) and hands the snapshot back on exit.

from __future__ import annotations
from typing import Any, Dict, Iterable, Mapping


class _Missing:
    def __repr__(self) -> str:
        return "<missing>"


MISSING = _Missing()

Saved = Dict[str, Any]


def capture(variables: Mapping[str, Any], names: Iterable[str]) -> Saved:
    saved: Saved = {}
    for name in names or ():
        if name not in saved:
            saved[name] = variables[name] if name in variables else MISSING
    return saved


def restore(variables: Dict[str, Any], saved: Saved) -> None:
    for name, prior in (saved or {}).items():
        if prior is MISSING:
            variables.pop(name, None)
        else:
            variables[name] = prior


def declare(variables: Dict[str, Any], names: Iterable[str]) -> None:
    """Make sure each local exists so expressions can reference it."""
    for name in names or ():
        if name not in variables:
            variables[name] = None


def assign(variables: Dict[str, Any], values: Mapping[str, Any]) -> None:
    for name, value in (values or {}).items():
        variables[name] = value
