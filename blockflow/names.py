# blockflow/names.py
# Validation helpers for variable, parameter and label identifiers.
from __future__ import annotations
import re
from typing import Iterable, List, Optional

from .errors import EvalError

# Leading letter, then word characters.
_NAME_RE = re.compile(r'^[a-zA-Z]\w*$')


def is_valid_name(name: str | None) -> bool:
    return isinstance(name, str) and bool(_NAME_RE.match(name))


def validate_name(name: str | None, desc: str, *, index: Optional[int] = None) -> str:
    if not is_valid_name(name):
        raise EvalError(f"Invalid character(s) in {desc} name: '{name}'", index=index)
    return name  # type: ignore[return-value]


def validate_names(names: Iterable[str], desc: str, *, index: Optional[int] = None) -> List[str]:
    return [validate_name(n, desc, index=index) for n in names]
