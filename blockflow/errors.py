# blockflow/errors.py
# Error taxonomy shared by the compiler, the engine and the host runner.

from __future__ import annotations
from typing import Optional


class EngineError(Exception):
    """Base class; `kind` tags the variant, `index` is the 0-based command position."""
    kind = "engine"

    def __init__(self, message: str, *, index: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.index = index

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.message,
            "position": None if self.index is None else self.index + 1,
        }


class StructuralError(EngineError):
    """Unterminated/mismatched block, duplicate else/catch/finally, bad suffix."""
    kind = "structural"

    def __init__(self, message: str, *, index: Optional[int] = None, prior_index: Optional[int] = None):
        super().__init__(message, index=index)
        self.prior_index = prior_index


class JumpRestrictionError(EngineError):
    kind = "jump"


class ScopeError(EngineError):
    kind = "scope"


class EvalError(EngineError):
    kind = "eval"


class UndefinedReferenceError(EngineError):
    kind = "undefined"


class DataFileError(EngineError):
    kind = "datafile"


class CommandError(EngineError):
    kind = "command"


class ScriptLoadError(EngineError):
    kind = "load"


# Errors that are never offered to a catch block.
FATAL_KINDS = (StructuralError, ScopeError, UndefinedReferenceError)
