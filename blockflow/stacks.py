# blockflow/stacks.py
# Runtime frames: a CallStack of CallFrames, each owning its own BlockStack.

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, Iterator, Optional, TypeVar

from .scope import Saved

T = TypeVar("T")

TRYING = "trying"
CATCHING = "catching"
FINALLYING = "finallying"


class Stack(list, Generic[T]):
    """A list with stack helpers; searches run from the top down."""

    def is_empty(self) -> bool:
        return len(self) == 0

    def top(self) -> Optional[T]:
        return self[-1] if self else None

    def index_where(self, has_criteria: Callable[[T], bool],
                    stop: Optional[Callable[[T], bool]] = None) -> Optional[int]:
        """Topmost match; the search gives up at the first frame satisfying stop."""
        for i in range(len(self) - 1, -1, -1):
            if has_criteria(self[i]):
                return i
            if stop is not None and stop(self[i]):
                return None
        return None

    def find_enclosing(self, has_criteria: Callable[[T], bool],
                       stop: Optional[Callable[[T], bool]] = None) -> Optional[T]:
        i = self.index_where(has_criteria, stop)
        return None if i is None else self[i]

    def unwind_to(self, has_criteria: Callable[[T], bool],
                  on_pop: Optional[Callable[[T], None]] = None) -> Optional[T]:
        """Pop until the top satisfies has_criteria; None (and empty) if nothing does."""
        while self:
            top = self[-1]
            if has_criteria(top):
                return top
            self.pop()
            if on_pop is not None:
                on_pop(top)
        return None

    def is_here(self, idx: int) -> bool:
        top = self.top()
        return top is not None and getattr(top, "idx", None) == idx


# ---------- block frames

@dataclass
class BlockFrame:
    idx: int
    saved_vars: Saved = field(default_factory=dict)


@dataclass
class IfFrame(BlockFrame):
    else_if_itr: Iterator[int] = field(default_factory=lambda: iter(()))
    skip_else_blocks: bool = False


@dataclass
class LoopFrame(BlockFrame):
    kind: str = "while"
    is_complete: bool = False
    # per-kind cursor state (condition text, values, position, reader, ...)
    state: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TryFrame(BlockFrame):
    name: str = ""
    phase: Optional[str] = None  # None: no catch and no finally, never intercepts
    has_caught: bool = False
    has_finaled: bool = False
    pending: Optional[Any] = None  # bubble suspended while this finally runs

    @property
    def intercepts(self) -> bool:
        return self.phase is not None


BlockStack = Stack[BlockFrame]


# ---------- call frames

@dataclass
class CallFrame:
    function_idx: Optional[int] = None
    name: str = ""
    args: Dict[str, Any] = field(default_factory=dict)
    return_idx: Optional[int] = None
    saved_vars: Saved = field(default_factory=dict)
    block_stack: BlockStack = field(default_factory=Stack)
    is_returning: bool = False

    @property
    def is_top_level(self) -> bool:
        return self.function_idx is None


class CallStack(Stack[CallFrame]):
    def __init__(self) -> None:
        super().__init__()
        self.append(CallFrame())  # top-level execution state

    def active_block_stack(self) -> BlockStack:
        return self[-1].block_stack
