# blockflow/blockdefs.py
# Static block structure, one record per structurally significant command index.

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional

LOOP_KINDS = ("while", "for", "foreach", "forJson", "forXml")
LOOP_ENDS = {"end" + k[0].upper() + k[1:]: k for k in LOOP_KINDS}


@dataclass
class BlockDef:
    idx: int
    cmd_name: str


@dataclass
class IfDef(BlockDef):
    else_if_idxs: List[int] = field(default_factory=list)
    else_idx: Optional[int] = None
    end_idx: Optional[int] = None


@dataclass
class TryDef(BlockDef):
    name: str = ""
    catch_idx: Optional[int] = None
    finally_idx: Optional[int] = None
    end_idx: Optional[int] = None

    @property
    def intercepts(self) -> bool:
        return self.catch_idx is not None or self.finally_idx is not None


@dataclass
class LoopDef(BlockDef):
    kind: str = "while"
    end_idx: Optional[int] = None


@dataclass
class FunctionDef(BlockDef):
    name: str = ""
    end_idx: Optional[int] = None


@dataclass
class PartnerDef(BlockDef):
    """elseIf/else/endIf, catch/finally/endTry, loop ends, continue/break, return/endFunction."""
    owner_idx: int = -1


@dataclass
class CompiledScript:
    block_defs: Dict[int, BlockDef] = field(default_factory=dict)
    symbols: Dict[str, int] = field(default_factory=dict)

    def get(self, idx: int) -> Optional[BlockDef]:
        return self.block_defs.get(idx)

    def owner_of(self, idx: int) -> Optional[BlockDef]:
        bdef = self.block_defs.get(idx)
        if isinstance(bdef, PartnerDef):
            return self.block_defs.get(bdef.owner_idx)
        return bdef
