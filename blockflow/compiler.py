# blockflow/compiler.py
# Single-pass block compiler.
# Goals:
# - Discover and validate block nesting without a parser/AST.
# - Link every opener to its partners (elseIf/else/catch/finally/end) and back.
# - Record label and function names in the symbol table.
# Every failure is a StructuralError carrying the 1-based command position.

from __future__ import annotations
from typing import List, Optional

from .blockdefs import (
    LOOP_ENDS,
    LOOP_KINDS,
    BlockDef,
    CompiledScript,
    FunctionDef,
    IfDef,
    LoopDef,
    PartnerDef,
    TryDef,
)
from .commands import Command, fmt_cmd_ref
from .errors import StructuralError
from .stacks import Stack

CONTROL_COMMANDS = {
    "label", "goto", "gotoIf", "skipNext",
    "if", "elseIf", "else", "endIf",
    "try", "catch", "finally", "endTry",
    "while", "endWhile", "for", "endFor", "foreach", "endForeach",
    "forJson", "endForJson", "forXml", "endForXml",
    "continue", "break",
    "call", "function", "script", "return", "endFunction", "endScript",
    "exitTest",
    "loadJsonVars", "loadXmlVars", "loadVars",
}


class BlockCompiler:
    def __init__(self, commands: List[Command]):
        self.commands = list(commands)
        self.script = CompiledScript()
        self.lex_stack: Stack[BlockDef] = Stack()

    # ---------- validation helpers
    def _fail(self, idx: int, msg: str, prior: Optional[int] = None) -> None:
        raise StructuralError(fmt_cmd_ref(self.commands, idx) + msg, index=idx, prior_index=prior)

    def _assert_not_and_wait(self, idx: int) -> None:
        if self.commands[idx].has_and_wait:
            self._fail(idx, ", AndWait suffix is not valid for control-flow commands")

    def _assert_block_is_pending(self, expected: str, idx: int, desc: Optional[str] = None) -> BlockDef:
        top = self.lex_stack.top()
        if top is None:
            self._fail(idx, desc or f", without a beginning [{expected}]")
        return top  # type: ignore[return-value]

    def _assert_matching(self, cur: str, expected: str, idx: int, pend_idx: int) -> None:
        if cur != expected:
            self._fail(idx, ", does not match command " + fmt_cmd_ref(self.commands, pend_idx), pend_idx)

    def _link(self, idx: int, owner_idx: int) -> PartnerDef:
        pdef = PartnerDef(idx=idx, cmd_name=self.commands[idx].command, owner_idx=owner_idx)
        self.script.block_defs[idx] = pdef
        return pdef

    def _open(self, bdef: BlockDef) -> BlockDef:
        self.script.block_defs[bdef.idx] = bdef
        self.lex_stack.append(bdef)
        return bdef

    # ---------- the scan
    def compile(self) -> CompiledScript:
        for i, cmd in enumerate(self.commands):
            if not cmd.is_executable:
                continue
            name = cmd.base_name
            if name not in CONTROL_COMMANDS:
                continue
            self._assert_not_and_wait(i)
            handler = getattr(self, "_on_" + name, None)
            if handler is not None:
                handler(i, cmd)
            elif name in LOOP_KINDS:
                self._open(LoopDef(idx=i, cmd_name=name, kind=name))
            elif name in LOOP_ENDS:
                self._close_loop(i, name)

        if self.lex_stack:
            pend = self.lex_stack.pop()
            expected = "end" + pend.cmd_name[:1].upper() + pend.cmd_name[1:]
            self._fail(pend.idx, f", without a terminating [{expected}]")
        return self.script

    # labels & functions
    def _on_label(self, i: int, cmd: Command) -> None:
        self.script.symbols[cmd.target] = i

    def _on_function(self, i: int, cmd: Command) -> None:
        if not cmd.target:
            self._fail(i, ", requires a function name")
        self.script.symbols[cmd.target] = i
        self._open(FunctionDef(idx=i, cmd_name=cmd.base_name, name=cmd.target))

    _on_script = _on_function

    def _on_return(self, i: int, cmd: Command) -> None:
        desc = ", is not valid outside of a function/endFunction block"
        self._assert_block_is_pending("function", i, desc)
        func = self.lex_stack.find_enclosing(lambda b: isinstance(b, FunctionDef))
        if func is None:
            self._fail(i, desc)
        self._link(i, func.idx)  # type: ignore[union-attr]

    def _on_endFunction(self, i: int, cmd: Command) -> None:
        expected = cmd.base_name[3:].lower()
        func = self._assert_block_is_pending(expected, i)
        self.lex_stack.pop()
        self._assert_matching(func.cmd_name.lower(), expected, i, func.idx)
        if cmd.target:
            self._assert_matching(func.name, cmd.target, i, func.idx)  # type: ignore[attr-defined]
        func.end_idx = i  # type: ignore[attr-defined]
        self._link(i, func.idx)

    _on_endScript = _on_endFunction

    # if / elseIf / else / endIf
    def _on_if(self, i: int, cmd: Command) -> None:
        self._open(IfDef(idx=i, cmd_name="if"))

    def _pending_if(self, expected: str, i: int) -> IfDef:
        if_def = self._assert_block_is_pending(expected, i, ", is not valid outside of an if/endIf block")
        self._assert_matching(if_def.cmd_name, "if", i, if_def.idx)
        return if_def  # type: ignore[return-value]

    def _on_elseIf(self, i: int, cmd: Command) -> None:
        if_def = self._pending_if("elseIf", i)
        if if_def.else_idx is not None:
            self._fail(if_def.else_idx, " An else has to come after all elseIfs.", i)
        self._link(i, if_def.idx)
        if_def.else_if_idxs.append(i)

    def _on_else(self, i: int, cmd: Command) -> None:
        if_def = self._pending_if("if", i)
        if if_def.else_idx is not None:
            self._fail(i, " There can only be one else associated with a given if.", if_def.else_idx)
        self._link(i, if_def.idx)
        if_def.else_idx = i

    def _on_endIf(self, i: int, cmd: Command) -> None:
        if_def = self._assert_block_is_pending("if", i)
        self.lex_stack.pop()
        self._assert_matching(if_def.cmd_name, "if", i, if_def.idx)
        self._link(i, if_def.idx)
        if_def.end_idx = i  # type: ignore[attr-defined]

    # try / catch / finally / endTry
    def _on_try(self, i: int, cmd: Command) -> None:
        self._open(TryDef(idx=i, cmd_name="try", name=cmd.target))

    def _pending_try(self, i: int, desc: Optional[str] = None) -> TryDef:
        try_def = self._assert_block_is_pending("try", i, desc)
        self._assert_matching(try_def.cmd_name, "try", i, try_def.idx)
        return try_def  # type: ignore[return-value]

    def _on_catch(self, i: int, cmd: Command) -> None:
        try_def = self._pending_try(i, ", is not valid without a try block")
        if try_def.catch_idx is not None:
            self._fail(i, " There can only be one catch-block associated with a given try.", try_def.catch_idx)
        if try_def.finally_idx is not None:
            self._fail(try_def.finally_idx, " A finally-block has to be last in a try section.", i)
        self._link(i, try_def.idx)
        try_def.catch_idx = i

    def _on_finally(self, i: int, cmd: Command) -> None:
        try_def = self._pending_try(i)
        if try_def.finally_idx is not None:
            self._fail(i, " There can only be one finally-block associated with a given try.", try_def.finally_idx)
        self._link(i, try_def.idx)
        try_def.finally_idx = i

    def _on_endTry(self, i: int, cmd: Command) -> None:
        try_def = self._pending_try(i)
        self.lex_stack.pop()
        if cmd.target:
            self._assert_matching(try_def.name, cmd.target, i, try_def.idx)
        self._link(i, try_def.idx)
        try_def.end_idx = i

    # loops
    def _close_loop(self, i: int, end_name: str) -> None:
        expected = LOOP_ENDS[end_name]
        begin = self._assert_block_is_pending(expected, i)
        self.lex_stack.pop()
        self._assert_matching(begin.cmd_name, expected, i, begin.idx)
        begin.end_idx = i  # type: ignore[attr-defined]
        self._link(i, begin.idx)

    def _on_loop_jump(self, i: int, cmd: Command) -> None:
        loop = self.lex_stack.find_enclosing(
            lambda b: isinstance(b, LoopDef),
            stop=lambda b: isinstance(b, FunctionDef),
        )
        if loop is None:
            self._fail(i, ", is not valid outside of a loop")
        self._link(i, loop.idx)  # type: ignore[union-attr]

    _on_continue = _on_loop_jump
    _on_break = _on_loop_jump


def compile_blocks(commands: List[Command]) -> CompiledScript:
    """Build the BlockDef table and symbol table, or raise StructuralError."""
    return BlockCompiler(commands).compile()
