# blockflow/engine.py
# Execution engine: sequencer, jump restriction, control-command handlers and
# the bubbling machine that carries errors and deferred control transfers
# (break/continue/return/exitTest) through pending finally blocks.
#
# The host drives it one command at a time:
#   engine.initialize_for_run()
#   while (cmd := engine.compute_next_command()) is not None:
#       try:
#           engine.execute(cmd) if engine.handles(cmd) else <host effect>
#       except EngineError as err:
#           if not engine.on_command_error(err): <fail>

from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from .blockdefs import CompiledScript, FunctionDef, IfDef, LoopDef, PartnerDef, TryDef
from .commands import Command, fmt_cmd_ref
from .compiler import CONTROL_COMMANDS, compile_blocks
from .datafiles import ReaderFactory, reader_factory as default_reader_factory
from .errors import (
    FATAL_KINDS,
    DataFileError,
    EngineError,
    EvalError,
    JumpRestrictionError,
    ScopeError,
    UndefinedReferenceError,
)
from .expr import assigned_names, evaluate as default_evaluate, split_list, to_text, truthy
from .names import validate_name, validate_names
from .scope import assign, capture, declare, restore
from .stacks import (
    CATCHING,
    FINALLYING,
    TRYING,
    BlockFrame,
    BlockStack,
    CallFrame,
    CallStack,
    IfFrame,
    LoopFrame,
    TryFrame,
)

Evaluate = Callable[[str, Dict[str, Any]], Any]
FramePredicate = Callable[[BlockFrame], bool]

# validate -> local names, initialize, continue?, iterate
LoopHooks = Tuple[
    Callable[[LoopFrame], List[str]],
    Callable[[LoopFrame], None],
    Callable[[LoopFrame], bool],
    Callable[[LoopFrame], None],
]


# ---------- bubbles

@dataclass
class ErrorBubble:
    error: BaseException
    src_idx: int


@dataclass
class CommandBubble:
    src_idx: int
    is_ceiling: Optional[FramePredicate] = None
    crosses_calls: bool = False


# ---------- jump ranges

@dataclass
class CmdRange:
    top_idx: int
    bottom_idx: int
    desc: str

    def fmt(self) -> str:
        return f" @[{self.top_idx + 1}-{self.bottom_idx + 1}]"


def is_loop_frame(frame: BlockFrame) -> bool:
    return isinstance(frame, LoopFrame)


class Engine:
    def __init__(
        self,
        commands: List[Command],
        variables: Optional[Dict[str, Any]] = None,
        *,
        evaluator: Optional[Evaluate] = None,
        reader_factory: Optional[ReaderFactory] = None,
        start_index: int = 0,
        logs: Optional[List[Dict[str, Any]]] = None,
    ):
        self.commands = list(commands)
        self.variables: Dict[str, Any] = variables if variables is not None else {}
        self._evaluate = evaluator or default_evaluate
        self._reader_factory = reader_factory or default_reader_factory()
        self.start_index = start_index
        self.logs: List[Dict[str, Any]] = logs if logs is not None else []
        self.script = CompiledScript()
        self.call_stack = CallStack()
        self._here: Optional[int] = None
        self._started = False
        self._branch_idx: Optional[int] = None
        self._stopped = False
        self._resume_idx: Optional[int] = None
        self._resuming = False

    # ---------- helpers
    def _log(self, level: str, event: str, message: str, **extra: Any) -> None:
        entry: Dict[str, Any] = {"level": level, "event": event, "message": message}
        entry.update(extra)
        self.logs.append(entry)

    @property
    def here(self) -> Optional[int]:
        return self._here

    def _fmt(self, idx: Optional[int]) -> str:
        return fmt_cmd_ref(self.commands, -1 if idx is None else idx)

    def _fmt_here(self) -> str:
        return self._fmt(self._here)

    def _eval(self, text: str) -> Any:
        try:
            return self._evaluate(text, self.variables)
        except EngineError as exc:
            if exc.index is None:
                exc.index = self._here
            raise
        except Exception as exc:
            # evaluators are pluggable; anything they raise becomes an EvalError
            raise EvalError(f"While evaluating expression: {text}: {exc}", index=self._here) from exc

    def _def_here(self):
        return self.script.get(self._here) if self._here is not None else None

    def _try_def(self, frame: TryFrame) -> TryDef:
        return self.script.get(frame.idx)  # type: ignore[return-value]

    def _owes_catch(self, frame: BlockFrame) -> bool:
        if not isinstance(frame, TryFrame):
            return False
        return self._try_def(frame).catch_idx is not None and not frame.has_caught

    def _owes_finally(self, frame: BlockFrame) -> bool:
        if not isinstance(frame, TryFrame):
            return False
        return self._try_def(frame).finally_idx is not None and not frame.has_finaled

    def _restore_frame(self, frame: BlockFrame) -> None:
        restore(self.variables, frame.saved_vars)

    # ---------- lifecycle
    def initialize_for_run(self) -> CompiledScript:
        """Compile the command list and reset all per-run state."""
        self.script = compile_blocks(self.commands)
        self.call_stack = CallStack()
        self._here = None
        self._started = False
        self._branch_idx = None
        self._stopped = False
        self._resume_idx = None
        self._resuming = False
        return self.script

    # ---------- stacks
    def active_block_stack(self) -> BlockStack:
        return self.call_stack.active_block_stack()

    def push_block(self, frame: BlockFrame) -> BlockFrame:
        self.active_block_stack().append(frame)
        return frame

    def pop_block(self) -> BlockFrame:
        frame = self.active_block_stack().pop()
        self._restore_frame(frame)
        return frame

    def push_call(self, frame: CallFrame) -> CallFrame:
        self.call_stack.append(frame)
        return frame

    def pop_call(self) -> CallFrame:
        if len(self.call_stack) <= 1:
            raise ScopeError(self._fmt_here() + " No active function call to return from", index=self._here)
        frame = self.call_stack.pop()
        while frame.block_stack:
            self._restore_frame(frame.block_stack.pop())
        restore(self.variables, frame.saved_vars)
        return frame

    @property
    def bubbling(self) -> Optional[Any]:
        """The innermost bubble suspended while a finally block runs, if any."""
        for call_frame in reversed(self.call_stack):
            for frame in reversed(call_frame.block_stack):
                if isinstance(frame, TryFrame) and frame.pending is not None:
                    return frame.pending
        return None

    # ---------- sequencer
    def compute_next_command(self) -> Optional[Command]:
        if self._stopped:
            return None
        if not self._started:
            self._started = True
            idx = self.start_index
        elif self._branch_idx is not None:
            idx = self._branch_idx
            self._branch_idx = None
            self._log("info", "branch", "branch => " + self._fmt(idx))
        else:
            idx = (self._here if self._here is not None else -1) + 1
        while idx < len(self.commands):
            if self.commands[idx].is_executable:
                self._here = idx
                return self.commands[idx]
            idx += 1
        self._here = len(self.commands)
        return None

    def request_branch(self, idx: int) -> None:
        if not (0 <= idx < len(self.commands)):
            raise JumpRestrictionError(
                self._fmt_here() + f" Cannot branch to non-existent command @{idx + 1}", index=self._here)
        self._branch_idx = idx

    def request_stop(self) -> None:
        self._stopped = True

    @property
    def stop_requested(self) -> bool:
        return self._stopped

    # ---------- dispatch
    def handles(self, cmd: Command) -> bool:
        return cmd.is_executable and cmd.base_name in CONTROL_COMMANDS

    def execute(self, cmd: Command) -> None:
        """Run the control command at the current position."""
        handler = getattr(self, "do_" + cmd.base_name, None)
        if handler is None or not self.handles(cmd):
            raise EngineError(self._fmt_here() + ", is not a control-flow command", index=self._here)
        self._resuming = self._resume_idx is not None and self._resume_idx == self._here
        self._resume_idx = None
        try:
            handler(cmd)
        except EngineError as exc:
            if exc.index is None:
                exc.index = self._here
            raise
        finally:
            self._resuming = False

    def _assert_active_scope(self, expected_idx: int) -> BlockFrame:
        top = self.active_block_stack().top()
        if top is None or top.idx != expected_idx:
            active = "none" if top is None else self._fmt(top.idx)
            raise ScopeError(self._fmt_here() + " unexpected command, active command was " + active,
                             index=self._here)
        return top

    # ---------- jump restriction
    def find_block_range(self, locus: int) -> Optional[CmdRange]:
        """Innermost loop, function or try segment containing locus."""
        for idx in range(locus - 1, -1, -1):
            bdef = self.script.get(idx)
            if bdef is None or isinstance(bdef, (PartnerDef, IfDef)):
                continue
            end_idx = getattr(bdef, "end_idx", None)
            if end_idx is None or locus > end_idx:
                continue
            if isinstance(bdef, LoopDef):
                return CmdRange(bdef.idx, end_idx, bdef.cmd_name + " loop")
            if isinstance(bdef, FunctionDef):
                return CmdRange(bdef.idx, end_idx, f"function '{bdef.name}'")
            if isinstance(bdef, TryDef):
                return self._isolate_try_range(locus, bdef)
        return None

    @staticmethod
    def _isolate_try_range(locus: int, tdef: TryDef) -> Optional[CmdRange]:
        bounds = [(tdef.idx, "try")]
        if tdef.catch_idx is not None:
            bounds.append((tdef.catch_idx, "catch"))
        if tdef.finally_idx is not None:
            bounds.append((tdef.finally_idx, "finally"))
        end_idx = tdef.end_idx if tdef.end_idx is not None else tdef.idx
        for k, (start, segment) in enumerate(bounds):
            last = k + 1 == len(bounds)
            stop = end_idx if last else bounds[k + 1][0]
            if start <= locus < stop or (last and locus == stop):
                desc = segment + "-block"
                if tdef.name:
                    desc += ("" if segment == "try" else " for") + f" '{tdef.name}'"
                return CmdRange(start, stop, desc)
        return None

    def _assert_intra_block_jump(self, from_idx: int, to_idx: int) -> None:
        from_range = self.find_block_range(from_idx)
        to_range = self.find_block_range(to_idx)
        if from_range is None and to_range is None:
            return
        if from_range is not None and from_range == to_range:
            return
        msg = " Attempt to jump"
        if from_range is not None:
            msg += " out of " + from_range.desc + from_range.fmt()
        if to_range is not None:
            msg += " into " + to_range.desc + to_range.fmt()
        raise JumpRestrictionError(
            self._fmt_here() + msg + ". You cannot jump into, or out of: loops, functions, or try blocks.",
            index=self._here,
        )

    def _jump(self, dest: int) -> None:
        assert self._here is not None
        self._assert_intra_block_jump(self._here, dest)
        stack = self.active_block_stack()
        while isinstance(stack.top(), IfFrame):
            if_def: IfDef = self.script.get(stack.top().idx)  # type: ignore
            if if_def.idx < dest <= (if_def.end_idx or 0):
                break
            self.pop_block()
        self.request_branch(dest)

    # ---------- label / goto / gotoIf / skipNext
    def do_label(self, cmd: Command) -> None:
        pass

    def do_goto(self, cmd: Command) -> None:
        self._goto(cmd.target)

    def _goto(self, label: str) -> None:
        if label not in self.script.symbols:
            raise UndefinedReferenceError(
                self._fmt_here() + f" Target label '{label}' is not found.", index=self._here)
        self._jump(self.script.symbols[label])

    def do_gotoIf(self, cmd: Command) -> None:
        if truthy(self._eval(cmd.target)):
            self._goto(cmd.value)

    def do_skipNext(self, cmd: Command) -> None:
        count = (cmd.target or "").strip()
        if not count:
            n = 1
        else:
            value = self._eval(count)
            try:
                n = int(value) if not isinstance(value, bool) else None
            except (TypeError, ValueError, OverflowError):
                n = None
            if n is None:
                raise EvalError(self._fmt_here() + " Requires a numeric value", index=self._here)
            if isinstance(value, float) and value != n:
                raise EvalError(self._fmt_here() + " Requires a whole number", index=self._here)
            if n < 0:
                raise EvalError(self._fmt_here() + " Requires a number >= 0", index=self._here)
        if n != 0:
            self._jump(self._here + n + 1)  # type: ignore[operator]

    # ---------- if / elseIf / else / endIf
    def do_if(self, cmd: Command) -> None:
        if_def: IfDef = self._def_here()
        frame = IfFrame(idx=if_def.idx, else_if_itr=iter(list(if_def.else_if_idxs)))
        self.push_block(frame)
        self._cascade_else_if(frame, cmd.target)

    def do_elseIf(self, cmd: Command) -> None:
        pdef: PartnerDef = self._def_here()
        frame: IfFrame = self._assert_active_scope(pdef.owner_idx)  # type: ignore[assignment]
        if frame.skip_else_blocks:
            self.request_branch(self.script.get(pdef.owner_idx).end_idx)  # type: ignore[union-attr]
        else:
            self._cascade_else_if(frame, cmd.target)

    def do_else(self, cmd: Command) -> None:
        pdef: PartnerDef = self._def_here()
        frame: IfFrame = self._assert_active_scope(pdef.owner_idx)  # type: ignore[assignment]
        if frame.skip_else_blocks:
            self.request_branch(self.script.get(pdef.owner_idx).end_idx)  # type: ignore[union-attr]

    def do_endIf(self, cmd: Command) -> None:
        pdef: PartnerDef = self._def_here()
        self._assert_active_scope(pdef.owner_idx)
        self.pop_block()

    def _cascade_else_if(self, frame: IfFrame, cond: str) -> None:
        if truthy(self._eval(cond)):
            frame.skip_else_blocks = True
            return
        if_def: IfDef = self.script.get(frame.idx)  # type: ignore[assignment]
        nxt = next(frame.else_if_itr, None)
        if nxt is not None:
            self.request_branch(nxt)
        elif if_def.else_idx is not None:
            self.request_branch(if_def.else_idx)
        else:
            self.request_branch(if_def.end_idx)  # type: ignore[arg-type]

    # ---------- try / catch / finally / endTry
    def _try_depth(self) -> int:
        return sum(
            1 for cf in self.call_stack for f in cf.block_stack
            if isinstance(f, TryFrame) and f.intercepts
        )

    def in_try_section(self) -> bool:
        return self._try_depth() > 0

    def do_try(self, cmd: Command) -> None:
        tdef: TryDef = self._def_here()
        frame = TryFrame(idx=tdef.idx, name=cmd.target)
        self.push_block(frame)
        if not tdef.intercepts:
            self._log("warning", "try",
                      self._fmt_here() + " does not have a catch-block nor a finally-block,"
                      " and therefore serves no purpose")
            return
        if tdef.catch_idx is not None:
            catch_dcl = self.commands[tdef.catch_idx].target
            self._log("info", "try", f"{cmd.target} catchable: {catch_dcl or 'ANY'}")
        frame.phase = TRYING
        self._log("info", "try", f"++ try nesting: {self._try_depth()}")

    def _assert_try_block(self) -> TryFrame:
        pdef: PartnerDef = self._def_here()
        return self._assert_active_scope(pdef.owner_idx)  # type: ignore[return-value]

    def do_catch(self, cmd: Command) -> None:
        frame = self._assert_try_block()
        if frame.phase != CATCHING:
            tdef = self._try_def(frame)
            self.request_branch(tdef.finally_idx if tdef.finally_idx is not None else tdef.end_idx)

    def do_finally(self, cmd: Command) -> None:
        frame = self._assert_try_block()
        if frame.intercepts and not frame.has_finaled:
            frame.phase = FINALLYING
            frame.has_finaled = True
        self._log("info", "try", "entering finally block")

    def do_endTry(self, cmd: Command) -> None:
        frame = self._assert_try_block()
        self.pop_block()
        bubble = frame.pending
        frame.pending = None
        if frame.intercepts:
            self._log("info", "try", f"-- try nesting: {self._try_depth()}")
        self._log("info", "try", f"end of try '{frame.name}'")
        if bubble is None:
            return
        if isinstance(bubble, ErrorBubble):
            self._log("info", "bubbling", "error-bubbling continuing...")
            raise bubble.error
        if self._bubble_command(bubble):
            return
        self._log("info", "bubbling",
                  "command-bubbling complete - suspended command executing now " + self._fmt(bubble.src_idx))
        self._resume_idx = bubble.src_idx
        self.request_branch(bubble.src_idx)

    # ---------- error bubbling
    def _unwind_to_try(self, has_criteria: FramePredicate) -> Optional[TryFrame]:
        """Pop block frames, then call frames, until a frame satisfies has_criteria."""
        while True:
            frame = self.active_block_stack().unwind_to(has_criteria, on_pop=self._restore_frame)
            if frame is not None:
                return frame  # type: ignore[return-value]
            if len(self.call_stack) <= 1:
                return None
            call_frame = self.pop_call()
            self._log("info", "bubbling", f"function '{call_frame.name}' aborting due to error")

    def _is_matching_error(self, err: BaseException, catch_dcl: str) -> bool:
        if not catch_dcl:
            return True
        expected = self._eval(catch_dcl)
        message = str(err)
        if isinstance(expected, re.Pattern):
            return expected.search(message) is not None
        return to_text(expected) in message

    def on_command_error(self, err: BaseException) -> bool:
        """Route a failed command into a catch or finally; False means the run must stop."""
        if isinstance(err, EngineError) and err.index is None:
            err.index = self._here
        if isinstance(err, FATAL_KINDS):
            self._log("error", "error", f"fatal: {err}")
            return False
        if not self.in_try_section():
            return False
        src_idx = self._here if self._here is not None else -1
        frame = self._unwind_to_try(lambda f: isinstance(f, TryFrame) and f.intercepts)
        if frame is None:
            return False
        tdef = self._try_def(frame)
        self._log("info", "bubbling", f"Bubbling begins: try @{frame.idx + 1}, {frame.phase}")
        if frame.phase != TRYING and not self._owes_finally(frame):
            self._log("warning", "bubbling", f"No unspent finally block, ending this try section :: {err}")
            frame.pending = ErrorBubble(err, src_idx)
            self.request_branch(tdef.end_idx)  # type: ignore[arg-type]
            return True
        while frame is not None:
            tdef = self._try_def(frame)
            if self._owes_catch(frame) and self._is_matching_error(err, self.commands[tdef.catch_idx].target):
                self._log("info", "bubbling", f"@{src_idx + 1}, error has been caught :: {err}")
                frame.has_caught = True
                frame.phase = CATCHING
                frame.pending = None
                self.request_branch(tdef.catch_idx)  # type: ignore[arg-type]
                return True
            if self._owes_finally(frame):
                self._log("warning", "bubbling", f"Bubbling suspended while finally block runs :: {err}")
                frame.pending = ErrorBubble(err, src_idx)
                frame.phase = FINALLYING
                frame.has_finaled = True
                self.request_branch(tdef.finally_idx)  # type: ignore[arg-type]
                return True
            # nothing owed here; leave this try section
            self.pop_block()
            frame = self._unwind_to_try(
                lambda f: isinstance(f, TryFrame) and (self._owes_catch(f) or self._owes_finally(f)))
        self._log("error", "bubbling", f"Error was not caught: {err}")
        return False

    # ---------- command bubbling
    def _find_transfer_stop(self, bubble: CommandBubble) -> Optional[Tuple[str, int, TryFrame]]:
        lowest = 0 if bubble.crosses_calls else len(self.call_stack) - 1
        for call_pos in range(len(self.call_stack) - 1, lowest - 1, -1):
            for frame in reversed(self.call_stack[call_pos].block_stack):
                if bubble.is_ceiling is not None and bubble.is_ceiling(frame):
                    return None
                if not isinstance(frame, TryFrame):
                    continue
                if frame.phase == FINALLYING and frame.pending is not None:
                    return "replace", call_pos, frame
                if self._owes_finally(frame):
                    return "finally", call_pos, frame
        return None

    def _unwind_to_frame(self, call_pos: int, target: BlockFrame) -> None:
        while len(self.call_stack) - 1 > call_pos:
            self.pop_call()
        self.active_block_stack().unwind_to(lambda f: f is target, on_pop=self._restore_frame)

    def _bubble_command(self, bubble: CommandBubble) -> bool:
        """Suspend the command on the next try that must run a finally first."""
        stop = self._find_transfer_stop(bubble)
        if stop is None:
            return False
        how, call_pos, frame = stop
        self._unwind_to_frame(call_pos, frame)
        tdef = self._try_def(frame)
        if how == "replace":
            prior = frame.pending
            if isinstance(prior, ErrorBubble):
                self._log("warning", "bubbling",
                          f"Bubbling error: {prior.error}, replaced with command " + self._fmt(bubble.src_idx))
            else:
                self._log("warning", "bubbling",
                          "Command suspension " + self._fmt(prior.src_idx)  # type: ignore[union-attr]
                          + ", replaced with " + self._fmt(bubble.src_idx))
            frame.pending = bubble
            self.request_branch(tdef.end_idx)  # type: ignore[arg-type]
            return True
        self._log("warning", "bubbling",
                  "Command " + self._fmt(bubble.src_idx) + ", suspended while finally block runs")
        frame.pending = bubble
        frame.phase = FINALLYING
        frame.has_finaled = True
        self.request_branch(tdef.finally_idx)  # type: ignore[arg-type]
        return True

    def _transition_bubbling(self, is_ceiling: Optional[FramePredicate], crosses_calls: bool = False) -> bool:
        bubble = CommandBubble(src_idx=self._here, is_ceiling=is_ceiling,  # type: ignore[arg-type]
                               crosses_calls=crosses_calls)
        return self._bubble_command(bubble)

    # ---------- loops
    def _enter_loop(self, hooks: LoopHooks) -> None:
        validate, initialize, should_continue, iterate = hooks
        loop_def: LoopDef = self._def_here()
        stack = self.active_block_stack()
        if not stack.is_here(loop_def.idx):
            frame = LoopFrame(idx=loop_def.idx, kind=loop_def.kind)
            self.push_block(frame)
            local_names = validate(frame)
            frame.saved_vars = capture(self.variables, local_names)
            declare(self.variables, local_names)
            initialize(frame)
            self._log("info", "loop", f"{loop_def.kind} loop begins @{loop_def.idx + 1}", locals=list(local_names))
        else:
            frame = stack.top()  # type: ignore[assignment]
            iterate(frame)
        if not should_continue(frame):
            frame.is_complete = True
            self.request_branch(loop_def.end_idx)  # type: ignore[arg-type]

    def _iterate_loop(self, cmd: Command) -> None:
        pdef: PartnerDef = self._def_here()
        frame: LoopFrame = self._assert_active_scope(pdef.owner_idx)  # type: ignore[assignment]
        if frame.is_complete:
            self.pop_block()
            self._log("info", "loop", f"{frame.kind} loop ends @{frame.idx + 1}")
        else:
            self.request_branch(pdef.owner_idx)

    def _requires(self, value: str, what: str) -> None:
        if not value:
            raise EngineError(self._fmt_here() + what, index=self._here)

    def do_while(self, cmd: Command) -> None:
        def validate(loop: LoopFrame) -> List[str]:
            self._requires(cmd.target, " 'while' requires a condition expression.")
            return []
        self._enter_loop((
            validate,
            lambda loop: None,
            lambda loop: truthy(self._eval(cmd.target)),
            lambda loop: None,
        ))

    def do_for(self, cmd: Command) -> None:
        def validate(loop: LoopFrame) -> List[str]:
            self._requires(cmd.target, " 'for' requires: <init-stmt>; <condition>; <iter-stmt>.")
            specs = split_list(cmd.target, ";")
            if len(specs) != 3:
                raise EngineError(self._fmt_here() + " 'for' requires <init-stmt>; <condition>; <iter-stmt>.",
                                  index=self._here)
            loop.state.update(init=specs[0], cond=specs[1], iter=specs[2])
            names = validate_names(split_list(cmd.value, ","), "variable", index=self._here) if cmd.value else []
            for name in assigned_names(specs[0]):
                if name not in names:
                    names.append(name)
            return names
        self._enter_loop((
            validate,
            lambda loop: self._eval(loop.state["init"]),
            lambda loop: truthy(self._eval(loop.state["cond"])),
            lambda loop: self._eval(loop.state["iter"]),
        ))

    def do_foreach(self, cmd: Command) -> None:
        var_name = cmd.target

        def validate(loop: LoopFrame) -> List[str]:
            self._requires(var_name, " 'foreach' requires a variable name.")
            self._requires(cmd.value, " 'foreach' requires comma-separated values.")
            validate_name(var_name, "variable", index=self._here)
            values = self._eval("[" + cmd.value + "]")
            if len(values) == 1 and isinstance(values[0], list):
                values = values[0]
            loop.state["values"] = values
            return [var_name, "_i"]

        def initialize(loop: LoopFrame) -> None:
            loop.state["i"] = 0
            if loop.state["values"]:
                self.variables[var_name] = loop.state["values"][0]

        def should_continue(loop: LoopFrame) -> bool:
            self.variables["_i"] = loop.state["i"]
            return loop.state["i"] < len(loop.state["values"])

        def iterate(loop: LoopFrame) -> None:
            loop.state["i"] += 1
            if loop.state["i"] < len(loop.state["values"]):
                self.variables[var_name] = loop.state["values"][loop.state["i"]]

        self._enter_loop((validate, initialize, should_continue, iterate))

    def _data_loop_hooks(self, kind: str, cmd: Command) -> LoopHooks:
        def validate(loop: LoopFrame) -> List[str]:
            self._requires(cmd.target, f" '{cmd.base_name}' requires a {kind.upper()} file path.")
            reader = self._reader_factory(kind)
            loop.state["reader"] = reader
            return reader.load(cmd.target)

        def should_continue(loop: LoopFrame) -> bool:
            reader = loop.state["reader"]
            at_end = reader.at_end()
            if not at_end:
                assign(self.variables, reader.next_varset())
            return not at_end

        return validate, (lambda loop: None), should_continue, (lambda loop: None)

    def do_forJson(self, cmd: Command) -> None:
        self._enter_loop(self._data_loop_hooks("json", cmd))

    def do_forXml(self, cmd: Command) -> None:
        self._enter_loop(self._data_loop_hooks("xml", cmd))

    do_endWhile = _iterate_loop
    do_endFor = _iterate_loop
    do_endForeach = _iterate_loop
    do_endForJson = _iterate_loop
    do_endForXml = _iterate_loop

    # ---------- break / continue
    def _drop_to_loop(self, cmd: Command) -> Optional[LoopFrame]:
        if not self._resuming:
            if cmd.target and not truthy(self._eval(cmd.target)):
                return None
            if self._transition_bubbling(is_loop_frame):
                return None
        frame = self.active_block_stack().unwind_to(is_loop_frame, on_pop=self._restore_frame)
        if frame is None:
            raise ScopeError(self._fmt_here() + ", is not valid outside of an active loop", index=self._here)
        return frame  # type: ignore[return-value]

    def do_continue(self, cmd: Command) -> None:
        frame = self._drop_to_loop(cmd)
        if frame is not None:
            self.request_branch(frame.idx)

    def do_break(self, cmd: Command) -> None:
        frame = self._drop_to_loop(cmd)
        if frame is not None:
            frame.is_complete = True
            self.request_branch(self.script.get(frame.idx).end_idx)  # type: ignore[union-attr]

    # ---------- call / function / return
    def _parse_args(self, arg_spec: str) -> Dict[str, Any]:
        args: Dict[str, Any] = {}
        for parm in split_list(arg_spec, ","):
            name, sep, expr = parm.partition("=")
            name = validate_name(name.strip(), "parameter", index=self._here)
            if not sep:
                raise EvalError(self._fmt_here() + f" Argument '{name}' requires a value: {name}=<expr>",
                                index=self._here)
            args[name] = self._eval(expr)
        return args

    def do_call(self, cmd: Command) -> None:
        name = cmd.target
        func_idx = self.script.symbols.get(name)
        if func_idx is None or not isinstance(self.script.get(func_idx), FunctionDef):
            raise UndefinedReferenceError(self._fmt_here() + f" Function does not exist: {name}.", index=self._here)
        top = self.call_stack.top()
        if top.is_returning and top.return_idx == self._here:
            self.pop_call()
            self._log("info", "call", f"returned from function '{name}'")
            return
        args = self._parse_args(cmd.value)
        saved = capture(self.variables, args.keys())
        assign(self.variables, args)
        self.push_call(CallFrame(function_idx=func_idx, name=name, args=args,
                                 return_idx=self._here, saved_vars=saved))
        self._log("info", "call", f"calling function '{name}'", depth=len(self.call_stack) - 1)
        self.request_branch(func_idx)

    def do_function(self, cmd: Command) -> None:
        func_def: FunctionDef = self._def_here()
        top = self.call_stack.top()
        if top.function_idx == func_def.idx:
            assign(self.variables, top.args)
        else:
            self._log("info", "call", f"skipping over function '{func_def.name}'")
            self.request_branch(func_def.end_idx)  # type: ignore[arg-type]

    def do_script(self, cmd: Command) -> None:
        self._log("warning", "deprecated",
                  "The script command has been deprecated and will be removed in future releases."
                  " Please use function instead.")
        self.do_function(cmd)

    def _return_from_function(self, return_expr: Optional[str]) -> None:
        pdef: PartnerDef = self._def_here()
        top = self.call_stack.top()
        if top.function_idx != pdef.owner_idx:
            return  # passing over the function text
        if not self._resuming:
            if return_expr:
                self.variables["_result"] = self._eval(return_expr)
            if self._transition_bubbling(None):
                return
        top.is_returning = True
        self.request_branch(top.return_idx)  # type: ignore[arg-type]

    def do_return(self, cmd: Command) -> None:
        self._return_from_function(cmd.target)

    def do_endFunction(self, cmd: Command) -> None:
        self._return_from_function(None)

    def do_endScript(self, cmd: Command) -> None:
        self._log("warning", "deprecated",
                  "The endScript command has been deprecated and will be removed in future releases."
                  " Please use endFunction instead.")
        self._return_from_function(None)

    # ---------- exitTest
    def do_exitTest(self, cmd: Command) -> None:
        if not self._resuming and self._transition_bubbling(None, crosses_calls=True):
            return
        self._log("info", "exit", "exitTest: stopping execution")
        self.request_stop()

    # ---------- data files
    def _load_vars(self, kind: str, cmd: Command) -> None:
        filepath, selector = cmd.target, cmd.value
        self._requires(filepath, f" Requires a {kind.upper()} file path.")
        reader = self._reader_factory(kind)
        reader.load(filepath)
        desc = reader.desc
        assign(self.variables, reader.next_varset())
        if not selector:
            if not reader.at_end():
                raise DataFileError(
                    self._fmt_here() + f" Multiple {desc}s are not valid for this command."
                    f' (A specific {desc} can be selected by specifying: name == "value".)',
                    index=self._here)
            return
        found = self._eval(selector)
        if not isinstance(found, bool):
            raise EvalError(self._fmt_here() + f", {selector} is not a boolean expression", index=self._here)
        while not found and not reader.at_end():
            assign(self.variables, reader.next_varset())
            found = truthy(self._eval(selector))
        if not found:
            raise DataFileError(
                self._fmt_here() + f" {desc} not found for selector expression: {selector}; in input file {filepath}",
                index=self._here)

    def do_loadJsonVars(self, cmd: Command) -> None:
        self._load_vars("json", cmd)

    def do_loadXmlVars(self, cmd: Command) -> None:
        self._load_vars("xml", cmd)

    def do_loadVars(self, cmd: Command) -> None:
        self._log("warning", "deprecated",
                  "The loadVars command has been deprecated and will be removed in future releases."
                  " Please use loadXmlVars instead.")
        self._load_vars("xml", cmd)
