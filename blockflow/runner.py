"""blockflow host runner.

- Drives an Engine one command at a time: control commands go to the engine,
  everything else is a host command executed here.
- Host commands: store, storeEval, getEval, echo, assertEval, throwError.
  An AndWait suffix is accepted and ignored.
- `${name}` placeholders in store/echo/assertEval/throwError text are replaced
  with variable values; unknown names are left as written.
- Failures raised by any command are offered to Engine.on_command_error();
  the run ends with a RunOutcome instead of an exception.
- Receipts: engine, logs, steps, env, status (+ reason/error/position on failure).
"""

from __future__ import annotations
import copy
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .commands import Command, fmt_command, load_script, load_script_text
from .datafiles import reader_factory
from .engine import Engine, Evaluate
from .errors import CommandError, EngineError, EvalError
from .expr import evaluate as default_evaluate, to_text
from .names import validate_name

COMPLETED = "completed"
STOPPED = "stopped"
FAILED = "failed"


@dataclass
class RunOutcome:
    status: str
    error: Optional[EngineError] = None
    position: Optional[int] = None  # 1-based command position of the failure

    @property
    def ok(self) -> bool:
        return self.status != FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "error": None if self.error is None else self.error.to_dict(),
            "position": self.position,
        }


class Runner:
    def __init__(
        self,
        script: Union[str, List[Command]],
        *,
        inputs: Optional[Dict[str, Any]] = None,
        evaluator: Optional[Evaluate] = None,
        data_dir: Optional[Union[str, Path]] = None,
        echo_to_stdout: bool = True,
        start_index: int = 0,
    ):
        self.commands: List[Command] = load_script_text(script) if isinstance(script, str) else list(script)
        self.inputs: Dict[str, Any] = dict(inputs or {})
        self._evaluate = evaluator or default_evaluate
        self.data_dir = data_dir
        self.echo_to_stdout = bool(echo_to_stdout)
        self.start_index = start_index
        self.env: Dict[str, Any] = {}
        self.engine: Optional[Engine] = None
        self.receipt: Dict[str, Any] = {
            "engine": "blockflow",
            "env": {},
            "logs": [],
            "steps": [],
        }

    # ---------- helpers
    _placeholder_rx = re.compile(r"\$\{([a-zA-Z_][a-zA-Z0-9_]*)\}")

    def _interpolate(self, s: str) -> str:
        def repl(m):
            name = m.group(1)
            return to_text(self.env[name]) if name in self.env else m.group(0)
        return self._placeholder_rx.sub(repl, s or "")

    def _eval(self, text: str) -> Any:
        try:
            return self._evaluate(text, self.env)
        except EngineError:
            raise
        except Exception as exc:
            raise EvalError(f"While evaluating expression: {text}: {exc}") from exc

    def _append_step(self, idx: int, cmd: Command) -> None:
        self.receipt["steps"].append({
            "event": "command",
            "index": idx,
            "command": cmd.command,
            "target": cmd.target,
            "value": cmd.value,
        })

    # ---------- host commands
    def exec_command(self, cmd: Command) -> None:
        name = cmd.base_name

        if name == "store":
            var = validate_name(cmd.value, "variable")
            self.env[var] = self._interpolate(cmd.target)
            return

        if name == "storeEval":
            var = validate_name(cmd.value, "variable")
            self.env[var] = self._eval(cmd.target)
            return

        if name == "getEval":
            self._eval(cmd.target)
            return

        if name == "echo":
            text = self._interpolate(cmd.target)
            if self.echo_to_stdout:
                print(text)
            self.receipt["logs"].append(text)
            return

        if name == "assertEval":
            actual = to_text(self._eval(cmd.target))
            expected = self._interpolate(cmd.value)
            if actual != expected:
                raise CommandError(f"Actual value '{actual}' did not match '{expected}'")
            return

        if name == "throwError":
            raise CommandError(self._interpolate(cmd.target) or "Error thrown")

        raise CommandError(f"Unknown command: {fmt_command(cmd)}")

    # ---------- run
    def _finish(self, outcome: RunOutcome) -> RunOutcome:
        self.receipt["env"] = dict(self.env)
        self.receipt["status"] = outcome.status
        if outcome.error is not None:
            self.receipt["reason"] = outcome.error.message
            self.receipt["error"] = outcome.error.to_dict()
            self.receipt["position"] = outcome.position
        return outcome

    def _failed(self, err: EngineError) -> RunOutcome:
        position = None if err.index is None else err.index + 1
        return self._finish(RunOutcome(FAILED, err, position))

    def compile(self) -> Engine:
        """Build a fresh engine for this script; raises StructuralError."""
        self.engine = Engine(
            self.commands,
            self.env,
            evaluator=self._evaluate,
            reader_factory=reader_factory(base_dir=self.data_dir),
            start_index=self.start_index,
            logs=self.receipt["logs"],
        )
        self.engine.initialize_for_run()
        return self.engine

    def run(self) -> RunOutcome:
        self.env = dict(self.inputs)
        self.receipt.update({"engine": "blockflow", "logs": [], "steps": [], "env": {}})
        for key in ("status", "reason", "error", "position"):
            self.receipt.pop(key, None)
        try:
            engine = self.compile()
        except EngineError as exc:
            return self._failed(exc)

        while True:
            cmd = engine.compute_next_command()
            if cmd is None:
                break
            idx = engine.here
            self._append_step(idx, cmd)  # type: ignore[arg-type]
            try:
                if engine.handles(cmd):
                    engine.execute(cmd)
                else:
                    self.exec_command(cmd)
            except EngineError as err:
                if err.index is None:
                    err.index = idx
                try:
                    handled = engine.on_command_error(err)
                except EngineError as nested:
                    if nested.index is None:
                        nested.index = idx
                    return self._failed(nested)
                if not handled:
                    return self._failed(err)

        return self._finish(RunOutcome(STOPPED if engine.stop_requested else COMPLETED))


def run_script_from_file(
    script_path: str,
    inputs: Optional[Dict[str, Any]] = None,
    *,
    data_dir: Optional[str] = None,
    echo_to_stdout: bool = True,
    start_index: int = 0,
) -> Tuple[RunOutcome, Dict[str, Any]]:
    """Load a .json or text script and run it; data files resolve next to the script by default."""
    commands = load_script(script_path)
    runner = Runner(
        commands,
        inputs=inputs,
        data_dir=data_dir if data_dir is not None else str(Path(script_path).resolve().parent),
        echo_to_stdout=echo_to_stdout,
        start_index=start_index,
    )
    outcome = runner.run()
    return outcome, copy.deepcopy(runner.receipt)
