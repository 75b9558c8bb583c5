# blockflow/cli.py
# CLI for running blockflow scripts through the reference runner.

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from .commands import load_script
from .compiler import compile_blocks
from .errors import EngineError
from .expr import to_text
from .runner import FAILED, run_script_from_file


def _coerce(raw: str) -> Any:
    vl = raw.strip()
    # unwrap quotes first
    if len(vl) >= 2 and ((vl[0] == vl[-1] == '"') or (vl[0] == vl[-1] == "'")):
        return vl[1:-1]
    low = vl.lower()
    if low in ("true", "false"):
        return low == "true"
    try:
        return int(vl)
    except ValueError:
        pass
    try:
        return float(vl)
    except ValueError:
        return vl


def parse_inputs(items: Optional[List[str]]) -> Dict[str, Any]:
    """['a=1,b=x', 'c=true'] -> {'a': 1, 'b': 'x', 'c': True}"""
    inputs: Dict[str, Any] = {}
    for item in items or []:
        for kv in item.split(","):
            kv = kv.strip()
            if "=" in kv:
                k, v = kv.split("=", 1)
                inputs[k.strip()] = _coerce(v)
    return inputs


def _dumps(obj: Any) -> str:
    return json.dumps(obj, indent=2, sort_keys=True, default=to_text)


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(
        prog="blockflow",
        description="Run a blockflow command script; print logs and receipts.",
    )
    p.add_argument("script", nargs="?", help="Path to script (.json or pipe-delimited text).")
    p.add_argument("--in", dest="inputs", action="append", default=None,
                   help="Input KEY=VALUE[,KEY=VALUE] (repeatable).")
    p.add_argument("--data-dir", metavar="DIR", help="Resolve data files against DIR (default: script folder).")
    p.add_argument("--start", type=int, default=1, metavar="N", help="1-based command position to start at.")
    p.add_argument("--check", action="store_true", help="Compile only; report structural errors.")
    p.add_argument("--quiet", action="store_true", help="Do not echo to stdout while running.")
    p.add_argument("--print-logs", action="store_true")
    p.add_argument("--print-receipt", action="store_true")
    p.add_argument("--receipt-out", metavar="PATH", help="Write execution receipt to PATH (JSON).")
    args = p.parse_args(argv)

    if not args.script:
        p.error("script path required (e.g., scripts/loop.txt)")

    path = Path(args.script)
    if not path.is_file():
        p.error(f"script not found: {path}")

    if args.check:
        try:
            script = compile_blocks(load_script(path))
        except EngineError as exc:
            print(_dumps({"status": FAILED, "error": exc.to_dict()}))
            return 1
        print(f"OK: {len(script.block_defs)} block commands, {len(script.symbols)} symbols")
        return 0

    try:
        outcome, receipt = run_script_from_file(
            str(path),
            inputs=parse_inputs(args.inputs),
            data_dir=args.data_dir,
            echo_to_stdout=not args.quiet,
            start_index=max(args.start - 1, 0),
        )
    except EngineError as exc:
        # script could not be loaded
        print(_dumps({"engine": "blockflow", "status": FAILED, "reason": exc.message, "error": exc.to_dict()}))
        return 1

    receipt["script"] = {"path": str(path)}
    if args.print_logs and receipt.get("logs"):
        for line in receipt["logs"]:
            print(line if isinstance(line, str) else _dumps(line))
    if args.print_receipt:
        print(_dumps(receipt))
    if not outcome.ok:
        print(f"FAILED at @{outcome.position}: {outcome.error.message if outcome.error else ''}")

    if args.receipt_out:
        Path(args.receipt_out).write_text(_dumps(receipt), encoding="utf-8")
        print(f"Wrote receipt: {args.receipt_out}")
    return 0 if outcome.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
