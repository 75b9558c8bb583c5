# blockflow/commands.py
# Command records, script documents (JSON or pipe-delimited text) and the
# "@N: [command|target|value]" reference format used in every message.

from __future__ import annotations
import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import jsonschema
from jsonschema import Draft202012Validator

from .errors import ScriptLoadError

SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "script.schema.json"

AND_WAIT = "AndWait"

# A single pipe separates fields; "||" stays inside expressions.
_FIELD_SEP = re.compile(r"(?<!\|)\|(?!\|)")


@dataclass(frozen=True)
class Command:
    command: str
    target: str = ""
    value: str = ""
    is_executable: bool = True

    @property
    def base_name(self) -> str:
        """Command name with any AndWait suffix removed."""
        aw = self.command.find(AND_WAIT)
        return self.command[:aw] if aw != -1 else self.command

    @property
    def has_and_wait(self) -> bool:
        return AND_WAIT in self.command


def fmt_command(cmd: Command) -> str:
    c = cmd.command
    if cmd.target:
        c += "|" + cmd.target
    if cmd.value:
        c += "|" + cmd.value
    return "[" + c + "]"


def fmt_cmd_ref(commands: List[Command], idx: int) -> str:
    if 0 <= idx < len(commands):
        return f"@{idx + 1}: {fmt_command(commands[idx])}"
    return f"@{idx + 1}"


# ---------- schema

_validator: Optional[Draft202012Validator] = None


def _get_validator() -> Draft202012Validator:
    global _validator
    if _validator is None:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        Draft202012Validator.check_schema(schema)
        _validator = Draft202012Validator(schema)
    return _validator


def validate_script_doc(doc: Dict[str, Any]) -> None:
    try:
        _get_validator().validate(doc)
    except jsonschema.ValidationError as exc:
        where = "/".join(str(p) for p in exc.absolute_path) or "<root>"
        raise ScriptLoadError(f"Invalid script document at {where}: {exc.message}") from exc


# ---------- loading

def commands_from_doc(doc: Dict[str, Any]) -> List[Command]:
    validate_script_doc(doc)
    out: List[Command] = []
    for item in doc.get("commands") or []:
        if "comment" in item:
            out.append(Command(command="", target=item["comment"], is_executable=False))
        else:
            out.append(Command(
                command=item["command"],
                target=item.get("target", ""),
                value=item.get("value", ""),
            ))
    return out


def parse_script_text(text: str) -> Dict[str, Any]:
    """Turn pipe-delimited script text into a script document."""
    items: List[Dict[str, Any]] = []
    for lineno, raw in enumerate((text or "").splitlines(), start=1):
        line = raw.strip()
        if not line:
            continue
        if line.startswith("#"):
            items.append({"type": "comment", "comment": line[1:].strip()})
            continue
        parts = [p.strip() for p in _FIELD_SEP.split(line)]
        if len(parts) > 3:
            raise ScriptLoadError(f"line {lineno}: expected 'command | target | value', got {raw.strip()!r}")
        item: Dict[str, Any] = {"command": parts[0]}
        if len(parts) > 1 and parts[1]:
            item["target"] = parts[1]
        if len(parts) > 2 and parts[2]:
            item["value"] = parts[2]
        items.append(item)
    return {"commands": items}


def load_script_text(text: str) -> List[Command]:
    return commands_from_doc(parse_script_text(text))


def load_script(path: str | Path) -> List[Command]:
    p = Path(path)
    if not p.is_file():
        raise ScriptLoadError(f"script not found: {p}")
    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() == ".json":
        try:
            doc = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ScriptLoadError(f"{p}: invalid JSON: {exc}") from exc
        if not isinstance(doc, dict):
            raise ScriptLoadError(f"{p}: top-level JSON value must be an object")
        return commands_from_doc(doc)
    return load_script_text(text)
