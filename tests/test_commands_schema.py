# tests/test_commands_schema.py
import json

import pytest

from blockflow.commands import (
    Command,
    commands_from_doc,
    fmt_cmd_ref,
    load_script,
    parse_script_text,
    validate_script_doc,
)
from blockflow.errors import ScriptLoadError


def test_valid_minimal_document():
    validate_script_doc({"commands": []})
    validate_script_doc({"name": "demo", "commands": [
        {"command": "echo", "target": "hi"},
        {"type": "comment", "comment": "note"},
    ]})


@pytest.mark.parametrize("doc", [
    {},
    {"commands": {}},
    {"commands": [{"target": "no command"}]},
    {"commands": [{"command": "echo", "extra": 1}]},
    {"commands": [{"command": "bad name"}]},
    {"commands": [], "unexpected": True},
])
def test_invalid_documents_raise_script_load_error(doc):
    with pytest.raises(ScriptLoadError):
        validate_script_doc(doc)


def test_comments_become_non_executable_commands():
    cmds = commands_from_doc({"commands": [
        {"comment": "heading"},
        {"command": "clickAndWait", "target": "id=go"},
    ]})
    assert cmds[0] == Command(command="", target="heading", is_executable=False)
    assert cmds[1].base_name == "click" and cmds[1].has_and_wait


def test_text_format_single_pipe_separates_fields():
    doc = parse_script_text("""
# setup
if | a || b
storeEval | 1 | x

endIf
""")
    assert doc["commands"] == [
        {"type": "comment", "comment": "setup"},
        {"command": "if", "target": "a || b"},
        {"command": "storeEval", "target": "1", "value": "x"},
        {"command": "endIf"},
    ]


def test_text_format_rejects_extra_fields():
    with pytest.raises(ScriptLoadError):
        parse_script_text("echo | a | b | c")


def test_load_script_from_json_and_text(tmp_path):
    j = tmp_path / "s.json"
    j.write_text(json.dumps({"commands": [{"command": "echo", "target": "x"}]}), encoding="utf-8")
    t = tmp_path / "s.txt"
    t.write_text("echo | x\n", encoding="utf-8")
    assert load_script(j) == load_script(t) == [Command("echo", "x")]
    with pytest.raises(ScriptLoadError):
        load_script(tmp_path / "missing.txt")


def test_fmt_cmd_ref_is_one_based():
    cmds = [Command("echo", "a"), Command("storeEval", "1", "x")]
    assert fmt_cmd_ref(cmds, 1) == "@2: [storeEval|1|x]"
    assert fmt_cmd_ref(cmds, 0) == "@1: [echo|a]"
