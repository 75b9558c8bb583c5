# tests/test_datafiles.py
import json

import pytest

from blockflow.datafiles import JsonVarsetReader, XmlVarsetReader, reader_factory
from blockflow.errors import DataFileError
from blockflow.runner import Runner

USERS = [{"name": "ann", "age": 30}, {"name": "bob", "age": 40}]
USERS_XML = '<testdata><vars name="ann" age="30"/><vars name="bob" age="40"/></testdata>'


@pytest.fixture
def data_dir(tmp_path):
    (tmp_path / "users.json").write_text(json.dumps(USERS), encoding="utf-8")
    (tmp_path / "users.xml").write_text(USERS_XML, encoding="utf-8")
    (tmp_path / "one.json").write_text(json.dumps(USERS[:1]), encoding="utf-8")
    return tmp_path


def run(text: str, data_dir, **inputs):
    runner = Runner(text, inputs=inputs, data_dir=str(data_dir), echo_to_stdout=False)
    outcome = runner.run()
    return outcome, runner


def echoed(runner):
    return [line for line in runner.receipt["logs"] if isinstance(line, str)]


def test_json_reader_cursor(data_dir):
    reader = JsonVarsetReader(base_dir=data_dir)
    assert reader.load("users.json") == ["name", "age"]
    assert not reader.at_end()
    assert reader.next_varset() == {"name": "ann", "age": 30}
    assert reader.next_varset() == {"name": "bob", "age": 40}
    assert reader.at_end()
    with pytest.raises(DataFileError):
        reader.next_varset()


def test_xml_reader_values_are_strings(data_dir):
    reader = reader_factory(base_dir=data_dir)("xml")
    assert isinstance(reader, XmlVarsetReader)
    assert reader.load(str(data_dir / "users.xml")) == ["name", "age"]
    assert reader.next_varset() == {"name": "ann", "age": "30"}


def test_inconsistent_varsets_are_rejected(tmp_path):
    (tmp_path / "bad.json").write_text(json.dumps([{"a": 1}, {"a": 2, "b": 3}]), encoding="utf-8")
    (tmp_path / "renamed.xml").write_text('<testdata><vars a="1"/><vars b="2"/></testdata>', encoding="utf-8")
    reader = JsonVarsetReader(base_dir=tmp_path)
    reader.load("bad.json")
    reader.next_varset()
    with pytest.raises(DataFileError) as exc:
        reader.next_varset()
    assert "expected 1 attributes, but found 2" in exc.value.message
    reader = XmlVarsetReader(base_dir=tmp_path)
    reader.load("renamed.xml")
    reader.next_varset()
    with pytest.raises(DataFileError) as exc:
        reader.next_varset()
    assert "found b, which does not appear" in exc.value.message


def test_missing_and_empty_files(tmp_path):
    (tmp_path / "empty.json").write_text("[]", encoding="utf-8")
    with pytest.raises(DataFileError):
        JsonVarsetReader(base_dir=tmp_path).load("nope.json")
    with pytest.raises(DataFileError):
        JsonVarsetReader(base_dir=tmp_path).load("empty.json")


def test_for_json_loop_scopes_varset_names(data_dir):
    outcome, runner = run("""
forJson | users.json
echo | ${name}:${age}
endForJson
""", data_dir, name="outer")
    assert outcome.status == "completed"
    assert echoed(runner) == ["ann:30", "bob:40"]
    assert runner.env["name"] == "outer"
    assert "age" not in runner.env


def test_for_xml_loop(data_dir):
    outcome, runner = run("""
forXml | users.xml
echo | ${name}
endForXml
""", data_dir)
    assert outcome.status == "completed"
    assert echoed(runner) == ["ann", "bob"]


def test_load_json_vars_with_selector(data_dir):
    outcome, runner = run("""
loadJsonVars | users.json | name == "bob"
echo | ${age}
""", data_dir)
    assert outcome.status == "completed"
    assert echoed(runner) == ["40"]


def test_load_vars_without_selector_needs_single_varset(data_dir):
    outcome, runner = run("loadJsonVars | one.json", data_dir)
    assert outcome.status == "completed"
    assert runner.env == {"name": "ann", "age": 30}

    outcome, _ = run("loadJsonVars | users.json", data_dir)
    assert outcome.status == "failed"
    assert outcome.error.kind == "datafile"
    assert "Multiple JSON objects are not valid" in outcome.error.message


def test_load_vars_selector_without_match(data_dir):
    outcome, _ = run('loadXmlVars | users.xml | name == "cy"', data_dir)
    assert outcome.status == "failed"
    assert "not found for selector expression" in outcome.error.message


def test_deprecated_load_vars_reads_xml(data_dir):
    outcome, runner = run('loadVars | users.xml | age == "30"', data_dir)
    assert outcome.status == "completed"
    assert runner.env["name"] == "ann"


def test_missing_data_file_can_be_caught(data_dir):
    outcome, runner = run("""
try
forJson | missing.json
echo | never
endForJson
catch | "not found"
echo | no data
endTry
""", data_dir)
    assert outcome.status == "completed"
    assert echoed(runner) == ["no data"]
