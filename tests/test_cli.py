# tests/test_cli.py
import json

from blockflow.cli import main, parse_inputs


def test_parse_inputs_coerces_values():
    assert parse_inputs(["a=1,b=2.5", "c=true", "d='x'", "e=plain"]) == {
        "a": 1, "b": 2.5, "c": True, "d": "x", "e": "plain",
    }


def test_main_runs_script_and_writes_receipt(tmp_path, capsys):
    script = tmp_path / "count.txt"
    script.write_text("""
for | i=0; i<n; i++
echo | tick ${i}
endFor
""", encoding="utf-8")
    out = tmp_path / "receipt.json"
    code = main([str(script), "--in", "n=2", "--receipt-out", str(out)])
    assert code == 0
    printed = capsys.readouterr().out
    assert "tick 0" in printed and "tick 1" in printed
    receipt = json.loads(out.read_text(encoding="utf-8"))
    assert receipt["status"] == "completed"
    assert receipt["env"] == {"n": 2}
    assert receipt["script"]["path"] == str(script)


def test_main_reports_failures_with_exit_code(tmp_path, capsys):
    script = tmp_path / "fail.txt"
    script.write_text("throwError | nope\n", encoding="utf-8")
    code = main([str(script), "--quiet"])
    assert code == 1
    assert "FAILED at @1: nope" in capsys.readouterr().out


def test_check_compiles_only(tmp_path, capsys):
    good = tmp_path / "good.txt"
    good.write_text("label | a\nif | true\nendIf\n", encoding="utf-8")
    bad = tmp_path / "bad.txt"
    bad.write_text("if | true\n", encoding="utf-8")
    assert main([str(good), "--check"]) == 0
    assert "OK: 2 block commands, 1 symbols" in capsys.readouterr().out
    assert main([str(bad), "--check"]) == 1
    report = json.loads(capsys.readouterr().out)
    assert report["error"]["kind"] == "structural"
    assert report["error"]["position"] == 1
