# tests/test_engine_api.py
import pytest

from blockflow.commands import Command, load_script_text
from blockflow.engine import CommandBubble, Engine
from blockflow.errors import JumpRestrictionError


def drive(engine, on_host):
    engine.initialize_for_run()
    while True:
        cmd = engine.compute_next_command()
        if cmd is None:
            return
        if engine.handles(cmd):
            engine.execute(cmd)
        else:
            on_host(engine, cmd)


def test_sequencer_skips_comments():
    engine = Engine([Command("", "note", is_executable=False), Command("echo", "x")])
    engine.initialize_for_run()
    assert engine.compute_next_command() == Command("echo", "x")
    assert engine.here == 1
    assert engine.compute_next_command() is None


def test_branch_and_stop_requests():
    engine = Engine([Command("echo", "a"), Command("echo", "b")])
    engine.initialize_for_run()
    engine.compute_next_command()
    with pytest.raises(JumpRestrictionError):
        engine.request_branch(5)
    engine.request_branch(0)
    assert engine.compute_next_command() == Command("echo", "a")
    engine.request_stop()
    assert engine.stop_requested
    assert engine.compute_next_command() is None


def test_handles_only_control_commands():
    engine = Engine([])
    assert engine.handles(Command("while", "true"))
    assert not engine.handles(Command("echo", "x"))
    assert not engine.handles(Command("if", "x", is_executable=False))


def test_block_ranges_follow_try_segments():
    engine = Engine(load_script_text("""
try | t
echo | a
catch
echo | b
finally
echo | c
endTry
"""))
    engine.initialize_for_run()
    assert engine.find_block_range(1).desc == "try-block 't'"
    catch_range = engine.find_block_range(3)
    assert (catch_range.top_idx, catch_range.bottom_idx) == (2, 4)
    assert catch_range.desc == "catch-block for 't'"
    assert engine.find_block_range(6).desc == "finally-block for 't'"
    assert engine.find_block_range(6).fmt() == " @[5-7]"


def test_break_is_suspended_while_finally_runs():
    engine = Engine(load_script_text("""
while | true
try
break
finally
echo | f
endTry
echo | unreachable
endWhile
"""))
    seen = []

    def on_host(eng, cmd):
        seen.append((cmd.target, eng.bubbling))

    drive(engine, on_host)
    assert [t for t, _ in seen] == ["f"]
    bubble = seen[0][1]
    assert isinstance(bubble, CommandBubble)
    assert bubble.src_idx == 2
    assert engine.bubbling is None
    assert engine.active_block_stack().is_empty()
