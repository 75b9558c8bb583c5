# tests/test_compiler.py
import pytest

from blockflow.blockdefs import FunctionDef, IfDef, LoopDef, PartnerDef, TryDef
from blockflow.commands import load_script_text
from blockflow.compiler import compile_blocks
from blockflow.errors import StructuralError


def compile_text(text: str):
    return compile_blocks(load_script_text(text))


def test_if_chain_links_both_ways():
    script = compile_text("""
if | x == 1
elseIf | x == 2
else
endIf
""")
    if_def = script.get(0)
    assert isinstance(if_def, IfDef)
    assert if_def.else_if_idxs == [1]
    assert if_def.else_idx == 2
    assert if_def.end_idx == 3
    for idx in (1, 2, 3):
        partner = script.get(idx)
        assert isinstance(partner, PartnerDef) and partner.owner_idx == 0
        assert script.owner_of(idx) is if_def


def test_try_catch_finally_and_loops():
    script = compile_text("""
while | true
try | t
catch
finally
endTry | t
break
endWhile
""")
    loop = script.get(0)
    assert isinstance(loop, LoopDef) and loop.kind == "while" and loop.end_idx == 6
    tdef = script.get(1)
    assert isinstance(tdef, TryDef)
    assert (tdef.catch_idx, tdef.finally_idx, tdef.end_idx) == (2, 3, 4)
    assert tdef.intercepts
    assert script.get(5).owner_idx == 0  # break -> loop


def test_symbols_record_labels_and_functions():
    script = compile_text("""
label | top
function | f
return
endFunction | f
""")
    assert script.symbols == {"top": 0, "f": 1}
    assert isinstance(script.get(1), FunctionDef)
    assert script.get(2).owner_idx == 1
    assert script.get(3).owner_idx == 1


def test_comments_are_not_compiled():
    script = compile_text("""
# just a note
if | true
# endIf is still required
endIf
""")
    assert isinstance(script.get(1), IfDef)
    assert script.get(1).end_idx == 3


@pytest.mark.parametrize("text, fragment", [
    ("if | true", "without a terminating [endIf]"),
    ("while | x\nendFor", "does not match command @1: [while|x]"),
    ("endIf", "without a beginning [if]"),
    ("if | x\nelse\nelse\nendIf", "only be one else"),
    ("if | x\nelse\nelseIf | y\nendIf", "else has to come after all elseIfs"),
    ("try\nfinally\ncatch\nendTry", "finally-block has to be last"),
    ("try\ncatch\ncatch\nendTry", "only be one catch-block"),
    ("try\nfinally\nfinally\nendTry", "only be one finally-block"),
    ("try | a\nendTry | b", "does not match command"),
    ("break", "not valid outside of a loop"),
    ("return", "not valid outside of a function"),
    ("ifAndWait | x\nendIf", "AndWait suffix is not valid"),
    ("function", "requires a function name"),
])
def test_structural_errors(text, fragment):
    with pytest.raises(StructuralError) as exc:
        compile_text(text)
    assert fragment in exc.value.message


def test_break_cannot_cross_function_boundary():
    with pytest.raises(StructuralError):
        compile_text("""
while | true
function | f
break
endFunction
endWhile
""")


def test_mismatched_closer_reports_both_positions():
    with pytest.raises(StructuralError) as exc:
        compile_text("while | true\nforeach | v | 1, 2\nendWhile")
    assert exc.value.index == 2
    assert exc.value.prior_index == 1
