# blockflow/expr.py
# Minimal Pratt-style expression parser and evaluator for command parameters.
# Expressions run against the shared variable dict; assignment writes to it.
# Precedence (highest -> lowest):
#   postfix: ++, --, [index], .member
#   prefix: !, not, +, -, ++, --
#   *, /, %
#   +, -
#   comparisons: <, <=, >, >=
#   equality: ==, !=, ===, !==
#   &&, and
#   ||, or
#   assignment: =, +=, -=   (right associative)
#   sequence: ,             (top level only; value of the last item)

from __future__ import annotations
import math
import re
from typing import Any, Dict, List, Optional

from .errors import EvalError

TOK_REGEX = re.compile(
    r"""\s*(?:
    (?P<number>\d+(?:\.\d+)?)|
    (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')|
    (?P<op>===|!==|==|!=|<=|>=|&&|\|\||\+\+|--|\+=|-=|[-+*/%<>=!(),\[\].])|
    (?P<ident>[A-Za-z_$][A-Za-z0-9_$]*)
    )""", re.VERBOSE
)
REGEX_LITERAL = re.compile(r"/((?:[^/\\\n]|\\.)+)/([a-z]*)")
KEYWORDS = {"and", "or", "not", "true", "false", "null", "undefined"}

# A '/' after one of these is division, otherwise it opens a regex literal.
_VALUE_ENDERS = {"number", "string", "ident", "regex"}

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0"}
_ESC_RE = re.compile(r"\\(.)", re.S)


def _unescape(s: str) -> str:
    s = s[1:-1]  # drop quotes
    return _ESC_RE.sub(lambda m: _ESCAPES.get(m.group(1), m.group(1)), s)


def _regex_flags(flags: str) -> int:
    out = 0
    if "i" in flags:
        out |= re.IGNORECASE
    if "m" in flags:
        out |= re.MULTILINE
    if "s" in flags:
        out |= re.DOTALL
    return out


class Lexer:
    def __init__(self, text: str):
        self.text = text or ""
        self.pos = 0
        self.tokens = []
        while self.pos < len(self.text):
            if not self.text[self.pos:].strip():
                break
            if self._regex_allowed():
                m = REGEX_LITERAL.match(self.text, self._skip_ws(self.pos))
                if m:
                    try:
                        rx = re.compile(m.group(1), _regex_flags(m.group(2)))
                    except re.error as exc:
                        raise SyntaxError(f"Invalid regular expression /{m.group(1)}/: {exc}") from exc
                    self.tokens.append(("regex", rx))
                    self.pos = m.end(0)
                    continue
            m = TOK_REGEX.match(self.text, self.pos)
            if not m or m.lastgroup is None:
                raise SyntaxError(f"Bad token at {self.pos}: {self.text[self.pos:self.pos+10]!r}")
            self.pos = m.end(0)
            if m.lastgroup == "number":
                val = m.group("number")
                self.tokens.append(("number", float(val) if "." in val else int(val)))
            elif m.lastgroup == "string":
                self.tokens.append(("string", _unescape(m.group("string"))))
            elif m.lastgroup == "op":
                self.tokens.append(("op", m.group("op")))
            elif m.lastgroup == "ident":
                ident = m.group("ident")
                self.tokens.append(("kw" if ident in KEYWORDS else "ident", ident))
        self.tokens.append(("eof", None))
        self.i = 0

    def _skip_ws(self, pos: int) -> int:
        while pos < len(self.text) and self.text[pos].isspace():
            pos += 1
        return pos

    def _regex_allowed(self) -> bool:
        if self.text[self._skip_ws(self.pos):self._skip_ws(self.pos) + 1] != "/":
            return False
        if not self.tokens:
            return True
        kind, val = self.tokens[-1]
        if kind in _VALUE_ENDERS:
            return False
        if kind == "kw" and val in ("true", "false", "null", "undefined"):
            return False
        return not (kind == "op" and val in (")", "]", "++", "--"))

    def peek(self):
        return self.tokens[self.i]

    def pop(self, *kinds):
        tok = self.peek()
        if kinds and tok[0] not in kinds:
            raise SyntaxError(f"Expected {kinds}, got {tok}")
        self.i += 1
        return tok

    def expect_op(self, op: str):
        tok = self.pop()
        if tok != ("op", op):
            raise SyntaxError(f"Expected '{op}', got {tok}")
        return tok


BP = {
    "=": 5, "+=": 5, "-=": 5,
    "||": 10, "or": 10,
    "&&": 20, "and": 20,
    "==": 30, "!=": 30, "===": 30, "!==": 30,
    "<": 40, "<=": 40, ">": 40, ">=": 40,
    "+": 50, "-": 50,
    "*": 60, "/": 60, "%": 60,
    "++": 110, "--": 110, "[": 110, ".": 110,
}

PREFIX_BP = 100
ASSIGN_OPS = {"=", "+=", "-="}
BINARY_OPS = {"||", "&&", "==", "!=", "===", "!==", "<", "<=", ">", ">=", "+", "-", "*", "/", "%"}


class Parser:
    def __init__(self, text: str):
        self.lx = Lexer(text)

    def parse(self):
        items = [self.parse_bp(0)]
        while self.lx.peek() == ("op", ","):
            self.lx.pop()
            items.append(self.parse_bp(0))
        if self.lx.peek()[0] != "eof":
            raise SyntaxError(f"Unexpected trailing tokens: {self.lx.peek()}")
        if len(items) == 1:
            return items[0]
        return {"type": "Sequence", "items": items}

    def nud(self, tok):
        t, v = tok
        if t == "number":
            return {"type": "Number", "value": v}
        if t == "string":
            return {"type": "String", "value": v}
        if t == "regex":
            return {"type": "Regex", "value": v}
        if t == "kw" and v in ("true", "false"):
            return {"type": "Boolean", "value": v == "true"}
        if t == "kw" and v in ("null", "undefined"):
            return {"type": "Null"}
        if t == "ident":
            return {"type": "Identifier", "name": v}
        if t == "op" and v == "(":
            e = self.parse_bp(0)
            self.lx.expect_op(")")
            return e
        if t == "op" and v == "[":
            items = []
            if self.lx.peek() != ("op", "]"):
                items.append(self.parse_bp(0))
                while self.lx.peek() == ("op", ","):
                    self.lx.pop()
                    items.append(self.parse_bp(0))
            self.lx.expect_op("]")
            return {"type": "List", "items": items}
        if t == "op" and v in ("++", "--"):
            target = self.parse_bp(PREFIX_BP)
            if target.get("type") != "Identifier":
                raise SyntaxError(f"Invalid operand for prefix '{v}'")
            return {"type": "Update", "name": target["name"], "op": v, "prefix": True}
        if (t == "kw" and v == "not") or (t == "op" and v in ("!", "+", "-")):
            op = "!" if v == "not" else v
            return {"type": "Unary", "op": op, "expr": self.parse_bp(PREFIX_BP)}
        raise SyntaxError(f"Unexpected token: {tok}")

    def led(self, left, tok):
        t, v = tok
        if v in ASSIGN_OPS:
            if left.get("type") != "Identifier":
                raise SyntaxError("Invalid left-hand side in assignment")
            right = self.parse_bp(BP[v])  # right associative
            return {"type": "Assign", "name": left["name"], "op": v, "value": right}
        if v in ("++", "--"):
            if left.get("type") != "Identifier":
                raise SyntaxError(f"Invalid operand for postfix '{v}'")
            return {"type": "Update", "name": left["name"], "op": v, "prefix": False}
        if v == "[":
            index = self.parse_bp(0)
            self.lx.expect_op("]")
            return {"type": "Index", "target": left, "index": index}
        if v == ".":
            _, name = self.lx.pop("ident", "kw")
            return {"type": "Member", "target": left, "name": name}
        op = {"and": "&&", "or": "||"}.get(v, v)
        if op in BINARY_OPS:
            right = self.parse_bp(BP[v] + 1)
            return {"type": "Binary", "op": op, "left": left, "right": right}
        raise SyntaxError(f"Unexpected infix: {tok}")

    def parse_bp(self, min_bp):
        tok = self.lx.pop()
        left = self.nud(tok)
        while True:
            t, v = self.lx.peek()
            if t == "eof":
                break
            if (t == "kw" and v in ("and", "or")) or (t == "op" and v in BP):
                lbp = BP[v]
                if lbp < min_bp:
                    break
                self.lx.pop()
                left = self.led(left, (t, v))
                continue
            break
        return left


def parse_expr(text: str):
    try:
        return Parser(text or "").parse()
    except SyntaxError as exc:
        raise EvalError(f"While evaluating expression: {text}: {exc}") from exc


# ---------- evaluation

def truthy(value: Any) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, (int, float)):
        return not (value == 0 or (isinstance(value, float) and math.isnan(value)))
    if isinstance(value, str):
        return value != ""
    return True


def to_text(value: Any) -> str:
    if value is None:
        return "null"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, list):
        return ",".join(to_text(v) for v in value)
    if isinstance(value, re.Pattern):
        return "/" + value.pattern + "/"
    return str(value)


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _normalize_number(v: float) -> Any:
    if isinstance(v, float) and v.is_integer() and abs(v) < 2 ** 53:
        return int(v)
    return v


class Evaluator:
    """Tree-walking evaluator over parse_expr() nodes."""
    def __init__(self, env: Dict[str, Any]):
        self.env = env

    def eval(self, node: Any) -> Any:
        if node is None:
            return None
        if not isinstance(node, dict):
            return node
        typ = node.get("type")
        if typ == "Identifier":
            name = node.get("name")
            if name not in self.env:
                raise EvalError(f"{name} is not defined")
            return self.env[name]
        if typ in ("String", "Number", "Boolean", "Regex"):
            return node.get("value")
        if typ == "Null":
            return None
        if typ == "List":
            return [self.eval(item) for item in node.get("items") or []]
        if typ == "Sequence":
            result = None
            for item in node.get("items") or []:
                result = self.eval(item)
            return result
        if typ == "Assign":
            value = self.eval(node.get("value"))
            name = node["name"]
            if node.get("op") == "+=":
                value = self._binary("+", self.eval({"type": "Identifier", "name": name}), value)
            elif node.get("op") == "-=":
                value = self._binary("-", self.eval({"type": "Identifier", "name": name}), value)
            self.env[name] = value
            return value
        if typ == "Update":
            name = node["name"]
            old = self.eval({"type": "Identifier", "name": name})
            if not _is_number(old):
                raise EvalError(f"'{node['op']}' requires a number, {name} is {to_text(old)}")
            new = old + 1 if node["op"] == "++" else old - 1
            self.env[name] = new
            return new if node.get("prefix") else old
        if typ == "Index":
            target = self.eval(node.get("target"))
            index = self.eval(node.get("index"))
            try:
                if isinstance(target, (list, str)) and _is_number(index):
                    # no negative or fractional positions
                    if not math.isfinite(index) or index < 0 or index != int(index):
                        return None
                    return target[int(index)]
                if isinstance(target, dict):
                    return target.get(index if not _is_number(index) else to_text(index), target.get(index))
            except IndexError:
                return None
            raise EvalError(f"Cannot index {to_text(target)} with {to_text(index)}")
        if typ == "Member":
            target = self.eval(node.get("target"))
            name = node.get("name")
            if isinstance(target, dict):
                return target.get(name)
            if name == "length" and isinstance(target, (list, str)):
                return len(target)
            raise EvalError(f"Cannot read property '{name}' of {to_text(target)}")
        if typ == "Unary":
            op = node.get("op")
            operand = self.eval(node.get("expr"))
            if op == "!":
                return not truthy(operand)
            if not _is_number(operand):
                raise EvalError(f"Unary '{op}' requires number")
            return -operand if op == "-" else +operand
        if typ == "Binary":
            op = node.get("op")
            if op == "&&":
                left = self.eval(node.get("left"))
                return self.eval(node.get("right")) if truthy(left) else left
            if op == "||":
                left = self.eval(node.get("left"))
                return left if truthy(left) else self.eval(node.get("right"))
            return self._binary(op, self.eval(node.get("left")), self.eval(node.get("right")))
        raise EvalError(f"Unsupported expression node: {typ}")

    def _binary(self, op: str, L: Any, R: Any) -> Any:
        if op in ("==", "==="):
            return L == R
        if op in ("!=", "!=="):
            return L != R
        if op == "+":
            if isinstance(L, str) or isinstance(R, str):
                return to_text(L) + to_text(R)
            if isinstance(L, list) and isinstance(R, list):
                return L + R
        if op in ("<", "<=", ">", ">="):
            try:
                if op == "<": return L < R
                if op == "<=": return L <= R
                if op == ">": return L > R
                return L >= R
            except TypeError as exc:
                raise EvalError(f"Cannot compare {to_text(L)} {op} {to_text(R)}") from exc
        if not (_is_number(L) and _is_number(R)):
            raise EvalError(f"Operator '{op}' requires numbers, got {to_text(L)} and {to_text(R)}")
        if op == "+": return L + R
        if op == "-": return L - R
        if op == "*": return L * R
        if op == "/":
            if R == 0:
                raise EvalError("Division by zero")
            return _normalize_number(L / R) if isinstance(L, int) and isinstance(R, int) else L / R
        if op == "%":
            if R == 0:
                raise EvalError("Division by zero")
            return math.fmod(L, R) if isinstance(L, float) or isinstance(R, float) else int(math.fmod(L, R))
        raise EvalError(f"Unsupported binary op: {op}")


# ---------- public helpers

def evaluate(text: Optional[str], variables: Dict[str, Any]) -> Any:
    """Evaluate expression text with the variables in scope; raises EvalError."""
    if text is None or not str(text).strip():
        return None
    node = parse_expr(text)
    try:
        return Evaluator(variables).eval(node)
    except EvalError as exc:
        raise EvalError(f"While evaluating expression: {text}: {exc.message}") from exc
    except (TypeError, ValueError, ArithmeticError) as exc:
        raise EvalError(f"While evaluating expression: {text}: {exc}") from exc


def assigned_names(text: Optional[str]) -> List[str]:
    """Names assigned at the top level of a statement, e.g. 'i=0, j=n' -> ['i', 'j']."""
    if text is None or not str(text).strip():
        return []
    node = parse_expr(text)
    items = node["items"] if node.get("type") == "Sequence" else [node]
    return [item["name"] for item in items if item.get("type") in ("Assign", "Update")]


def split_list(text: Optional[str], sep: str) -> List[str]:
    """Split on sep outside of quotes, parentheses and brackets; items are stripped."""
    s = text or ""
    out: List[str] = []
    depth = 0
    quote: Optional[str] = None
    buf = []
    i = 0
    while i < len(s):
        ch = s[i]
        if quote:
            buf.append(ch)
            if ch == "\\" and i + 1 < len(s):
                buf.append(s[i + 1])
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
            buf.append(ch)
        elif ch in "([{":
            depth += 1
            buf.append(ch)
        elif ch in ")]}":
            depth -= 1
            buf.append(ch)
        elif ch == sep and depth == 0:
            out.append("".join(buf).strip())
            buf = []
        else:
            buf.append(ch)
        i += 1
    out.append("".join(buf).strip())
    if out == [""]:
        return []
    return out
