"""
Arithmetic expression evaluator for numeric cell input.

Quantity and price cells accept free text such as ``"12*3,5"`` or
``"(400-20)/2"``. Input is untrusted, so it is parsed with a small
recursive-descent parser instead of ``eval``:

    expr   := term (('+' | '-') term)*
    term   := factor (('*' | '/') factor)*
    factor := ('+' | '-') factor | '(' expr ')' | number

Both entry points return ``None`` on any failure; callers keep the previous
field value in that case.
"""
import math
import re
from typing import List, Optional, Tuple, Union

_OPERATORS = frozenset("+-*/()")
_INTEGER_INPUT = re.compile(r"^[0-9+\-*/()\s]+$")

# ("num", 2.5) or ("op", "+")
Token = Tuple[str, Union[float, str]]


def tokenize(text: str) -> Optional[List[Token]]:
    """Split ``text`` into tokens. Returns ``None`` on a lexing error."""
    s = re.sub(r"\s+", "", text).replace(",", ".")
    tokens: List[Token] = []
    i = 0
    while i < len(s):
        c = s[i]
        if c in _OPERATORS:
            tokens.append(("op", c))
            i += 1
            continue
        if c.isdigit() or c == ".":
            j = i
            while j < len(s) and (s[j] in "0123456789."):
                j += 1
            raw = s[i:j]
            if raw == "." or raw.count(".") > 1:
                return None
            value = float(raw)
            if not math.isfinite(value):
                return None
            tokens.append(("num", value))
            i = j
            continue
        return None
    return tokens


class _Parser:
    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.idx = 0

    def _peek(self) -> Optional[Token]:
        return self.tokens[self.idx] if self.idx < len(self.tokens) else None

    def _is_op(self, token: Optional[Token], *ops: str) -> bool:
        return token is not None and token[0] == "op" and token[1] in ops

    def factor(self) -> Optional[float]:
        t = self._peek()
        if t is None:
            return None
        if self._is_op(t, "+", "-"):
            self.idx += 1
            v = self.factor()
            if v is None:
                return None
            return -v if t[1] == "-" else v
        if self._is_op(t, "("):
            self.idx += 1
            v = self.expr()
            if v is None or not self._is_op(self._peek(), ")"):
                return None
            self.idx += 1
            return v
        if t[0] == "num":
            self.idx += 1
            return float(t[1])
        return None

    def term(self) -> Optional[float]:
        left = self.factor()
        if left is None:
            return None
        while self._is_op(self._peek(), "*", "/"):
            op = self.tokens[self.idx][1]
            self.idx += 1
            right = self.factor()
            if right is None:
                return None
            if op == "*":
                left = left * right
            else:
                if right == 0:
                    return None
                left = left / right
            if not math.isfinite(left):
                return None
        return left

    def expr(self) -> Optional[float]:
        left = self.term()
        if left is None:
            return None
        while self._is_op(self._peek(), "+", "-"):
            op = self.tokens[self.idx][1]
            self.idx += 1
            right = self.term()
            if right is None:
                return None
            left = left + right if op == "+" else left - right
            if not math.isfinite(left):
                return None
        return left


def evaluate(text: str) -> Optional[float]:
    """Evaluate an arithmetic expression; ``None`` when it is malformed."""
    tokens = tokenize(text)
    if not tokens:
        return None

    parser = _Parser(tokens)
    result = parser.expr()
    if result is None or parser.idx != len(tokens):
        return None
    if result == 0:
        result = 0.0  # drops the sign of -0.0
    return result if math.isfinite(result) else None


def evaluate_integer(text: str) -> Optional[int]:
    """
    Integer-only variant used for whole-number cells.

    Decimal separators are rejected outright, even though ``evaluate`` would
    accept them. The result is floored and clamped at 0.
    """
    raw = text.strip()
    if not raw or not _INTEGER_INPUT.match(raw):
        return None
    if "." in raw or "," in raw:
        return None
    result = evaluate(raw)
    if result is None:
        return None
    return max(0, math.floor(result))
