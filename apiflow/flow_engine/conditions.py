"""
Condition Evaluator - Sandboxed boolean expressions for skip conditions and
condition steps

Supports:
- Literals: 42, 1.5, "text", 'text', true, false, null, undefined
- Variables with paths: status, user.roles[0], items.length
- Unary: !x, not x, -x, +x
- Arithmetic: * / % + -
- Comparison: < <= > >=
- Equality: == != (loose) and === !== (strict)
- Logic: && / and, || / or (short-circuit)
- Parentheses

Nothing else is reachable from an expression: no calls, no attribute access
on Python objects, no imports. Values follow JavaScript truthiness so
expressions written in the tester UI behave the same way here.

Examples (bindings = {"status": 200, "token": "abc", "items": [1, 2]}):
    "status === 200"                -> True
    "status == '200'"               -> True
    "!token"                        -> False
    "items.length > 1 && token"     -> True
    "${status} >= 400"              -> False
"""

import logging
import math
import re
from typing import Any, Dict, List, NamedTuple, Optional

from apiflow.flow_engine.errors import ConditionEvaluationError
from apiflow.flow_engine.variable_resolver import interpolate

logger = logging.getLogger(__name__)


class _Undefined:
    def __repr__(self):
        return 'undefined'

    def __bool__(self):
        return False


UNDEFINED = _Undefined()

KEYWORD_LITERALS = {
    'true': True,
    'false': False,
    'null': None,
    'undefined': UNDEFINED,
}

_TOKEN_PATTERN = re.compile(
    r"""
      (?P<ws>\s+)
    | (?P<number>(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)
    | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
    | (?P<name>[A-Za-z_$][A-Za-z0-9_$]*)
    | (?P<op>===|!==|==|!=|<=|>=|&&|\|\||[!<>+\-*/%()\[\]])
    """,
    re.VERBOSE,
)
_MEMBER_PATTERN = re.compile(r'[A-Za-z0-9_$]+')
_ESCAPES = {'n': '\n', 't': '\t', 'r': '\r', '\\': '\\', '"': '"', "'": "'"}
MAX_NESTING = 50

OR_OPERATORS = ('||', 'or')
AND_OPERATORS = ('&&', 'and')
EQUALITY_OPERATORS = ('==', '!=', '===', '!==')
COMPARISON_OPERATORS = ('<', '<=', '>', '>=')


class Token(NamedTuple):
    kind: str  # number | string | name | op | eof
    value: Any
    pos: int


def tokenize(expression: str) -> List[Token]:
    """
    Split an expression into tokens.

    Raises:
        ConditionEvaluationError: On a character outside the grammar
    """
    tokens: List[Token] = []
    pos = 0
    while pos < len(expression):
        previous = tokens[-1] if tokens else None

        # Member access: "." after a value, then a bare key ("items.0.id")
        if expression[pos] == '.' and previous is not None and (
            (previous.kind == 'name' and previous.value not in ('and', 'or', 'not'))
            or previous.kind == 'string'
            or (previous.kind == 'op' and previous.value in (')', ']'))
        ):
            member = _MEMBER_PATTERN.match(expression, pos + 1)
            if not member:
                raise ConditionEvaluationError(f"Expected property name at position {pos + 1}", expression)
            tokens.append(Token('op', '.', pos))
            tokens.append(Token('name', member.group(0), member.start()))
            pos = member.end()
            continue

        match = _TOKEN_PATTERN.match(expression, pos)
        if not match:
            raise ConditionEvaluationError(
                f"Unexpected character {expression[pos]!r} at position {pos}", expression
            )

        kind = match.lastgroup
        text = match.group(kind)
        if kind == 'number':
            tokens.append(Token('number', int(text) if text.isdigit() else float(text), pos))
        elif kind == 'string':
            body = re.sub(r'\\(.)', lambda m: _ESCAPES.get(m.group(1), m.group(1)), text[1:-1])
            tokens.append(Token('string', body, pos))
        elif kind != 'ws':
            tokens.append(Token(kind, text, pos))
        pos = match.end()

    tokens.append(Token('eof', None, len(expression)))
    return tokens


# =============================================================================
# PARSER (recursive descent, tuples as AST nodes)
# =============================================================================

class _Parser:

    def __init__(self, expression: str):
        self.expression = expression
        self.tokens = tokenize(expression)
        self.index = 0
        self.depth = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.index]

    def _advance(self) -> Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    def _accept(self, *values: str) -> Optional[str]:
        token = self.current
        if token.kind in ('op', 'name') and token.value in values:
            self._advance()
            return token.value
        return None

    def _expect(self, value: str):
        if not self._accept(value):
            self._fail(f"Expected {value!r}")

    def _fail(self, message: str):
        token = self.current
        found = 'end of expression' if token.kind == 'eof' else repr(token.value)
        raise ConditionEvaluationError(f"{message} at position {token.pos}, found {found}", self.expression)

    def parse(self):
        node = self._or()
        if self.current.kind != 'eof':
            self._fail("Unexpected token")
        return node

    def _or(self):
        node = self._and()
        while self._accept(*OR_OPERATORS):
            node = ('or', node, self._and())
        return node

    def _and(self):
        node = self._equality()
        while self._accept(*AND_OPERATORS):
            node = ('and', node, self._equality())
        return node

    def _binary(self, operators, operand):
        node = operand()
        while True:
            op = self._accept(*operators) if self.current.kind == 'op' else None
            if op is None:
                return node
            node = ('binary', op, node, operand())

    def _equality(self):
        return self._binary(EQUALITY_OPERATORS, self._comparison)

    def _comparison(self):
        return self._binary(COMPARISON_OPERATORS, self._additive)

    def _additive(self):
        return self._binary(('+', '-'), self._multiplicative)

    def _multiplicative(self):
        return self._binary(('*', '/', '%'), self._unary)

    def _unary(self):
        # Every nesting level (parentheses, brackets, prefix operators) passes here
        self.depth += 1
        if self.depth > MAX_NESTING:
            self._fail(f"Expression nested deeper than {MAX_NESTING} levels")
        try:
            token = self.current
            if (token.kind == 'op' and token.value in ('!', '-', '+')) or (token.kind == 'name' and token.value == 'not'):
                self._advance()
                op = '!' if token.value == 'not' else token.value
                return ('unary', op, self._unary())
            return self._postfix()
        finally:
            self.depth -= 1

    def _postfix(self):
        node = self._primary()
        while True:
            if self.current.kind == 'op' and self.current.value == '.':
                self._advance()
                node = ('member', node, ('literal', self._advance().value))
            elif self.current.kind == 'op' and self.current.value == '[':
                self._advance()
                key = self._or()
                self._expect(']')
                node = ('member', node, key)
            else:
                return node

    def _primary(self):
        token = self.current
        if token.kind in ('number', 'string'):
            self._advance()
            return ('literal', token.value)
        if token.kind == 'name':
            if token.value in ('and', 'or', 'not'):
                self._fail("Unexpected operator")
            self._advance()
            if token.value in KEYWORD_LITERALS:
                return ('literal', KEYWORD_LITERALS[token.value])
            return ('name', token.value)
        if token.kind == 'op' and token.value == '(':
            self._advance()
            node = self._or()
            self._expect(')')
            return node
        self._fail("Expected a value")


# =============================================================================
# VALUE SEMANTICS
# =============================================================================

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_truthy(value: Any) -> bool:
    """JavaScript truthiness (empty list and dict are truthy)."""
    if value is None or value is UNDEFINED or value is False:
        return False
    if _is_number(value):
        return not (value == 0 or math.isnan(value))
    if isinstance(value, str):
        return value != ''
    return True


def to_number(value: Any) -> float:
    if isinstance(value, bool):
        return 1 if value else 0
    if _is_number(value):
        return value
    if value is None:
        return 0
    if isinstance(value, str):
        text = value.strip()
        if text == '':
            return 0
        try:
            number = float(text)
        except ValueError:
            return math.nan
        return int(number) if number.is_integer() and re.fullmatch(r'[+-]?\d+', text) else number
    return math.nan


def to_js_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if value is None:
        return 'null'
    if value is UNDEFINED:
        return 'undefined'
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, list):
        return ','.join('' if v is None else to_js_string(v) for v in value)
    if isinstance(value, dict):
        return '[object Object]'
    return str(value)


def strict_equals(left: Any, right: Any) -> bool:
    if _is_number(left) and _is_number(right):
        return left == right
    if type(left) is not type(right):
        return False
    if left is None or left is UNDEFINED:
        return True
    return left == right


def loose_equals(left: Any, right: Any) -> bool:
    nullish = (None, UNDEFINED)
    if left in nullish or right in nullish:
        return (left in nullish) and (right in nullish)
    if isinstance(left, bool):
        return loose_equals(to_number(left), right)
    if isinstance(right, bool):
        return loose_equals(left, to_number(right))
    if _is_number(left) and isinstance(right, str):
        return left == to_number(right)
    if isinstance(left, str) and _is_number(right):
        return to_number(left) == right
    return strict_equals(left, right)


def _divide(left: float, right: float) -> float:
    if right == 0:
        if left == 0 or math.isnan(left):
            return math.nan
        return math.copysign(math.inf, left) * math.copysign(1, right)
    return left / right


def _modulo(left: float, right: float) -> float:
    if right == 0 or math.isinf(left):
        return math.nan
    return math.fmod(left, right)


def _get_member(target: Any, key: Any, expression: str) -> Any:
    if target is None or target is UNDEFINED:
        raise ConditionEvaluationError(
            f"Cannot read property {to_js_string(key)!r} of {to_js_string(target)}", expression
        )
    if isinstance(target, dict):
        if isinstance(key, (str, int)) and key in target:
            return target[key]
        return target.get(to_js_string(key), UNDEFINED)
    if isinstance(target, (list, str)):
        if key == 'length':
            return len(target)
        index = to_number(key)
        if _is_number(index) and not math.isnan(index) and float(index).is_integer() and 0 <= index < len(target):
            return target[int(index)]
    return UNDEFINED


class ConditionEvaluator:
    """
    Evaluates expressions against a binding snapshot.

    The bindings are the only scope: any identifier that is not bound raises
    ConditionEvaluationError (reported as such by `evaluate_safely`).
    """

    def evaluate(self, expression: Optional[str], bindings: Optional[Dict[str, Any]] = None,
                 blank_result: bool = True) -> bool:
        """
        Evaluate an expression to a boolean.

        Args:
            expression: Expression text; placeholders are interpolated first
            bindings: Variable snapshot
            blank_result: Value for a None or blank expression, including one
                that is blank only after interpolation

        Returns:
            Truthiness of the expression value

        Raises:
            ConditionEvaluationError: If the expression is malformed or fails
        """
        bindings = bindings or {}
        if expression is None:
            return blank_result
        if isinstance(expression, bool):
            return expression
        if not isinstance(expression, str):
            raise ConditionEvaluationError(f"Expression must be a string, got {type(expression).__name__}")

        text = interpolate(expression, bindings).strip()
        if not text:
            return blank_result

        try:
            node = _Parser(text).parse()
            return is_truthy(self._eval(node, bindings, text))
        except RecursionError:
            raise ConditionEvaluationError("Expression is too complex to evaluate", text) from None

    def evaluate_safely(self, expression: Optional[str], bindings: Optional[Dict[str, Any]] = None,
                        step_id: Optional[str] = None, blank_result: bool = True) -> bool:
        """Evaluate, turning any evaluation error into a logged warning and False."""
        try:
            return self.evaluate(expression, bindings, blank_result)
        except ConditionEvaluationError as e:
            e.step_id = e.step_id or step_id
            logger.warning(f"Condition evaluation failed, treating as false: {e} (expression: {expression!r})")
            return False

    def _eval(self, node, bindings: Dict[str, Any], expression: str) -> Any:
        kind = node[0]

        if kind == 'literal':
            return node[1]

        if kind == 'name':
            name = node[1]
            if name not in bindings:
                raise ConditionEvaluationError(f"Unknown variable: {name}", expression)
            return bindings[name]

        if kind == 'member':
            target = self._eval(node[1], bindings, expression)
            key = self._eval(node[2], bindings, expression)
            return _get_member(target, key, expression)

        if kind == 'and':
            left = self._eval(node[1], bindings, expression)
            return self._eval(node[2], bindings, expression) if is_truthy(left) else left

        if kind == 'or':
            left = self._eval(node[1], bindings, expression)
            return left if is_truthy(left) else self._eval(node[2], bindings, expression)

        if kind == 'unary':
            operand = self._eval(node[2], bindings, expression)
            if node[1] == '!':
                return not is_truthy(operand)
            if node[1] == '-':
                return -to_number(operand)
            return to_number(operand)

        if kind == 'binary':
            _, op, left_node, right_node = node
            left = self._eval(left_node, bindings, expression)
            right = self._eval(right_node, bindings, expression)
            return self._binary(op, left, right)

        raise ConditionEvaluationError(f"Unsupported expression node: {kind}", expression)

    def _binary(self, op: str, left: Any, right: Any) -> Any:
        if op == '===':
            return strict_equals(left, right)
        if op == '!==':
            return not strict_equals(left, right)
        if op == '==':
            return loose_equals(left, right)
        if op == '!=':
            return not loose_equals(left, right)

        if op == '+':
            if isinstance(left, str) or isinstance(right, str):
                return to_js_string(left) + to_js_string(right)
            return to_number(left) + to_number(right)

        if op in COMPARISON_OPERATORS:
            if isinstance(left, str) and isinstance(right, str):
                a, b = left, right
            else:
                a, b = to_number(left), to_number(right)
                if math.isnan(a) or math.isnan(b):
                    return False
            if op == '<':
                return a < b
            if op == '<=':
                return a <= b
            if op == '>':
                return a > b
            return a >= b

        a, b = to_number(left), to_number(right)
        if op == '-':
            return a - b
        if op == '*':
            return a * b
        if op == '/':
            return _divide(a, b)
        return _modulo(a, b)


_default_evaluator = ConditionEvaluator()


def evaluate(expression: Optional[str], bindings: Optional[Dict[str, Any]] = None,
             blank_result: bool = True) -> bool:
    return _default_evaluator.evaluate(expression, bindings, blank_result)


def evaluate_safely(expression: Optional[str], bindings: Optional[Dict[str, Any]] = None,
                    step_id: Optional[str] = None, blank_result: bool = True) -> bool:
    return _default_evaluator.evaluate_safely(expression, bindings, step_id, blank_result)
