"""
规则条件求值

规则的 condition 是一段 JavaScript 风格的布尔表达式，例如:

    payload.category === "incident" && payload.priority?.toLowerCase() !== "low"

这里不执行任意代码，而是用受限的词法/语法分析器把表达式编译成 AST，再由解释器求值。
支持的语法:
- 字面量: 数字、单/双引号字符串、true / false / null / undefined、数组 [a, b]
- 唯一的变量 payload，成员访问 .name / ?.name / [expr] / ?.[expr]
- 白名单方法: includes / startsWith / endsWith / toLowerCase / toUpperCase / trim / indexOf
- length 属性
- 运算符: ! - === !== == != < <= > >= && || ?? ?: 以及括号

语义与 JavaScript 一致: 不存在的属性为 undefined，对 undefined / null 取属性会报错，
== 做宽松比较，&& / || / ?? 短路并返回操作数本身。

另外提供轮询使用的结构化条件:
    {"logic": "AND", "conditions": [{"path": "data.status", "op": "==", "value": "ok"}]}
"""
import json
import logging
import math
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Optional

from .utils.paths import get_value_by_path

logger = logging.getLogger(__name__)


class ConditionError(Exception):
    """条件表达式编译或求值失败"""


class _Undefined:
    """JavaScript 的 undefined"""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "undefined"

    def __bool__(self):
        return False


UNDEFINED = _Undefined()

ALLOWED_METHODS = frozenset({
    "includes", "startsWith", "endsWith", "toLowerCase", "toUpperCase", "trim", "indexOf",
})

ROOT_NAME = "payload"

LITERAL_NAMES = {
    "true": True,
    "false": False,
    "null": None,
    "undefined": UNDEFINED,
}


# ============== JavaScript 语义 ==============

def _is_nullish(value: Any) -> bool:
    return value is None or value is UNDEFINED


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_truthy(value: Any) -> bool:
    """JavaScript 真值判断"""
    if _is_nullish(value):
        return False
    if isinstance(value, bool):
        return value
    if _is_number(value):
        return value != 0 and not math.isnan(value)
    if isinstance(value, str):
        return value != ""
    return True


def to_js_string(value: Any) -> str:
    """JavaScript 的 String(value)"""
    if value is UNDEFINED:
        return "undefined"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if _is_number(value):
        if isinstance(value, float):
            if math.isnan(value):
                return "NaN"
            if math.isinf(value):
                return "Infinity" if value > 0 else "-Infinity"
            if value.is_integer():
                return str(int(value))
        return str(value)
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return ",".join("" if _is_nullish(item) else to_js_string(item) for item in value)
    return "[object Object]"


def to_number(value: Any) -> float:
    """JavaScript 的 Number(value)"""
    if value is UNDEFINED:
        return math.nan
    if value is None:
        return 0
    if isinstance(value, bool):
        return 1 if value else 0
    if _is_number(value):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        # Python 的数字写法 (1_000) 在 JavaScript 中不是数字
        if "_" in text:
            return math.nan
        try:
            if text[:2].lower() in ("0x", "0o", "0b"):
                return int(text, 0)
            if text in ("Infinity", "+Infinity", "-Infinity"):
                return float(text.replace("Infinity", "inf"))
            if text.lower().lstrip("+-") in ("inf", "infinity", "nan"):
                return math.nan
            return float(text)
        except ValueError:
            return math.nan
    if isinstance(value, list):
        return to_number(to_js_string(value))
    return math.nan


def strict_equals(left: Any, right: Any) -> bool:
    """JavaScript 的 ==="""
    if _is_number(left) and _is_number(right):
        return left == right
    if isinstance(left, (dict, list)) or isinstance(right, (dict, list)):
        return left is right
    if type(left) is not type(right):
        return False
    return left == right


def loose_equals(left: Any, right: Any) -> bool:
    """JavaScript 的 =="""
    if _is_nullish(left) or _is_nullish(right):
        return _is_nullish(left) and _is_nullish(right)
    if isinstance(left, bool):
        return loose_equals(to_number(left), right)
    if isinstance(right, bool):
        return loose_equals(left, to_number(right))

    left_obj = isinstance(left, (dict, list))
    right_obj = isinstance(right, (dict, list))
    if left_obj and right_obj:
        return left is right
    if left_obj:
        return loose_equals(to_js_string(left), right)
    if right_obj:
        return loose_equals(left, to_js_string(right))

    if isinstance(left, str) and isinstance(right, str):
        return left == right
    return to_number(left) == to_number(right)


def _compare(op: str, left: Any, right: Any) -> bool:
    if isinstance(left, (dict, list)):
        left = to_js_string(left)
    if isinstance(right, (dict, list)):
        right = to_js_string(right)

    if isinstance(left, str) and isinstance(right, str):
        a, b = left, right
    else:
        a, b = to_number(left), to_number(right)
        if math.isnan(a) or math.isnan(b):
            return False

    if op == "<":
        return a < b
    if op == "<=":
        return a <= b
    if op == ">":
        return a > b
    return a >= b


def _same_value_zero(left: Any, right: Any) -> bool:
    if _is_number(left) and _is_number(right) and math.isnan(left) and math.isnan(right):
        return True
    return strict_equals(left, right)


# ============== 词法分析 ==============

TOKEN_PATTERN = re.compile(r"""
    (?P<ws>\s+)
  | (?P<number>(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?)
  | (?P<string>"(?:[^"\\\n]|\\.)*"|'(?:[^'\\\n]|\\.)*')
  | (?P<name>[A-Za-z_$][A-Za-z0-9_$]*)
  | (?P<op>===|!==|==|!=|<=|>=|&&|\|\||\?\?|\?\.(?!\d)|[<>!?:.,()\[\]-])
""", re.VERBOSE)

ESCAPE_PATTERN = re.compile(r"\\(u[0-9a-fA-F]{4}|x[0-9a-fA-F]{2}|.)", re.DOTALL)

SIMPLE_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "b": "\b", "f": "\f", "v": "\v", "0": "\0"}


@dataclass
class Token:
    kind: str
    value: str
    pos: int


def _unescape(body: str) -> str:
    def replace(match: re.Match) -> str:
        escape = match.group(1)
        if escape[0] in ("u", "x") and len(escape) > 1:
            return chr(int(escape[1:], 16))
        return SIMPLE_ESCAPES.get(escape, escape)

    return ESCAPE_PATTERN.sub(replace, body)


def tokenize(source: str) -> list[Token]:
    """把表达式切分成 Token 列表 (以 eof 结尾)"""
    tokens = []
    pos = 0
    while pos < len(source):
        match = TOKEN_PATTERN.match(source, pos)
        if not match:
            raise ConditionError(f"无法识别的字符 {source[pos]!r} (位置 {pos})")
        kind = match.lastgroup
        if kind != "ws":
            tokens.append(Token(kind, match.group(kind), pos))
        pos = match.end()
    tokens.append(Token("eof", "", pos))
    return tokens


# ============== AST ==============

@dataclass
class Literal:
    value: Any


@dataclass
class ArrayLiteral:
    items: list


@dataclass
class Root:
    pass


@dataclass
class Member:
    """属性访问: 静态属性名 name 或计算属性 key"""
    optional: bool
    name: Optional[str] = None
    key: Any = None


@dataclass
class MethodCall:
    optional: bool
    name: str
    args: list = field(default_factory=list)


@dataclass
class Chain:
    """成员访问链，任一 ?. 遇到 null / undefined 时整条链为 undefined"""
    base: Any
    links: list


@dataclass
class Unary:
    op: str
    operand: Any


@dataclass
class Binary:
    op: str
    left: Any
    right: Any


@dataclass
class Logical:
    op: str
    left: Any
    right: Any


@dataclass
class Conditional:
    test: Any
    consequent: Any
    alternate: Any


# ============== 语法分析 ==============

class Parser:
    """
    递归下降解析器

    优先级 (低到高): ?: , || ?? , && , == != === !== , < <= > >= , ! - , 成员访问
    """

    def __init__(self, source: str):
        self.source = source
        self.tokens = tokenize(source)
        self.index = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.index]

    def _advance(self) -> Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    def _at(self, *values: str) -> bool:
        token = self.current
        return token.kind == "op" and token.value in values

    def _expect(self, value: str) -> Token:
        if not self._at(value):
            raise self._error(f"缺少 '{value}'")
        return self._advance()

    def _error(self, message: str) -> ConditionError:
        token = self.current
        found = token.value if token.kind != "eof" else "表达式结尾"
        return ConditionError(f"{message}，位置 {token.pos} 处为 {found!r}")

    def parse(self):
        if self.current.kind == "eof":
            raise ConditionError("条件表达式为空")
        node = self._conditional()
        if self.current.kind != "eof":
            raise self._error("多余的内容")
        return node

    def _conditional(self):
        test = self._logical_or()
        if self._at("?"):
            self._advance()
            consequent = self._conditional()
            self._expect(":")
            alternate = self._conditional()
            return Conditional(test, consequent, alternate)
        return test

    def _logical_or(self):
        node = self._logical_and()
        while self._at("||", "??"):
            op = self._advance().value
            node = Logical(op, node, self._logical_and())
        return node

    def _logical_and(self):
        node = self._equality()
        while self._at("&&"):
            self._advance()
            node = Logical("&&", node, self._equality())
        return node

    def _equality(self):
        node = self._relational()
        while self._at("===", "!==", "==", "!="):
            op = self._advance().value
            node = Binary(op, node, self._relational())
        return node

    def _relational(self):
        node = self._unary()
        while self._at("<", "<=", ">", ">="):
            op = self._advance().value
            node = Binary(op, node, self._unary())
        return node

    def _unary(self):
        if self._at("!", "-"):
            op = self._advance().value
            return Unary(op, self._unary())
        return self._postfix()

    def _postfix(self):
        base = self._primary()
        links = []
        while True:
            if self._at("."):
                self._advance()
                links.append(self._member_name(optional=False))
            elif self._at("?."):
                self._advance()
                if self._at("["):
                    self._advance()
                    key = self._conditional()
                    self._expect("]")
                    links.append(Member(optional=True, key=key))
                elif self._at("("):
                    raise self._error("只允许调用白名单方法")
                else:
                    links.append(self._member_name(optional=True))
            elif self._at("["):
                self._advance()
                key = self._conditional()
                self._expect("]")
                links.append(Member(optional=False, key=key))
            elif self._at("("):
                raise self._error("只允许调用白名单方法")
            else:
                break
        return Chain(base, links) if links else base

    def _member_name(self, optional: bool):
        token = self.current
        if token.kind != "name":
            raise self._error("缺少属性名")
        self._advance()

        if not self._at("("):
            return Member(optional=optional, name=token.value)

        if token.value not in ALLOWED_METHODS:
            raise ConditionError(f"不支持的方法: {token.value}")
        self._advance()
        args = []
        if not self._at(")"):
            args.append(self._conditional())
            while self._at(","):
                self._advance()
                args.append(self._conditional())
        self._expect(")")
        return MethodCall(optional=optional, name=token.value, args=args)

    def _primary(self):
        token = self.current

        if token.kind == "number":
            self._advance()
            number = float(token.value)
            return Literal(int(number) if number.is_integer() and "." not in token.value
                           and "e" not in token.value.lower() else number)

        if token.kind == "string":
            self._advance()
            return Literal(_unescape(token.value[1:-1]))

        if token.kind == "name":
            self._advance()
            if token.value in LITERAL_NAMES:
                return Literal(LITERAL_NAMES[token.value])
            if token.value == ROOT_NAME:
                return Root()
            raise ConditionError(f"未知标识符: {token.value}")

        if self._at("("):
            self._advance()
            node = self._conditional()
            self._expect(")")
            return node

        if self._at("["):
            self._advance()
            items = []
            if not self._at("]"):
                items.append(self._conditional())
                while self._at(","):
                    self._advance()
                    if self._at("]"):
                        break
                    items.append(self._conditional())
            self._expect("]")
            return ArrayLiteral(items)

        raise self._error("无法解析的表达式")


# ============== 求值 ==============

def _property_key(key: Any) -> str:
    if _is_number(key) and not (isinstance(key, float) and not key.is_integer()):
        return str(int(key))
    return to_js_string(key)


def _get_property(target: Any, key: str) -> Any:
    if _is_nullish(target):
        raise ConditionError(f"Cannot read properties of {to_js_string(target)} (reading '{key}')")

    if isinstance(target, dict):
        return target.get(key, UNDEFINED)

    if isinstance(target, (list, str)):
        if key == "length":
            return len(target)
        if key.isdigit():
            index = int(key)
            return target[index] if index < len(target) else UNDEFINED
    return UNDEFINED


def _call_method(target: Any, name: str, args: list) -> Any:
    if _is_nullish(target):
        raise ConditionError(f"Cannot read properties of {to_js_string(target)} (reading '{name}')")

    first = args[0] if args else UNDEFINED

    if isinstance(target, str):
        if name == "includes":
            return to_js_string(first) in target
        if name == "startsWith":
            return target.startswith(to_js_string(first))
        if name == "endsWith":
            return target.endswith(to_js_string(first))
        if name == "toLowerCase":
            return target.lower()
        if name == "toUpperCase":
            return target.upper()
        if name == "trim":
            return target.strip()
        if name == "indexOf":
            return target.find(to_js_string(first))

    if isinstance(target, list):
        if name == "includes":
            return any(_same_value_zero(item, first) for item in target)
        if name == "indexOf":
            for index, item in enumerate(target):
                if strict_equals(item, first):
                    return index
            return -1

    raise ConditionError(f"{name} is not a function")


def evaluate(node: Any, payload: Any) -> Any:
    """对 AST 求值，返回 JavaScript 语义下的值"""
    if isinstance(node, Literal):
        return node.value

    if isinstance(node, Root):
        return payload

    if isinstance(node, ArrayLiteral):
        return [evaluate(item, payload) for item in node.items]

    if isinstance(node, Chain):
        value = evaluate(node.base, payload)
        for link in node.links:
            if link.optional and _is_nullish(value):
                return UNDEFINED
            if isinstance(link, MethodCall):
                args = [evaluate(arg, payload) for arg in link.args]
                value = _call_method(value, link.name, args)
            elif link.name is not None:
                value = _get_property(value, link.name)
            else:
                value = _get_property(value, _property_key(evaluate(link.key, payload)))
        return value

    if isinstance(node, Unary):
        operand = evaluate(node.operand, payload)
        if node.op == "!":
            return not is_truthy(operand)
        return -to_number(operand)

    if isinstance(node, Logical):
        left = evaluate(node.left, payload)
        if node.op == "&&":
            return evaluate(node.right, payload) if is_truthy(left) else left
        if node.op == "||":
            return left if is_truthy(left) else evaluate(node.right, payload)
        return evaluate(node.right, payload) if _is_nullish(left) else left

    if isinstance(node, Conditional):
        if is_truthy(evaluate(node.test, payload)):
            return evaluate(node.consequent, payload)
        return evaluate(node.alternate, payload)

    if isinstance(node, Binary):
        left = evaluate(node.left, payload)
        right = evaluate(node.right, payload)
        if node.op == "===":
            return strict_equals(left, right)
        if node.op == "!==":
            return not strict_equals(left, right)
        if node.op == "==":
            return loose_equals(left, right)
        if node.op == "!=":
            return not loose_equals(left, right)
        return _compare(node.op, left, right)

    raise ConditionError(f"未知节点: {type(node).__name__}")


@lru_cache(maxsize=512)
def compile_condition(source: str):
    """编译条件表达式 (按源码缓存)"""
    return Parser(source).parse()


def evaluate_condition(source: str, payload: Any) -> bool:
    """
    编译并求值条件表达式

    Raises:
        ConditionError: 编译失败或求值出错
    """
    node = compile_condition(source.strip())
    try:
        return is_truthy(evaluate(node, payload))
    except RecursionError as e:
        raise ConditionError("表达式嵌套过深") from e


def matches(rule, payload: Any) -> bool:
    """
    判断规则是否匹配 payload

    条件为空、编译失败或求值出错时都视为不匹配，错误只记录日志
    """
    source = (getattr(rule, "condition", None) or "").strip()
    rule_id = getattr(rule, "id", None)
    if not source:
        return False

    try:
        return evaluate_condition(source, payload)
    except ConditionError as e:
        logger.warning(f"规则 {rule_id} 条件求值失败: {e}")
        return False
    except Exception as e:
        logger.error(f"规则 {rule_id} 条件求值异常: {e}", exc_info=True)
        return False


# ============== 结构化条件 (轮询) ==============

STRUCTURED_OPS = frozenset({"==", "!=", ">", "<", ">=", "<=", "exists", "includes"})


def _evaluate_item(item: Any, data: Any) -> bool:
    if not isinstance(item, dict):
        return False
    path = item.get("path").strip() if isinstance(item.get("path"), str) else ""
    if not path:
        return False

    actual = get_value_by_path(data, path, UNDEFINED)
    expected = item.get("value", UNDEFINED)
    op = str(item.get("op") or "==")

    if op == "exists":
        return not _is_nullish(actual)
    if op == "==":
        return loose_equals(actual, expected)
    if op == "!=":
        return not loose_equals(actual, expected)
    if op in (">", "<", ">=", "<="):
        actual_num, expected_num = to_number(actual), to_number(expected)
        if math.isnan(actual_num) or math.isnan(expected_num):
            return False
        return _compare(op, actual_num, expected_num)
    if op == "includes":
        if isinstance(actual, list):
            return any(_same_value_zero(value, expected) for value in actual)
        if isinstance(actual, str):
            return to_js_string(expected) in actual
        return False
    return False


def parse_structured_condition(condition: Any) -> Optional[dict]:
    """把结构化条件 (dict 或 JSON 字符串) 解析成 dict，无法解析时返回 None"""
    if not condition:
        return None
    if isinstance(condition, str):
        try:
            condition = json.loads(condition)
        except ValueError:
            return None
    return condition if isinstance(condition, dict) else None


def evaluate_structured_condition(condition: Any, data: Any) -> bool:
    """
    求值结构化条件

    Args:
        condition: {"logic": "AND"|"OR", "conditions": [{path, op, value}]}，
            也可以是对应的 JSON 字符串
        data: 被检查的 JSON 数据

    Returns:
        是否满足。条件为空或无法解析时返回 True
    """
    parsed = parse_structured_condition(condition)
    if not parsed:
        return True
    items = parsed.get("conditions")
    if not isinstance(items, list) or not items:
        return True

    logic = str(parsed.get("logic") or "AND").upper()
    results = [_evaluate_item(item, data) for item in items]
    return any(results) if logic == "OR" else all(results)
