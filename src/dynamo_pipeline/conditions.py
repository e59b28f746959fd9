from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Literal

from .errors import ValidationError

type LogicalOp = Literal["AND", "OR", "NOT"]

COMPARISON_OPERATORS = frozenset({"=", "<>", "<", "<=", ">", ">="})
SORT_KEY_OPERATORS = frozenset({"=", "<", "<=", ">", ">=", "begins_with", "between"})
MAX_IN_VALUES = 100


@dataclass(frozen=True)
class Property:
    name: str


@dataclass(frozen=True)
class Size:
    property: str


@dataclass(frozen=True)
class Value:
    value: Any


type Operand = Property | Value | Size


@dataclass(frozen=True)
class Comparison:
    lhs: str | Size
    operator: str
    rhs: Operand

    @staticmethod
    def eq(lhs: str | Size, value: Any) -> Comparison:
        return Comparison(lhs=lhs, operator="=", rhs=Value(value))

    @staticmethod
    def ne(lhs: str | Size, value: Any) -> Comparison:
        return Comparison(lhs=lhs, operator="<>", rhs=Value(value))

    @staticmethod
    def lt(lhs: str | Size, value: Any) -> Comparison:
        return Comparison(lhs=lhs, operator="<", rhs=Value(value))

    @staticmethod
    def lte(lhs: str | Size, value: Any) -> Comparison:
        return Comparison(lhs=lhs, operator="<=", rhs=Value(value))

    @staticmethod
    def gt(lhs: str | Size, value: Any) -> Comparison:
        return Comparison(lhs=lhs, operator=">", rhs=Value(value))

    @staticmethod
    def gte(lhs: str | Size, value: Any) -> Comparison:
        return Comparison(lhs=lhs, operator=">=", rhs=Value(value))


@dataclass(frozen=True)
class BeginsWith:
    property: str
    value: Any


@dataclass(frozen=True)
class Contains:
    property: str
    value: Any


@dataclass(frozen=True)
class AttributeType:
    property: str
    value: str


@dataclass(frozen=True)
class AttributeExists:
    property: str


@dataclass(frozen=True)
class AttributeNotExists:
    property: str


@dataclass(frozen=True)
class Between:
    property: str
    start: Any
    end: Any


@dataclass(frozen=True)
class In:
    property: str
    values: tuple[Any, ...]

    @staticmethod
    def of(property: str, values: Sequence[Any]) -> In:
        return In(property=property, values=tuple(values))


@dataclass(frozen=True)
class Logical:
    logical: LogicalOp
    rhs: ConditionExpression
    lhs: ConditionExpression | None = None

    @staticmethod
    def and_(*conditions: ConditionExpression) -> ConditionExpression:
        return _fold("AND", conditions)

    @staticmethod
    def or_(*conditions: ConditionExpression) -> ConditionExpression:
        return _fold("OR", conditions)

    @staticmethod
    def not_(condition: ConditionExpression) -> Logical:
        return Logical(logical="NOT", rhs=condition)


type ConditionLeaf = (
    Comparison
    | BeginsWith
    | Contains
    | AttributeType
    | AttributeExists
    | AttributeNotExists
    | Between
    | In
)
type ConditionExpression = ConditionLeaf | Logical


def _fold(op: LogicalOp, conditions: Sequence[ConditionExpression]) -> ConditionExpression:
    if not conditions:
        raise ValidationError(f"{op} requires at least one condition")
    node = conditions[0]
    for cond in conditions[1:]:
        node = Logical(logical=op, lhs=node, rhs=cond)
    return node


@dataclass(frozen=True)
class SortKeyCondition:
    op: str
    values: tuple[Any, ...]

    @staticmethod
    def eq(value: Any) -> SortKeyCondition:
        return SortKeyCondition(op="=", values=(value,))

    @staticmethod
    def lt(value: Any) -> SortKeyCondition:
        return SortKeyCondition(op="<", values=(value,))

    @staticmethod
    def lte(value: Any) -> SortKeyCondition:
        return SortKeyCondition(op="<=", values=(value,))

    @staticmethod
    def gt(value: Any) -> SortKeyCondition:
        return SortKeyCondition(op=">", values=(value,))

    @staticmethod
    def gte(value: Any) -> SortKeyCondition:
        return SortKeyCondition(op=">=", values=(value,))

    @staticmethod
    def between(low: Any, high: Any) -> SortKeyCondition:
        return SortKeyCondition(op="between", values=(low, high))

    @staticmethod
    def begins_with(prefix: Any) -> SortKeyCondition:
        return SortKeyCondition(op="begins_with", values=(prefix,))


def sort_key(op: str, *values: Any) -> SortKeyCondition:
    if op not in SORT_KEY_OPERATORS:
        raise ValidationError(f"unsupported sort key operator: {op}")
    expected = 2 if op == "between" else 1
    if len(values) != expected:
        raise ValidationError(f"{op} requires {expected} value(s)")
    return SortKeyCondition(op=op, values=tuple(values))


@dataclass(frozen=True)
class CompiledCondition:
    expression: str = ""
    names: Mapping[str, str] = field(default_factory=dict)
    values: Mapping[str, Any] = field(default_factory=dict)


def coerce_value(value: Any) -> Any:
    """Reduce a literal to a scalar the document encoding accepts."""
    if isinstance(value, (bool, str, int, float, Decimal)):
        return value
    if isinstance(value, (list, tuple)):
        return "".join("" if v is None else str(v) for v in value)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    # None and anything unrecognised
    return True


class _Placeholders:
    def __init__(self, base: CompiledCondition) -> None:
        self.names: dict[str, str] = dict(base.names)
        self.values: dict[str, Any] = dict(base.values)

    def name(self, path: str) -> str:
        if not path:
            raise ValidationError("property name is required")
        refs: list[str] = []
        for part in path.split("."):
            ref = f"#p{len(self.names)}"
            if ref in self.names:
                raise ValidationError(f"expression attribute name collision: {ref}")
            self.names[ref] = part
            refs.append(ref)
        return ".".join(refs)

    def value(self, value: Any) -> str:
        ref = f":v{len(self.values)}"
        if ref in self.values:
            raise ValidationError(f"expression attribute value collision: {ref}")
        self.values[ref] = coerce_value(value)
        return ref


def _operand(refs: _Placeholders, operand: Any) -> str:
    if isinstance(operand, str):
        return refs.name(operand)
    if isinstance(operand, Property):
        return refs.name(operand.name)
    if isinstance(operand, Size):
        return f"size({refs.name(operand.property)})"
    if isinstance(operand, Value):
        return refs.value(operand.value)
    raise ValidationError(f"invalid operand: {type(operand).__name__}")


def _leaf(node: ConditionLeaf, base: CompiledCondition) -> CompiledCondition:
    refs = _Placeholders(base)

    if isinstance(node, Comparison):
        if node.operator not in COMPARISON_OPERATORS:
            raise ValidationError(f"unsupported comparison operator: {node.operator}")
        if isinstance(node.lhs, Value):
            raise ValidationError("comparison lhs must reference a property")
        lhs = _operand(refs, node.lhs)
        rhs = _operand(refs, node.rhs)
        expression = f"{lhs} {node.operator} {rhs}"
    elif isinstance(node, BeginsWith):
        expression = f"begins_with({refs.name(node.property)}, {refs.value(node.value)})"
    elif isinstance(node, Contains):
        expression = f"contains({refs.name(node.property)}, {refs.value(node.value)})"
    elif isinstance(node, AttributeType):
        expression = f"attribute_type({refs.name(node.property)}, {refs.value(node.value)})"
    elif isinstance(node, AttributeExists):
        expression = f"attribute_exists({refs.name(node.property)})"
    elif isinstance(node, AttributeNotExists):
        expression = f"attribute_not_exists({refs.name(node.property)})"
    elif isinstance(node, Between):
        name = refs.name(node.property)
        start = refs.value(node.start)
        end = refs.value(node.end)
        expression = f"{name} BETWEEN {start} AND {end}"
    elif isinstance(node, In):
        if not node.values:
            raise ValidationError("IN requires at least one value")
        if len(node.values) > MAX_IN_VALUES:
            raise ValidationError(f"IN supports maximum {MAX_IN_VALUES} values")
        name = refs.name(node.property)
        expression = f"{name} IN (" + ",".join(refs.value(v) for v in node.values) + ")"
    else:
        raise ValidationError(f"invalid condition node: {type(node).__name__}")

    return CompiledCondition(expression=expression, names=refs.names, values=refs.values)


def _parenthesize(node: ConditionExpression | None, expression: str) -> str:
    if isinstance(node, Logical):
        return f"({expression})"
    return expression


def _logical(node: Logical, base: CompiledCondition) -> CompiledCondition:
    if node.logical not in ("AND", "OR", "NOT"):
        raise ValidationError(f"unsupported logical operator: {node.logical}")
    if node.logical != "NOT" and node.lhs is None:
        raise ValidationError(f"{node.logical} requires a left-hand condition")

    carry = CompiledCondition(names=base.names, values=base.values)
    left = compile_condition(node.lhs, carry) if node.lhs is not None else None
    after_left = left or carry
    right = compile_condition(
        node.rhs, CompiledCondition(names=after_left.names, values=after_left.values)
    )

    rhs_expr = _parenthesize(node.rhs, right.expression)
    if left is not None and left.expression:
        expression = f"{_parenthesize(node.lhs, left.expression)} {node.logical} {rhs_expr}"
    else:
        expression = f"{node.logical} {rhs_expr}"

    left_names = left.names if left is not None else {}
    left_values = left.values if left is not None else {}
    return CompiledCondition(
        expression=expression,
        names={**right.names, **left_names},
        values={**right.values, **left_values},
    )


def compile_condition(
    condition: ConditionExpression | None,
    merge: CompiledCondition | None = None,
) -> CompiledCondition:
    base = merge or CompiledCondition()
    if condition is None:
        return CompiledCondition(names=dict(base.names), values=dict(base.values))
    if isinstance(condition, Logical):
        return _logical(condition, base)
    return _leaf(condition, base)


def key_condition(
    pk_name: str,
    pk_value: Any,
    sk_name: str | None = None,
    sort: SortKeyCondition | None = None,
) -> CompiledCondition:
    """Compile a partition key equality plus an optional sort key clause."""
    if pk_value is None:
        raise ValidationError("partition key value is required")

    tree: ConditionExpression = Comparison.eq(pk_name, pk_value)
    if sort is not None:
        if sk_name is None:
            raise ValidationError("key definition does not include a sort key")
        tree = Logical.and_(tree, _sort_leaf(sk_name, sort))

    return compile_condition(tree)


def _sort_leaf(sk_name: str, sort: SortKeyCondition) -> ConditionLeaf:
    op = sort.op
    if op in {"=", "<", "<=", ">", ">="}:
        if len(sort.values) != 1:
            raise ValidationError("invalid sort key condition")
        return Comparison(lhs=sk_name, operator=op, rhs=Value(sort.values[0]))
    if op == "between":
        if len(sort.values) != 2:
            raise ValidationError("invalid sort key condition")
        return Between(property=sk_name, start=sort.values[0], end=sort.values[1])
    if op == "begins_with":
        if len(sort.values) != 1:
            raise ValidationError("invalid sort key condition")
        return BeginsWith(property=sk_name, value=sort.values[0])
    raise ValidationError(f"unsupported sort key operator: {op}")
