"""
Predicates for trigger filters, trigger conditions and condition steps.

A predicate is any callable taking a document (a mapping) and returning a
bool. Definitions describe predicates as data, which `compile_predicate`
turns into a small AST:

    "data.amount gt 100"                       # "<path> <op> <json literal>"
    "data.vip"                                 # bare path: truthy check
    {"path": "data.country", "op": "in", "value": ["DE", "FR"]}
    {"all": [...]} / {"any": [...]} / {"not": ...}
    {"data.priority": "high", "data.amount": {"gte": 10}}   # filter mapping
    [...]                                      # list: all of

Callables are accepted as-is, so code-defined workflows can pass closures.

Dotted paths walk mappings, list indices and attributes. A path that does
not resolve against the document is retried under its `data` key, so the
filter `{"priority": "high"}` matches events whose data carries that value.

Malformed predicates raise PredicateError when compiled. Evaluation never
raises for type mismatches (comparing None with a number, for instance):
such a comparison is simply false.
"""

from __future__ import annotations

import json
import operator
import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from sagaflow.core.exceptions import PredicateError

_MISSING = object()


def resolve_path(document: Any, path: str) -> Any:
    """Resolve a dotted path; returns the module sentinel when absent."""
    current = document
    for part in path.split("."):
        if isinstance(current, Mapping):
            if part not in current:
                return _MISSING
            current = current[part]
        elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
            if not part.lstrip("-").isdigit():
                return _MISSING
            index = int(part)
            if not -len(current) <= index < len(current):
                return _MISSING
            current = current[index]
        elif hasattr(current, part):
            current = getattr(current, part)
        else:
            return _MISSING
    return current


def lookup(document: Any, path: str) -> Any:
    value = resolve_path(document, path)
    if value is _MISSING and isinstance(document, Mapping) and "data" in document:
        value = resolve_path(document["data"], path)
    return value


def _contains(container: Any, item: Any) -> bool:
    return item in container


def _starts_with(value: Any, prefix: Any) -> bool:
    return str(value).startswith(str(prefix))


def _ends_with(value: Any, suffix: Any) -> bool:
    return str(value).endswith(str(suffix))


_BINARY: dict[str, Callable[[Any, Any], bool]] = {
    "eq": operator.eq,
    "ne": operator.ne,
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
    "in": lambda value, options: value in options,
    "not_in": lambda value, options: value not in options,
    "contains": _contains,
    "starts_with": _starts_with,
    "ends_with": _ends_with,
}

_ALIASES = {
    "==": "eq",
    "!=": "ne",
    ">": "gt",
    ">=": "gte",
    "<": "lt",
    "<=": "lte",
    "equals": "eq",
    "not_equals": "ne",
    "startswith": "starts_with",
    "endswith": "ends_with",
}

OPERATORS = frozenset({*_BINARY, "exists", "matches"})


def normalize_operator(op: str) -> str:
    name = _ALIASES.get(op, op)
    if name not in OPERATORS:
        allowed = ", ".join(sorted(OPERATORS))
        raise PredicateError(f"Unknown predicate operator '{op}' (expected one of: {allowed})")
    return name


class Predicate:
    """Base class of the predicate AST."""

    def __call__(self, document: Any) -> bool:
        raise NotImplementedError

    def __and__(self, other: Predicate) -> AllOf:
        return AllOf([self, other])

    def __or__(self, other: Predicate) -> AnyOf:
        return AnyOf([self, other])

    def __invert__(self) -> Not:
        return Not(self)


@dataclass(frozen=True)
class Always(Predicate):
    def __call__(self, document: Any) -> bool:
        return True


@dataclass(frozen=True)
class FieldCondition(Predicate):
    """Compare the value at `path` with `value` using `operator`."""

    path: str
    operator: str = "exists"
    value: Any = None
    _pattern: re.Pattern | None = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        if not isinstance(self.path, str) or not self.path:
            raise PredicateError("Predicate path must be a non-empty string")
        object.__setattr__(self, "operator", normalize_operator(self.operator))
        if self.operator == "matches":
            try:
                object.__setattr__(self, "_pattern", re.compile(str(self.value)))
            except re.error as e:
                raise PredicateError(f"Invalid regular expression '{self.value}': {e}") from e
        if self.operator in ("in", "not_in") and isinstance(self.value, (str, bytes)):
            raise PredicateError(f"Operator '{self.operator}' needs a list value")

    def __call__(self, document: Any) -> bool:
        actual = lookup(document, self.path)

        if self.operator == "exists":
            present = actual is not _MISSING and actual is not None
            return present if self.value in (None, True) else not present

        if actual is _MISSING:
            # a missing field only satisfies negative comparisons
            return self.operator in ("ne", "not_in")

        try:
            if self.operator == "matches":
                return self._pattern.search(str(actual)) is not None
            return bool(_BINARY[self.operator](actual, self.value))
        except TypeError:
            return False


@dataclass(frozen=True)
class Truthy(Predicate):
    path: str

    def __call__(self, document: Any) -> bool:
        value = lookup(document, self.path)
        return value is not _MISSING and bool(value)


@dataclass(frozen=True)
class AllOf(Predicate):
    predicates: tuple[Callable[[Any], bool], ...]

    def __init__(self, predicates: Iterable[Callable[[Any], bool]]):
        object.__setattr__(self, "predicates", tuple(predicates))

    def __call__(self, document: Any) -> bool:
        return all(_evaluate(p, document) for p in self.predicates)


@dataclass(frozen=True)
class AnyOf(Predicate):
    predicates: tuple[Callable[[Any], bool], ...]

    def __init__(self, predicates: Iterable[Callable[[Any], bool]]):
        object.__setattr__(self, "predicates", tuple(predicates))

    def __call__(self, document: Any) -> bool:
        return any(_evaluate(p, document) for p in self.predicates)


@dataclass(frozen=True)
class Not(Predicate):
    predicate: Callable[[Any], bool]

    def __call__(self, document: Any) -> bool:
        return not _evaluate(self.predicate, document)


@dataclass(frozen=True)
class CallablePredicate(Predicate):
    """Wraps a user callable; evaluation errors count as no match."""

    func: Callable[[Any], Any]

    def __call__(self, document: Any) -> bool:
        try:
            return bool(self.func(document))
        except (TypeError, KeyError, AttributeError, ValueError, LookupError):
            return False


def _evaluate(predicate: Callable[[Any], bool], document: Any) -> bool:
    return bool(predicate(document))


def _parse_literal(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw.strip("'\"")


def _compile_string(expression: str) -> Predicate:
    parts = expression.strip().split(None, 2)
    if not parts:
        raise PredicateError("Empty predicate expression")
    if len(parts) == 1:
        return Truthy(parts[0])

    path, op = parts[0], parts[1]
    if len(parts) == 2:
        if normalize_operator(op) != "exists":
            raise PredicateError(f"Predicate '{expression}' is missing a value")
        return FieldCondition(path, "exists")
    return FieldCondition(path, op, _parse_literal(parts[2]))


def _is_operator_map(value: Any) -> bool:
    if not isinstance(value, Mapping) or not value:
        return False
    return all(isinstance(key, str) and _ALIASES.get(key, key) in OPERATORS for key in value)


def _compile_filter_mapping(spec: Mapping[str, Any]) -> Predicate:
    parts: list[Predicate] = []
    for path, expected in spec.items():
        if _is_operator_map(expected):
            parts.extend(FieldCondition(path, op, value) for op, value in expected.items())
        else:
            parts.append(FieldCondition(path, "eq", expected))
    return AllOf(parts)


def compile_predicate(spec: Any) -> Callable[[Any], bool]:
    """
    Compile a predicate description into an evaluable predicate.

    Raises:
        PredicateError: The description is malformed.
    """
    if spec is None:
        return Always()
    if isinstance(spec, Predicate):
        return spec
    if isinstance(spec, str):
        return _compile_string(spec)
    if isinstance(spec, Mapping):
        keys = set(spec)
        if keys == {"all"}:
            return AllOf(compile_predicate(item) for item in _as_list(spec["all"], "all"))
        if keys == {"any"}:
            return AnyOf(compile_predicate(item) for item in _as_list(spec["any"], "any"))
        if keys == {"not"}:
            return Not(compile_predicate(spec["not"]))
        if "path" in keys and keys <= {"path", "op", "operator", "value"}:
            op = spec.get("op", spec.get("operator", "eq" if "value" in spec else "exists"))
            return FieldCondition(spec["path"], op, spec.get("value"))
        return _compile_filter_mapping(spec)
    if isinstance(spec, (list, tuple)):
        return AllOf(compile_predicate(item) for item in spec)
    if callable(spec):
        return CallablePredicate(spec)
    raise PredicateError(f"Unsupported predicate of type {type(spec).__name__}")


def _as_list(value: Any, key: str) -> list[Any]:
    if not isinstance(value, (list, tuple)):
        raise PredicateError(f"'{key}' expects a list of predicates")
    return list(value)
