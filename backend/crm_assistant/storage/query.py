"""
Small composable predicates for user-scoped table queries.

They mirror the filter vocabulary of a PostgREST style client (``eq``,
``ilike``, ``is``, ``gte``, ``lte`` combined with ``and``/``or``) so a remote
store can translate them one to one, while the in-memory store simply calls
``matches``.
"""

from dataclasses import dataclass
from typing import Any, Dict, Tuple, Union


@dataclass(frozen=True)
class Condition:
    field: str
    op: str
    value: Any = None

    def matches(self, record: Dict[str, Any]) -> bool:
        actual = record.get(self.field)

        if self.op == "is_null":
            return actual is None or actual == ""

        if actual is None:
            return False

        if self.op == "eq":
            return actual == self.value
        if self.op == "ilike":
            return str(self.value).lower() in str(actual).lower()
        if self.op == "gte":
            return actual >= self.value
        if self.op == "lte":
            return actual <= self.value

        raise ValueError(f"Unsupported operator: {self.op}")


@dataclass(frozen=True)
class AllOf:
    predicates: Tuple["Predicate", ...]

    def matches(self, record: Dict[str, Any]) -> bool:
        return all(p.matches(record) for p in self.predicates)


@dataclass(frozen=True)
class AnyOf:
    predicates: Tuple["Predicate", ...]

    def matches(self, record: Dict[str, Any]) -> bool:
        return any(p.matches(record) for p in self.predicates)


Predicate = Union[Condition, AllOf, AnyOf]


def eq(field: str, value: Any) -> Condition:
    return Condition(field, "eq", value)


def ilike(field: str, term: str) -> Condition:
    """Case-insensitive substring match (``field ILIKE '%term%'``)."""
    return Condition(field, "ilike", term)


def is_null(field: str) -> Condition:
    return Condition(field, "is_null")


def gte(field: str, value: Any) -> Condition:
    return Condition(field, "gte", value)


def lte(field: str, value: Any) -> Condition:
    return Condition(field, "lte", value)


def all_of(*predicates: Predicate) -> AllOf:
    return AllOf(tuple(predicates))


def any_of(*predicates: Predicate) -> AnyOf:
    return AnyOf(tuple(predicates))
