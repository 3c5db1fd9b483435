"""
Scopes, scope patterns and key encoding.

A scope is the ``(area, subarea, operation)`` triple a request targets. A
scope pattern is what a rule is registered under; each of its components is
empty (generic at that level), the wildcard, one literal, or a set of
literals.
"""

from dataclasses import dataclass
from typing import FrozenSet, Iterable, Tuple, Union

from shared.errors import MalformedScopeError

WILDCARD = "?"
KEY_SEPARATOR = "|"

Component = Union[str, FrozenSet[str]]

_PART_NAMES = ("area", "subarea", "operation")


def _check_part(name: str, value: str) -> None:
    if not isinstance(value, str):
        raise MalformedScopeError(
            f"Scope {name} must be a string",
            details={"part": name, "value": repr(value)}
        )
    if KEY_SEPARATOR in value:
        raise MalformedScopeError(
            f"Scope {name} may not contain '{KEY_SEPARATOR}'",
            details={"part": name, "value": value}
        )


def encode_key(area: str, subarea: str = "", operation: str = "") -> str:
    """Join scope parts into a lookup key."""
    return KEY_SEPARATOR.join((area, subarea, operation))


@dataclass(frozen=True)
class Scope:
    """The concrete target of a request."""
    area: str = ""
    subarea: str = ""
    operation: str = ""

    def __post_init__(self):
        for name, value in zip(_PART_NAMES, self.parts()):
            _check_part(name, value)

    @classmethod
    def from_key(cls, key: str) -> "Scope":
        parts = key.split(KEY_SEPARATOR)
        if len(parts) != 3:
            raise MalformedScopeError("Scope key must have three parts", details={"key": key})
        return cls(*parts)

    def parts(self) -> Tuple[str, str, str]:
        return (self.area, self.subarea, self.operation)

    def key(self) -> str:
        return encode_key(*self.parts())

    def cascade(self) -> Tuple["Scope", ...]:
        return cascade(self)

    def __str__(self) -> str:
        return self.key()


DEFAULT_SCOPE = Scope()


def cascade(scope: Scope) -> Tuple[Scope, ...]:
    """Return the lookup ladder for a scope, most specific first."""
    return (
        scope,
        Scope(scope.area, scope.subarea, ""),
        Scope(scope.area, "", ""),
        DEFAULT_SCOPE,
    )


def _normalize(name: str, value: Union[str, Iterable[str]]) -> Component:
    if isinstance(value, str):
        _check_part(name, value)
        return value

    literals = frozenset(value)
    for literal in literals:
        _check_part(name, literal)
    if WILDCARD in literals:
        raise MalformedScopeError(
            f"Wildcard cannot be combined with literals in {name}",
            details={"part": name, "value": sorted(literals)}
        )
    if len(literals) == 1:
        return next(iter(literals))
    if not literals:
        return ""
    return literals


def _matches(component: Component, value: str) -> bool:
    if isinstance(component, frozenset):
        return value in component
    return component in ("", WILDCARD) or component == value


def _resolve(component: Component, value: str) -> str:
    if isinstance(component, frozenset) or component == WILDCARD:
        return value
    return component


def _render(component: Component) -> str:
    if isinstance(component, frozenset):
        return ",".join(sorted(component))
    return component


@dataclass(frozen=True)
class ScopePattern:
    """Scope a rule is registered under."""
    area: Component = ""
    subarea: Component = ""
    operation: Component = ""

    def __post_init__(self):
        for name in _PART_NAMES:
            object.__setattr__(self, name, _normalize(name, getattr(self, name)))

    def components(self) -> Tuple[Component, Component, Component]:
        return (self.area, self.subarea, self.operation)

    def is_default(self) -> bool:
        return self.components() == ("", "", "")

    def is_wildcard(self, part: str) -> bool:
        return getattr(self, part) == WILDCARD

    def has_wildcard(self) -> bool:
        return any(component == WILDCARD for component in self.components())

    def needs_resolution(self) -> bool:
        """True when resolving against a scope would change the pattern."""
        return any(
            component == WILDCARD or isinstance(component, frozenset)
            for component in self.components()
        )

    def matches(self, scope: Scope) -> bool:
        return all(
            _matches(component, value)
            for component, value in zip(self.components(), scope.parts())
        )

    def resolve(self, scope: Scope) -> "ScopePattern":
        return ScopePattern(*(
            _resolve(component, value)
            for component, value in zip(self.components(), scope.parts())
        ))

    def as_scope(self) -> Scope:
        """Literal patterns only."""
        if self.needs_resolution():
            raise MalformedScopeError("Pattern is not literal", details={"pattern": self.key()})
        return Scope(*self.components())

    def key(self) -> str:
        return encode_key(*(_render(component) for component in self.components()))

    def __str__(self) -> str:
        return self.key()
