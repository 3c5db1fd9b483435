"""
Rule set and compilation for the ACL engine.
"""

import threading
import weakref
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from shared.logging import get_logger
from shared.errors import InvalidRuleError
from .models import Rule, RuleDefinition
from .scope import Scope

Listener = Callable[[], None]


class _StrongRef:
    """Reference-like wrapper for listeners that are not bound methods."""

    def __init__(self, listener: Listener):
        self._listener = listener

    def __call__(self) -> Listener:
        return self._listener


class RuleSet:
    """Ordered collection of rules.

    Always holds exactly one default rule (the empty rule at the empty
    scope). Writes bump ``version`` and notify subscribed listeners so
    anything memoizing compiled rules can drop them.
    """

    def __init__(self, rules: Optional[Iterable[Rule]] = None):
        self.logger = get_logger("acl.rule_set")
        self._lock = threading.RLock()
        self._rules: List[Rule] = [Rule.default()]
        self._version = 0
        self._listeners: List[Any] = []

        for rule in rules or ():
            self.add(rule)

    @classmethod
    def from_definitions(cls, definitions: Iterable[Any]) -> "RuleSet":
        """Build a rule set from ``RuleDefinition`` models or plain dicts."""
        rules = []
        for definition in definitions:
            if not isinstance(definition, RuleDefinition):
                definition = RuleDefinition.model_validate(definition)
            rules.append(definition.to_rule())
        return cls(rules)

    @property
    def version(self) -> int:
        return self._version

    @property
    def rules(self) -> Tuple[Rule, ...]:
        """Snapshot of the registered rules in registration order."""
        with self._lock:
            return tuple(self._rules)

    def snapshot(self) -> Tuple[int, Tuple[Rule, ...]]:
        with self._lock:
            return self._version, tuple(self._rules)

    def add(self, rule: Rule) -> "RuleSet":
        """Validate and register a rule."""
        reason = rule.invalid_reason()
        if reason is not None:
            self.logger.warning("Invalid rule rejected", rule=rule.label, reason=reason)
            raise InvalidRuleError(details={"rule": rule.label, "reason": reason})

        with self._lock:
            if rule.is_default() and any(existing.is_default() for existing in self._rules):
                return self
            self._rules.append(rule)
            self._version += 1

        self.logger.info("Rule added", rule=rule.label, scope=rule.pattern.key())
        self._notify()
        return self

    def extend(self, rules: Iterable[Rule]) -> "RuleSet":
        for rule in rules:
            self.add(rule)
        return self

    def clear(self) -> "RuleSet":
        """Remove every rule, leaving a fresh default rule."""
        with self._lock:
            self._rules = [Rule.default()]
            self._version += 1

        self.logger.info("All rules cleared")
        self._notify()
        return self

    def is_empty(self) -> bool:
        """True when nothing beyond the default rule is registered."""
        with self._lock:
            return all(rule.is_default() for rule in self._rules)

    def __len__(self) -> int:
        with self._lock:
            return len(self._rules)

    def __iter__(self) -> Iterator[Rule]:
        return iter(self.rules)

    def subscribe(self, listener: Listener) -> None:
        """Call ``listener`` after every write. Bound methods are held weakly."""
        if hasattr(listener, "__self__") and hasattr(listener, "__func__"):
            ref = weakref.WeakMethod(listener)
        else:
            ref = _StrongRef(listener)
        with self._lock:
            self._listeners.append(ref)

    def _notify(self) -> None:
        with self._lock:
            listeners = [ref() for ref in self._listeners]
            self._listeners = [
                ref for ref, listener in zip(self._listeners, listeners) if listener is not None
            ]
        for listener in listeners:
            if listener is not None:
                listener()

    def compile(self, scope: Scope) -> Rule:
        """Merge every rule that applies to ``scope`` into one rule."""
        return self.compile_versioned(scope)[1]

    def compile_versioned(self, scope: Scope) -> Tuple[int, Rule]:
        """Compile and report the rule set version the result belongs to."""
        version, rules = self.snapshot()
        return version, compile_rules(rules, scope)

    def get_stats(self) -> Dict[str, Any]:
        rules = self.rules
        return {
            "total_rules": len(rules),
            "wildcard_rules": len([r for r in rules if r.pattern.has_wildcard()]),
            "auto_capability_rules": len([r for r in rules if r.auto_capability_mode]),
            "version": self._version,
        }


def compile_rules(rules: Iterable[Rule], scope: Scope) -> Rule:
    """Compile ``rules`` for ``scope``.

    Applicable rules are resolved against the scope and bucketed by the
    cascade position their pattern lands on. Each bucket is merged in
    registration order, then buckets are merged from the default position
    down to the exact scope, so more specific callbacks override general
    ones while requirement sets accumulate.
    """
    ladder = scope.cascade()
    buckets: List[Optional[Rule]] = [None] * len(ladder)

    for rule in rules:
        if not rule.applies_to(scope):
            continue

        resolved = rule.resolve_for(scope)
        position = _ladder_position(ladder, resolved)
        if position is None:
            continue

        bucket = buckets[position]
        buckets[position] = resolved if bucket is None else bucket.merge(resolved)

    compiled: Optional[Rule] = None
    for bucket in reversed(buckets):
        if bucket is None:
            continue
        compiled = bucket if compiled is None else compiled.merge(bucket)

    if compiled is None:
        return Rule.default()
    return compiled


def _ladder_position(ladder: Tuple[Scope, ...], rule: Rule) -> Optional[int]:
    parts = rule.pattern.components()
    for position, step in enumerate(ladder):
        if step.parts() == parts:
            return position
    return None
