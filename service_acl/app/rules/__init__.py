"""
Rules engine package.

Defines scoped access rules and the engine that compiles and evaluates
them. A rule is attached to an ``(area, subarea, operation)`` pattern; for
a concrete scope, every applicable rule is resolved and merged from the
most general to the most specific, and the merged rule decides whether a
user is allowed and which callback to run when they are not.

Modules of interest:
- scope: Scope values, patterns, key encoding and the cascade ladder.
- models: Rule, callbacks, decisions and user identities.
- rule_set: Rule registration and the compile algorithm.
- engine: The policy engine facade with compiled-rule memoization.
"""

from .scope import Scope, ScopePattern, WILDCARD, KEY_SEPARATOR, encode_key, cascade
from .models import (
    ACLUser, Identity, CallbackSpec, Rule, Decision, RuleDefinition, CallbackDefinition,
    DEFAULT_CALLBACK,
)
from .rule_set import RuleSet, compile_rules
from .engine import PolicyEngine, ACL, as_scope

__all__ = [
    "Scope", "ScopePattern", "WILDCARD", "KEY_SEPARATOR", "encode_key", "cascade",
    "ACLUser", "Identity", "CallbackSpec", "Rule", "Decision", "RuleDefinition",
    "CallbackDefinition", "DEFAULT_CALLBACK",
    "RuleSet", "compile_rules",
    "PolicyEngine", "ACL", "as_scope",
]
