"""
Authorization engine for the ACL service.
"""

import threading
import time
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from shared.config import ACLConfig
from shared.logging import get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from .models import ACLUser, Decision, Rule
from .rule_set import RuleSet
from .scope import Scope

ScopeLike = Union[Scope, Iterable[str]]


def as_scope(scope: ScopeLike) -> Scope:
    """Accept a Scope or an ``(area, subarea, operation)`` sequence."""
    if isinstance(scope, Scope):
        return scope
    return Scope(*scope)


class PolicyEngine:
    """Decides whether a user may access a scope.

    Compiled rules are memoized per scope key and tagged with the rule set
    version they came from; the rule set calls ``reset`` on every write.
    Scope keys come from request paths, so the memo keeps at most
    ``max_cached_scopes`` entries and evicts the least recently used.
    """

    def __init__(
        self,
        rules: RuleSet,
        super_role: Optional[str] = None,
        metrics: Optional[MetricsCollector] = None,
        cache_compiled: bool = True,
        max_cached_scopes: int = 1024,
    ):
        self.logger = get_logger("acl.engine")
        self.rules = rules
        self.super_role = super_role or None
        self.metrics = metrics or get_metrics_collector()
        self.cache_compiled = cache_compiled
        self.max_cached_scopes = max_cached_scopes
        # Insertion ordered: the first key is the least recently used
        self._compiled: Dict[str, Tuple[int, Rule]] = {}
        self._lock = threading.Lock()

        rules.subscribe(self.reset)
        self.metrics.set_rule_count(len(rules))

    @classmethod
    def from_config(
        cls,
        rules: RuleSet,
        config: Optional[ACLConfig] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> "PolicyEngine":
        config = config or ACLConfig()
        return cls(
            rules,
            super_role=config.super_role,
            metrics=metrics or get_metrics_collector(config.service_name),
            cache_compiled=config.cache_compiled_rules,
            max_cached_scopes=config.max_cached_scopes,
        )

    def reset(self) -> None:
        """Forget every compiled rule."""
        with self._lock:
            self._compiled.clear()
        self.metrics.set_rule_count(len(self.rules))

    def compile(self, scope: ScopeLike) -> Rule:
        """Compiled rule for ``scope``."""
        scope = as_scope(scope)

        if not self.cache_compiled:
            with self.metrics.time_operation("acl_compile_duration_seconds", cache="off"):
                return self.rules.compile(scope)

        key = scope.key()
        with self._lock:
            entry = self._compiled.pop(key, None)
            if entry is not None and entry[0] == self.rules.version:
                self._compiled[key] = entry
            else:
                entry = None

        if entry is not None:
            self.metrics.record_cache_lookup(hit=True)
            return entry[1]

        self.metrics.record_cache_lookup(hit=False)
        with self.metrics.time_operation("acl_compile_duration_seconds", cache="miss"):
            version, compiled = self.rules.compile_versioned(scope)

        with self._lock:
            self._compiled.pop(key, None)
            while len(self._compiled) >= self.max_cached_scopes:
                evicted = next(iter(self._compiled))
                del self._compiled[evicted]
                self.logger.debug("Evicted compiled rule", scope=evicted)
            self._compiled[key] = (version, compiled)

        self.logger.debug(
            "Rules compiled",
            scope=key,
            matched_rules=list(compiled.lineage()),
            roles=sorted(compiled.roles),
            capabilities=sorted(compiled.capabilities),
        )
        return compiled

    def is_authorized(self, user: ACLUser, scope: ScopeLike) -> bool:
        """Check if a user may access the scope."""
        if self.rules.is_empty():
            return True
        return self.compile(scope).evaluate(user, self.super_role)

    def authorize(self, user: ACLUser, scope: ScopeLike) -> Decision:
        """Authorize a user and pick the remediation callback on denial.

        A rule set holding only the default rule allows everything.
        """
        start_time = time.time()
        scope = as_scope(scope)

        if self.rules.is_empty():
            self.metrics.record_decision(True, "empty_policy")
            return Decision(
                allowed=True,
                reason="No rules registered",
                evaluation_time_ms=(time.time() - start_time) * 1000
            )

        compiled = self.compile(scope)
        path = compiled.allow_path(user, self.super_role)
        self.metrics.record_decision(path is not None, path)

        if path is not None:
            return Decision(
                allowed=True,
                reason=f"Allowed by {path}",
                matched_rules=list(compiled.lineage()),
                evaluation_time_ms=(time.time() - start_time) * 1000
            )

        callback = compiled.callback_for(user)
        self.logger.info(
            "Access denied",
            scope=scope.key(),
            user_id=user.id,
            callback=callback.handle if callback else None,
        )
        return Decision(
            allowed=False,
            callback=callback,
            reason="No allow path matched",
            matched_rules=list(compiled.lineage()),
            evaluation_time_ms=(time.time() - start_time) * 1000
        )

    def get_stats(self) -> Dict[str, Any]:
        """Get engine statistics."""
        stats = self.rules.get_stats()
        with self._lock:
            stats["cached_scopes"] = len(self._compiled)
        stats["super_role"] = self.super_role
        return stats


# Short alias
ACL = PolicyEngine
