"""
Scoped ACL service package.

Decides whether a user may access an ``(area, subarea, operation)`` scope
from a catalog of scoped rules. It provides:

- app.rules: Scope model, rules, rule set compilation and the policy engine.
- app.web: FastAPI integration that runs denial callbacks and signals 401/403.

Guidelines:
- Rules are registered programmatically at start-up; nothing is persisted.
- Compilation is pure and in-memory; engines memoize compiled rules per scope.
"""
