"""
ACL service assembly.

Wires configuration, logging, metrics, the policy engine and the web guard
together for a FastAPI application::

    acl = ACLService(RULES, callbacks=callbacks)
    app = acl.install(FastAPI())

    @app.get("/{area}/{subarea}/{operation}")
    async def handler(user=Depends(acl.guard)):
        ...
"""

from typing import Any, Iterable, Optional, Union

from fastapi import FastAPI, Request
from prometheus_client import CollectorRegistry

from shared.config import ACLConfig, get_config
from shared.logging import clear_context, configure_logging, get_logger, set_request_id
from shared.metrics import get_metrics_collector
from .rules.engine import PolicyEngine
from .rules.models import Rule, RuleDefinition
from .rules.rule_set import RuleSet
from .web.guard import ACLGuard, CallbackRegistry

REQUEST_ID_HEADER = "X-Request-ID"


class ACLService:
    """Policy engine and guard with logging and metrics configured."""

    def __init__(
        self,
        rules: Union[RuleSet, Iterable[Any], None] = None,
        config: Optional[ACLConfig] = None,
        callbacks: Optional[CallbackRegistry] = None,
        registry: Optional[CollectorRegistry] = None,
        **guard_options,
    ):
        self.config = config or get_config()

        configure_logging(
            self.config.service_name,
            self.config.log_level,
            json_logs=self.config.env != "local",
        )
        self.logger = get_logger(f"{self.config.service_name}.service")

        self.registry = registry or CollectorRegistry()
        self.metrics = get_metrics_collector(self.config.service_name, self.registry)

        self.rules = _as_rule_set(rules)
        self.engine = PolicyEngine.from_config(self.rules, self.config, metrics=self.metrics)
        self.guard = ACLGuard.from_config(self.engine, self.config, callbacks=callbacks, **guard_options)

        if self.config.metrics_port:
            self.metrics.start_metrics_server(self.config.metrics_port)

        self.logger.info(
            "ACL service initialized",
            rules=len(self.rules),
            super_role=self.config.super_role,
            metrics_port=self.config.metrics_port,
        )

    def install(self, app: FastAPI) -> FastAPI:
        """Add the request context middleware and expose the service as ``app.state.acl``."""

        @app.middleware("http")
        async def acl_request_context(request: Request, call_next):
            request_id = set_request_id(request.headers.get(REQUEST_ID_HEADER))
            try:
                response = await call_next(request)
            finally:
                clear_context()
            response.headers[REQUEST_ID_HEADER] = request_id
            return response

        app.state.acl = self
        return app


def _as_rule_set(rules: Union[RuleSet, Iterable[Any], None]) -> RuleSet:
    if isinstance(rules, RuleSet):
        return rules

    rule_set = RuleSet()
    for rule in rules or ():
        if not isinstance(rule, Rule):
            if not isinstance(rule, RuleDefinition):
                rule = RuleDefinition.model_validate(rule)
            rule = rule.to_rule()
        rule_set.add(rule)
    return rule_set
