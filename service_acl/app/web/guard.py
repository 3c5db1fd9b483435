"""
FastAPI integration for the ACL engine.

The engine only decides; this module does what a web application does with
the decision: it runs the denial callback the decision names and, when the
callback does not end the request itself, answers with 401/403.
"""

import inspect
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from fastapi import HTTPException, Request

from shared.config import ACLConfig
from shared.errors import AccessDeniedError, MalformedScopeError, UnknownCallbackError
from shared.logging import clear_acl_context, get_logger, set_acl_context
from ..rules.engine import PolicyEngine
from ..rules.models import ACLUser, CallbackSpec, Identity
from ..rules.scope import Scope

UserLoader = Callable[[Request], Union[ACLUser, Awaitable[ACLUser]]]
ScopeResolver = Callable[[Request], Scope]


class CallbackRegistry:
    """Maps callback handles to functions.

    Callbacks are called as ``func(request, *spec.args)`` and may be
    coroutines. To end the request a callback raises, e.g. an
    ``HTTPException`` carrying a redirect.
    """

    def __init__(self):
        self.logger = get_logger("acl.callbacks")
        self._callbacks: Dict[str, Callable[..., Any]] = {}

    def register(self, handle: str, func: Callable[..., Any]) -> None:
        self._callbacks[handle] = func

    def callback(self, handle: str):
        """Decorator registering a function under ``handle``."""
        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.register(handle, func)
            return func
        return decorator

    def __contains__(self, handle: str) -> bool:
        return handle in self._callbacks

    def resolve(self, spec: CallbackSpec) -> Callable[..., Any]:
        if spec.handle not in self._callbacks:
            raise UnknownCallbackError(spec.handle, details={"args": list(spec.args)})
        return self._callbacks[spec.handle]

    async def invoke(self, spec: CallbackSpec, request: Request) -> Any:
        func = self.resolve(spec)
        self.logger.debug("Running denial callback", handle=spec.handle)
        result = func(request, *spec.args)
        if inspect.isawaitable(result):
            result = await result
        return result


def scope_from_path(request: Request) -> Scope:
    """Map the first three path segments to area, subarea and operation."""
    segments = [segment for segment in request.url.path.split("/") if segment][:3]
    segments += [""] * (3 - len(segments))
    return Scope(*segments)


def user_from_state(request: Request) -> ACLUser:
    """Use ``request.state.user_info`` set by authentication, else a guest."""
    user_info = getattr(request.state, "user_info", None)
    if user_info:
        return Identity.from_user_info(user_info)
    return Identity.anonymous()


class ACLGuard:
    """FastAPI dependency enforcing the ACL on a request.

    ``Depends(guard)`` derives the scope from the request;
    ``Depends(guard.require("admin", "billing", "refund"))`` pins it.
    The dependency returns the authorized user.
    """

    def __init__(
        self,
        engine: PolicyEngine,
        callbacks: Optional[CallbackRegistry] = None,
        user_loader: UserLoader = user_from_state,
        scope_resolver: ScopeResolver = scope_from_path,
        deny_status_code: int = 401,
    ):
        self.logger = get_logger("acl.guard")
        self.engine = engine
        self.callbacks = callbacks or CallbackRegistry()
        self.user_loader = user_loader
        self.scope_resolver = scope_resolver
        self.deny_status_code = deny_status_code

    @classmethod
    def from_config(cls, engine: PolicyEngine, config: ACLConfig, **kwargs) -> "ACLGuard":
        return cls(engine, deny_status_code=config.deny_status_code, **kwargs)

    async def __call__(self, request: Request) -> ACLUser:
        try:
            scope = self.scope_resolver(request)
        except MalformedScopeError as e:
            self.logger.warning("Malformed scope", path=request.url.path, error=e.message)
            raise HTTPException(status_code=400, detail=e.to_response().model_dump())

        return await self.check(request, scope)

    def require(self, area: str, subarea: str = "", operation: str = ""):
        """Dependency for a fixed scope."""
        scope = Scope(area, subarea, operation)

        async def dependency(request: Request) -> ACLUser:
            return await self.check(request, scope)

        return dependency

    async def check(self, request: Request, scope: Scope) -> ACLUser:
        """Authorize the request's user, running the callback on denial."""
        user = self.user_loader(request)
        if inspect.isawaitable(user):
            user = await user

        set_acl_context(user_id=user.id, scope_key=scope.key())
        try:
            decision = self.engine.authorize(user, scope)
            request.state.acl_decision = decision

            if decision.allowed:
                return user

            if decision.callback is not None:
                await self.callbacks.invoke(decision.callback, request)

            error = AccessDeniedError(
                status_code=self.deny_status_code,
                details={"scope": scope.key()}
            )
            raise HTTPException(status_code=error.status_code, detail=error.to_response().model_dump())
        finally:
            clear_acl_context()
