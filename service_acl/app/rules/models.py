"""
Rule data models for the ACL engine.
"""

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import (
    Any, FrozenSet, Hashable, Iterable, List, Mapping, Optional, Protocol, Tuple, Union,
    runtime_checkable,
)

from pydantic import BaseModel, Field

from .scope import Scope, ScopePattern, WILDCARD


class _DefaultCallbackKey:
    """Callback key used when none of the user's roles has a callback."""

    def __repr__(self) -> str:
        return "DEFAULT_CALLBACK"


# Not a string, so no role name can take the default slot
DEFAULT_CALLBACK = _DefaultCallbackKey()
CallbackKey = Union[str, _DefaultCallbackKey]

# Names of the checks that can grant access, in evaluation order
ALLOW_SUPER_ROLE = "super_role"
ALLOW_USER = "user"
ALLOW_CAPABILITIES = "capabilities"
ALLOW_ROLES = "roles"


@runtime_checkable
class ACLUser(Protocol):
    """What the engine needs to know about a user."""
    id: Any
    roles: Iterable[str]
    capabilities: Iterable[str]


@dataclass(frozen=True)
class Identity:
    """Attribute snapshot of a user."""
    id: Optional[Hashable] = None
    roles: FrozenSet[str] = frozenset()
    capabilities: FrozenSet[str] = frozenset()

    def __post_init__(self):
        object.__setattr__(self, "roles", frozenset(self.roles))
        object.__setattr__(self, "capabilities", frozenset(self.capabilities))

    @classmethod
    def anonymous(cls) -> "Identity":
        """A guest: no roles, no capabilities, an id no allow-list contains."""
        return cls()

    @classmethod
    def from_user_info(cls, user_info: Mapping[str, Any]) -> "Identity":
        """Build an identity from an authenticated user-info mapping."""
        return cls(
            id=user_info.get("user_id"),
            roles=user_info.get("roles") or (),
            capabilities=user_info.get("capabilities") or (),
        )

    @property
    def is_anonymous(self) -> bool:
        return self.id is None


@dataclass(frozen=True)
class CallbackSpec:
    """Remediation action for a denied user.

    ``handle`` names a function in the caller's callback registry; the
    engine only selects the callback, it never runs it.
    """
    handle: str
    args: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class Rule:
    """Access requirement attached to a scope pattern.

    Rules are immutable; every builder method returns a new rule::

        Rule().for_area("admin").for_current_subarea().for_current_operation() \\
            .auto_capability() \\
            .add_callback("login", "redirect", "/login")
    """
    pattern: ScopePattern = field(default_factory=ScopePattern)
    name: Optional[str] = None
    roles: FrozenSet[str] = frozenset()
    capabilities: FrozenSet[str] = frozenset()
    users: FrozenSet[Hashable] = frozenset()
    callbacks: Mapping[CallbackKey, CallbackSpec] = field(default_factory=dict, hash=False)
    auto_capability_mode: bool = False
    # Labels of the registered rules a compiled rule was merged from
    merged_from: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "callbacks", MappingProxyType(dict(self.callbacks)))

    @classmethod
    def default(cls) -> "Rule":
        return cls(name="default")

    # Builder

    def named(self, name: str) -> "Rule":
        return replace(self, name=name)

    def for_scope(self, area="", subarea="", operation="") -> "Rule":
        return replace(self, pattern=ScopePattern(area, subarea, operation))

    def for_area(self, *areas: str) -> "Rule":
        return replace(self, pattern=replace(self.pattern, area=_component(areas)))

    def for_subarea(self, *subareas: str) -> "Rule":
        return replace(self, pattern=replace(self.pattern, subarea=_component(subareas)))

    def for_operation(self, *operations: str) -> "Rule":
        return replace(self, pattern=replace(self.pattern, operation=_component(operations)))

    def for_current_area(self) -> "Rule":
        return self.for_area(WILDCARD)

    def for_current_subarea(self) -> "Rule":
        return self.for_subarea(WILDCARD)

    def for_current_operation(self) -> "Rule":
        return self.for_operation(WILDCARD)

    def allow_roles(self, *roles: str) -> "Rule":
        return replace(self, roles=self.roles | frozenset(roles))

    def require_capabilities(self, *capabilities: str) -> "Rule":
        return replace(self, capabilities=self.capabilities | frozenset(capabilities))

    def allow_users(self, *user_ids: Hashable) -> "Rule":
        return replace(self, users=self.users | frozenset(user_ids))

    def add_callback(self, role: CallbackKey, handle: str, *args: Any) -> "Rule":
        callbacks = dict(self.callbacks)
        callbacks[role] = CallbackSpec(handle, tuple(args))
        return replace(self, callbacks=callbacks)

    def default_callback(self, handle: str, *args: Any) -> "Rule":
        return self.add_callback(DEFAULT_CALLBACK, handle, *args)

    def auto_capability(self) -> "Rule":
        """Require ``"{subarea}.{operation}"`` of the scope being authorized."""
        return replace(self, auto_capability_mode=True)

    # State

    @property
    def label(self) -> str:
        return self.name or self.pattern.key()

    def lineage(self) -> Tuple[str, ...]:
        return self.merged_from or (self.label,)

    def is_default(self) -> bool:
        """The empty rule every cascade starts from."""
        return (
            self.pattern.is_default()
            and not (self.roles or self.capabilities or self.users or self.callbacks)
            and not self.auto_capability_mode
        )

    def invalid_reason(self) -> Optional[str]:
        if self.is_default():
            return None
        if self.auto_capability_mode:
            # An empty component would resolve off the cascade ladder
            if not all(self.pattern.components()):
                return "auto capability rules need an area, subarea and operation"
            return None
        if not (self.roles or self.capabilities or self.users):
            return "rule grants nothing: no roles, capabilities or users"
        return None

    def is_valid(self) -> bool:
        return self.invalid_reason() is None

    # Compilation

    def applies_to(self, scope: Scope) -> bool:
        return self.pattern.matches(scope)

    def resolve_for(self, scope: Scope) -> "Rule":
        """Bind wildcards (and literal sets) to the scope's components.

        Only call this for scopes the rule applies to.
        """
        if not self.pattern.needs_resolution() and not self.auto_capability_mode:
            return self

        capabilities = self.capabilities
        if self.auto_capability_mode:
            capabilities = frozenset([f"{scope.subarea}.{scope.operation}"])

        return replace(
            self,
            pattern=self.pattern.resolve(scope),
            capabilities=capabilities,
            auto_capability_mode=False,
            merged_from=self.lineage(),
        )

    def merge(self, other: "Rule") -> "Rule":
        """Combine with a more specific rule.

        Requirement sets accumulate; ``other``'s callbacks win per role key.
        """
        callbacks = dict(self.callbacks)
        callbacks.update(other.callbacks)

        return Rule(
            pattern=other.pattern,
            name=other.name or self.name,
            roles=self.roles | other.roles,
            capabilities=self.capabilities | other.capabilities,
            users=self.users | other.users,
            callbacks=callbacks,
            auto_capability_mode=False,
            merged_from=self.lineage() + other.lineage(),
        )

    # Evaluation

    def allow_path(self, user: ACLUser, super_role: Optional[str] = None) -> Optional[str]:
        """Name the check that grants ``user`` access, or None.

        Checks run in order: super role, user allow-list, capabilities (all
        required), roles (any, and only when no capability is required).
        """
        roles = frozenset(user.roles)

        if super_role and super_role in roles:
            return ALLOW_SUPER_ROLE

        if user.id is not None and user.id in self.users:
            return ALLOW_USER

        if self.capabilities:
            if self.capabilities <= frozenset(user.capabilities):
                return ALLOW_CAPABILITIES
            return None

        if self.roles & roles:
            return ALLOW_ROLES

        return None

    def evaluate(self, user: ACLUser, super_role: Optional[str] = None) -> bool:
        return self.allow_path(user, super_role) is not None

    def callback_for(self, user: ACLUser) -> Optional[CallbackSpec]:
        """First callback for a role the user holds, else the default one."""
        roles = frozenset(user.roles)
        for role, callback in self.callbacks.items():
            if role != DEFAULT_CALLBACK and role in roles:
                return callback
        return self.callbacks.get(DEFAULT_CALLBACK)


def _component(values: Tuple[str, ...]) -> Union[str, FrozenSet[str]]:
    if not values:
        return ""
    if len(values) == 1:
        return values[0]
    return frozenset(values)


@dataclass
class Decision:
    """Result of authorizing a user for a scope."""
    allowed: bool
    callback: Optional[CallbackSpec] = None
    reason: Optional[str] = None
    matched_rules: List[str] = field(default_factory=list)
    evaluation_time_ms: float = 0.0

    def __bool__(self) -> bool:
        return self.allowed


class CallbackDefinition(BaseModel):
    """Declarative denial callback."""
    role: Optional[str] = Field(None, description="Role the callback applies to, None for the default")
    handle: str = Field(..., description="Callback registry handle")
    args: List[Any] = Field(default_factory=list, description="Positional arguments")


class RuleDefinition(BaseModel):
    """Declarative rule, for registering rules from configuration data."""
    name: Optional[str] = Field(None, description="Rule name")
    area: Union[str, List[str]] = Field("", description="Area, wildcard or list of areas")
    subarea: Union[str, List[str]] = Field("", description="Subarea, wildcard or list of subareas")
    operation: Union[str, List[str]] = Field("", description="Operation, wildcard or list of operations")
    roles: List[str] = Field(default_factory=list, description="Roles that grant access")
    capabilities: List[str] = Field(default_factory=list, description="Capabilities all required")
    users: List[Union[int, str]] = Field(default_factory=list, description="User IDs always allowed")
    callbacks: List[CallbackDefinition] = Field(default_factory=list, description="Denial callbacks")
    auto_capability: bool = Field(False, description="Derive the capability from subarea and operation")

    def to_rule(self) -> Rule:
        rule = Rule(name=self.name).for_scope(
            _as_component(self.area),
            _as_component(self.subarea),
            _as_component(self.operation),
        )
        rule = rule.allow_roles(*self.roles) \
            .require_capabilities(*self.capabilities) \
            .allow_users(*self.users)
        for callback in self.callbacks:
            role = DEFAULT_CALLBACK if callback.role is None else callback.role
            rule = rule.add_callback(role, callback.handle, *callback.args)
        if self.auto_capability:
            rule = rule.auto_capability()
        return rule


def _as_component(value: Union[str, List[str]]) -> Union[str, FrozenSet[str]]:
    if isinstance(value, str):
        return value
    return frozenset(value)
