"""
Unit tests for Rule.
"""

import pytest

from service_acl.app.rules.models import (
    Rule, Identity, CallbackSpec, RuleDefinition, DEFAULT_CALLBACK
)
from service_acl.app.rules.scope import Scope, ScopePattern, WILDCARD


class TestRuleBuilder:
    """Test cases for building rules."""

    def test_builder_returns_new_rules(self):
        """Test that builder calls do not mutate the receiver."""
        base = Rule()
        rule = base.for_area("admin").allow_roles("admin")

        assert base.roles == frozenset()
        assert base.pattern.is_default()
        assert rule.pattern == ScopePattern("admin")
        assert rule.roles == {"admin"}

    def test_builder_accumulates(self):
        """Test that repeated builder calls add to the sets."""
        rule = Rule().allow_roles("a").allow_roles("b").require_capabilities("x", "y").allow_users(1, 2)

        assert rule.roles == {"a", "b"}
        assert rule.capabilities == {"x", "y"}
        assert rule.users == {1, 2}

    def test_current_scope_helpers(self):
        """Test the wildcard helpers."""
        rule = Rule().for_current_area().for_current_subarea().for_current_operation()

        assert rule.pattern.components() == (WILDCARD, WILDCARD, WILDCARD)

    def test_multiple_operations(self):
        """Test registering a rule for several operations."""
        rule = Rule().for_area("admin").for_operation("edit", "delete")

        assert rule.pattern.operation == frozenset({"edit", "delete"})

    def test_callbacks_keep_insertion_order(self):
        """Test callback ordering."""
        rule = Rule().add_callback("guest", "login").default_callback("deny").add_callback("user", "upgrade", "pro")

        assert list(rule.callbacks) == ["guest", DEFAULT_CALLBACK, "user"]
        assert rule.callbacks["user"] == CallbackSpec("upgrade", ("pro",))

    def test_callbacks_are_read_only(self):
        """Test that a rule's callbacks cannot be changed in place."""
        rule = Rule().for_area("admin").allow_roles("admin").default_callback("deny")

        with pytest.raises(TypeError):
            rule.callbacks["guest"] = CallbackSpec("login")

        assert list(rule.callbacks) == [DEFAULT_CALLBACK]
        assert hash(rule) == hash(Rule().for_area("admin").allow_roles("admin").default_callback("deny"))

    def test_role_named_like_default_key(self):
        """Test that no role name collides with the default callback slot."""
        rule = Rule().add_callback("{default}", "role_callback").default_callback("fallback")

        assert rule.callbacks["{default}"] == CallbackSpec("role_callback")
        assert rule.callbacks[DEFAULT_CALLBACK] == CallbackSpec("fallback")
        assert rule.callback_for(Identity(id=1)) == CallbackSpec("fallback")
        assert rule.callback_for(Identity(id=1, roles={"{default}"})) == CallbackSpec("role_callback")

    def test_label(self):
        """Test rule labels."""
        assert Rule().for_area("admin").label == "admin||"
        assert Rule().for_area("admin").named("admins").label == "admins"


class TestRuleValidity:
    """Test cases for rule validation."""

    def test_default_rule_is_valid(self):
        """Test that the empty rule at the empty scope is valid."""
        assert Rule().is_default()
        assert Rule().is_valid()
        assert Rule.default().is_default()

    def test_empty_scoped_rule_is_invalid(self):
        """Test that a rule granting nothing is rejected."""
        rule = Rule().for_area("admin")

        assert not rule.is_valid()
        assert "grants nothing" in rule.invalid_reason()

    def test_callback_only_rule_is_invalid(self):
        """Test that callbacks alone do not make a rule valid."""
        assert not Rule().for_area("admin").default_callback("login").is_valid()

    @pytest.mark.parametrize("rule", [
        Rule().for_area("admin").allow_roles("admin"),
        Rule().for_area("admin").require_capabilities("manage"),
        Rule().for_area("admin").allow_users(7),
        Rule().for_area("admin").for_current_subarea().for_current_operation().auto_capability(),
    ])
    def test_valid_rules(self, rule):
        """Test each field that makes a rule valid."""
        assert rule.is_valid()

    @pytest.mark.parametrize("rule", [
        Rule().for_area("admin").for_subarea("billing").for_current_operation().auto_capability(),
        Rule().for_area("admin").for_current_subarea().for_operation("list").auto_capability(),
        Rule().for_current_area().for_subarea("billing", "orders").for_current_operation().auto_capability(),
    ])
    def test_auto_capability_with_fixed_components(self, rule):
        """Test that auto mode only needs every component set."""
        assert rule.is_valid()

    @pytest.mark.parametrize("rule", [
        Rule().for_current_area().for_current_operation().auto_capability(),
        Rule().for_area("admin").for_current_subarea().auto_capability(),
        Rule().for_current_subarea().for_current_operation().auto_capability(),
    ])
    def test_auto_capability_requires_every_component(self, rule):
        """Test that auto mode rejects patterns with an empty component."""
        assert not rule.is_valid()
        assert "area, subarea and operation" in rule.invalid_reason()


class TestRuleResolution:
    """Test cases for resolving rules against scopes."""

    def test_literal_rule_resolves_to_itself(self):
        """Test that literal rules are returned unchanged."""
        rule = Rule().for_area("admin").allow_roles("admin")

        assert rule.resolve_for(Scope("admin", "billing", "refund")) is rule

    def test_wildcards_bind_to_scope(self):
        """Test wildcard resolution."""
        rule = Rule().for_current_area().for_subarea("billing").allow_roles("clerk")
        resolved = rule.resolve_for(Scope("shop", "billing", "refund"))

        assert resolved.pattern == ScopePattern("shop", "billing", "")
        assert resolved.roles == {"clerk"}
        assert resolved.lineage() == ("?|billing|",)

    def test_auto_capability(self):
        """Test that auto mode derives the capability from the scope."""
        rule = Rule().for_area("admin").for_current_subarea().for_current_operation().auto_capability()
        resolved = rule.resolve_for(Scope("admin", "billing", "refund"))

        assert resolved.capabilities == {"billing.refund"}
        assert resolved.pattern == ScopePattern("admin", "billing", "refund")
        assert resolved.auto_capability_mode is False

    def test_auto_capability_fixed_subarea(self):
        """Test auto mode on a fixed subarea with the operation taken from the scope."""
        rule = Rule().for_area("shop").for_subarea("billing").for_current_operation().auto_capability()
        resolved = rule.resolve_for(Scope("shop", "billing", "refund"))

        assert resolved.capabilities == {"billing.refund"}
        assert resolved.pattern == ScopePattern("shop", "billing", "refund")

    def test_auto_capability_replaces_explicit_capabilities(self):
        """Test that auto mode overrides listed capabilities."""
        rule = Rule().for_current_area().for_current_subarea().for_current_operation() \
            .require_capabilities("ignored").auto_capability()

        assert rule.resolve_for(Scope("a", "b", "c")).capabilities == {"b.c"}

    def test_resolution_does_not_touch_the_rule(self):
        """Test that resolving is side-effect free."""
        rule = Rule().for_area("admin").for_current_subarea().for_current_operation().auto_capability()
        rule.resolve_for(Scope("admin", "billing", "refund"))

        assert rule.pattern.subarea == WILDCARD
        assert rule.auto_capability_mode is True
        assert rule.capabilities == frozenset()

    def test_applies_to(self):
        """Test applicability."""
        rule = Rule().for_area("admin").for_current_subarea().allow_roles("admin")

        assert rule.applies_to(Scope("admin", "billing", "refund"))
        assert not rule.applies_to(Scope("public", "billing", "refund"))


class TestRuleMerge:
    """Test cases for merging rules."""

    def test_sets_are_unioned(self):
        """Test that requirement sets accumulate."""
        general = Rule().allow_roles("a").require_capabilities("c1").allow_users(1)
        specific = Rule().for_area("x").allow_roles("b").require_capabilities("c2").allow_users(2)
        merged = general.merge(specific)

        assert merged.roles == {"a", "b"}
        assert merged.capabilities == {"c1", "c2"}
        assert merged.users == {1, 2}
        assert merged.pattern == specific.pattern

    def test_disjoint_fields_commute(self):
        """Test merge order does not matter for disjoint fields."""
        x = Rule().for_area("x").allow_roles("a")
        y = Rule().for_area("x").require_capabilities("c")

        for merged in (x.merge(y), y.merge(x)):
            assert merged.roles == {"a"}
            assert merged.capabilities == {"c"}

    def test_other_callbacks_win(self):
        """Test callback override on key collision."""
        general = Rule().allow_roles("a").add_callback("guest", "login").default_callback("deny")
        specific = Rule().for_area("x").allow_roles("b").default_callback("upgrade").add_callback("user", "contact")
        merged = general.merge(specific)

        assert merged.callbacks["guest"] == CallbackSpec("login")
        assert merged.callbacks[DEFAULT_CALLBACK] == CallbackSpec("upgrade")
        assert merged.callbacks["user"] == CallbackSpec("contact")

    def test_lineage(self):
        """Test that merged rules remember their sources."""
        merged = Rule.default().merge(Rule().for_area("x").allow_roles("a").named("xs"))

        assert merged.lineage() == ("default", "xs")


class TestRuleEvaluation:
    """Test cases for evaluating users against rules."""

    def test_super_role_bypass(self):
        """Test that the super role passes an empty rule."""
        rule = Rule()
        user = Identity(id=1, roles={"root"})

        assert rule.evaluate(user, super_role="root")
        assert rule.allow_path(user, "root") == "super_role"
        assert not rule.evaluate(user)

    def test_super_role_unset(self):
        """Test that an empty super role disables the bypass."""
        assert not Rule().evaluate(Identity(id=1, roles={""}), super_role="")

    def test_user_allow_list(self):
        """Test that allow-listed users need nothing else."""
        rule = Rule().for_area("x").allow_users(42).require_capabilities("manage").allow_roles("admin")

        assert rule.allow_path(Identity(id=42), None) == "user"
        assert not rule.evaluate(Identity(id=43))

    def test_anonymous_never_matches_allow_list(self):
        """Test that a guest's sentinel id is never allow-listed."""
        rule = Rule().for_area("x").allow_users(None)

        assert not rule.evaluate(Identity.anonymous())

    def test_capabilities_all_required(self):
        """Test AND semantics of capabilities."""
        rule = Rule().for_area("x").require_capabilities("read", "write")

        assert rule.evaluate(Identity(id=1, capabilities={"read", "write", "delete"}))
        assert not rule.evaluate(Identity(id=1, capabilities={"read"}))

    def test_roles_any(self):
        """Test OR semantics of roles."""
        rule = Rule().for_area("x").allow_roles("editor", "admin")

        assert rule.allow_path(Identity(id=1, roles={"admin"})) == "roles"
        assert not rule.evaluate(Identity(id=1, roles={"viewer"}))

    def test_capabilities_suppress_roles(self):
        """Test that any capability requirement disables the role path."""
        rule = Rule().for_area("x").allow_roles("admin").require_capabilities("manage")

        assert not rule.evaluate(Identity(id=1, roles={"admin"}))
        assert rule.evaluate(Identity(id=1, roles={"admin"}, capabilities={"manage"}))

    def test_accepts_plain_objects(self):
        """Test duck-typed users."""
        class User:
            id = 5
            roles = ["admin"]
            capabilities = []

        assert Rule().for_area("x").allow_roles("admin").evaluate(User())


class TestRuleCallbacks:
    """Test cases for selecting denial callbacks."""

    @pytest.fixture
    def rule(self):
        """Rule with role and default callbacks."""
        return Rule().for_area("x").allow_roles("admin") \
            .add_callback("guest", "login", "/login") \
            .default_callback("deny") \
            .add_callback("user", "upgrade")

    def test_first_matching_role(self, rule):
        """Test role callbacks are scanned in insertion order."""
        user = Identity(id=1, roles={"user", "guest"})

        assert rule.callback_for(user) == CallbackSpec("login", ("/login",))

    def test_role_beats_default(self, rule):
        """Test that a role callback wins over an earlier default."""
        assert rule.callback_for(Identity(id=1, roles={"user"})) == CallbackSpec("upgrade")

    def test_default_fallback(self, rule):
        """Test the default callback."""
        assert rule.callback_for(Identity.anonymous()) == CallbackSpec("deny")

    def test_no_callback(self):
        """Test a rule without callbacks."""
        assert Rule().for_area("x").allow_roles("a").callback_for(Identity.anonymous()) is None


class TestIdentity:
    """Test cases for Identity."""

    def test_anonymous(self):
        """Test the guest identity."""
        guest = Identity.anonymous()

        assert guest.is_anonymous
        assert guest.roles == frozenset()
        assert guest.capabilities == frozenset()

    def test_from_user_info(self):
        """Test building an identity from user info."""
        identity = Identity.from_user_info({
            "user_id": "user-123",
            "roles": ["user", "analyst"],
            "capabilities": ["billing.refund"],
        })

        assert identity.id == "user-123"
        assert identity.roles == {"user", "analyst"}
        assert identity.capabilities == {"billing.refund"}
        assert not identity.is_anonymous


class TestRuleDefinition:
    """Test cases for declarative rules."""

    def test_to_rule(self):
        """Test building a rule from a definition."""
        definition = RuleDefinition(
            name="billing",
            area="admin",
            subarea="billing",
            operation=["refund", "charge"],
            roles=["clerk"],
            users=[7],
            callbacks=[{"role": "guest", "handle": "login", "args": ["/login"]}, {"handle": "deny"}],
        )
        rule = definition.to_rule()

        assert rule.name == "billing"
        assert rule.pattern == ScopePattern("admin", "billing", frozenset({"refund", "charge"}))
        assert rule.roles == {"clerk"}
        assert rule.users == {7}
        assert rule.callbacks["guest"] == CallbackSpec("login", ("/login",))
        assert rule.callbacks[DEFAULT_CALLBACK] == CallbackSpec("deny")

    def test_auto_capability_definition(self):
        """Test declaring an auto capability rule."""
        rule = RuleDefinition(area="admin", subarea="?", operation="?", auto_capability=True).to_rule()

        assert rule.auto_capability_mode
        assert rule.is_valid()
