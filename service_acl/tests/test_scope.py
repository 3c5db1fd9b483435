"""
Unit tests for scopes and scope patterns.
"""

import pytest

from service_acl.app.rules.scope import (
    Scope, ScopePattern, WILDCARD, KEY_SEPARATOR, encode_key, cascade
)
from shared.errors import MalformedScopeError


class TestScope:
    """Test cases for Scope."""

    def test_key_joins_parts(self):
        """Test key encoding."""
        scope = Scope("admin", "billing", "refund")

        assert scope.key() == "admin|billing|refund"
        assert encode_key("admin", "billing", "refund") == scope.key()

    def test_empty_parts_encode(self):
        """Test key encoding of the default scope."""
        assert Scope().key() == KEY_SEPARATOR * 2
        assert Scope("admin").key() == "admin||"

    def test_from_key_round_trip(self):
        """Test decoding a key."""
        scope = Scope("admin", "", "list")

        assert Scope.from_key(scope.key()) == scope

    def test_from_key_wrong_arity(self):
        """Test decoding a key with too few parts."""
        with pytest.raises(MalformedScopeError):
            Scope.from_key("admin|billing")

    def test_separator_rejected(self):
        """Test that the separator cannot appear in a component."""
        with pytest.raises(MalformedScopeError) as exc_info:
            Scope("admin", "bill|ing", "refund")

        assert exc_info.value.code == "MALFORMED_SCOPE"
        assert exc_info.value.details["part"] == "subarea"

    def test_non_string_rejected(self):
        """Test that components must be strings."""
        with pytest.raises(MalformedScopeError):
            Scope("admin", None, "refund")

    def test_distinct_scopes_have_distinct_keys(self):
        """Test key injectivity on scopes that differ only by position."""
        assert Scope("a", "", "b").key() != Scope("a", "b", "").key()
        assert Scope("", "a", "").key() != Scope("a", "", "").key()

    def test_cascade_ladder(self):
        """Test the lookup ladder from most to least specific."""
        ladder = cascade(Scope("admin", "billing", "refund"))

        assert ladder == (
            Scope("admin", "billing", "refund"),
            Scope("admin", "billing", ""),
            Scope("admin", "", ""),
            Scope("", "", ""),
        )
        assert Scope("admin", "billing", "refund").cascade() == ladder


class TestScopePattern:
    """Test cases for ScopePattern."""

    def test_default_pattern(self):
        """Test the empty pattern."""
        pattern = ScopePattern()

        assert pattern.is_default()
        assert not pattern.has_wildcard()
        assert pattern.matches(Scope("anything", "at", "all"))

    def test_literal_match(self):
        """Test literal components."""
        pattern = ScopePattern("admin", "billing", "refund")

        assert pattern.matches(Scope("admin", "billing", "refund"))
        assert not pattern.matches(Scope("admin", "billing", "charge"))
        assert not pattern.needs_resolution()

    def test_empty_component_matches_anything(self):
        """Test that empty components are generic."""
        pattern = ScopePattern("admin")

        assert pattern.matches(Scope("admin", "billing", "refund"))
        assert pattern.matches(Scope("admin", "", ""))
        assert not pattern.matches(Scope("public", "billing", "refund"))

    def test_wildcard_match_and_resolve(self):
        """Test wildcard binding."""
        pattern = ScopePattern("admin", WILDCARD, WILDCARD)
        scope = Scope("admin", "billing", "refund")

        assert pattern.has_wildcard()
        assert pattern.matches(scope)
        assert pattern.resolve(scope) == ScopePattern("admin", "billing", "refund")

    def test_literal_set(self):
        """Test a component listing several literals."""
        pattern = ScopePattern("admin", "billing", ["refund", "charge"])

        assert pattern.matches(Scope("admin", "billing", "charge"))
        assert not pattern.matches(Scope("admin", "billing", "void"))
        assert pattern.needs_resolution()
        assert pattern.resolve(Scope("admin", "billing", "charge")).operation == "charge"
        assert pattern.key() == "admin|billing|charge,refund"

    def test_single_literal_set_collapses(self):
        """Test that a one-element literal set becomes a plain literal."""
        assert ScopePattern("admin", ["billing"]).subarea == "billing"

    def test_wildcard_in_literal_set_rejected(self):
        """Test that wildcards cannot be mixed with literals."""
        with pytest.raises(MalformedScopeError):
            ScopePattern("admin", [WILDCARD, "billing"])

    def test_separator_rejected(self):
        """Test that pattern components are validated."""
        with pytest.raises(MalformedScopeError):
            ScopePattern("ad|min")

    def test_as_scope(self):
        """Test converting literal patterns to scopes."""
        assert ScopePattern("admin", "billing").as_scope() == Scope("admin", "billing", "")

        with pytest.raises(MalformedScopeError):
            ScopePattern("admin", WILDCARD).as_scope()
