"""Tests for identity and value alias resolution."""

import pytest

from rollup.aliases import AliasResolver
from rollup.errors import NotFoundError


@pytest.fixture
def resolver():
    return AliasResolver(
        {"alice": {"alice@work", "ally"}, "bob": set()},
        {"alice": {("project", "foo-mobile"): "foo"}},
    )


class TestCanonicalize:

    def test_canonical_identity_is_unchanged(self, resolver):
        assert resolver.canonicalize("alice") == "alice"
        assert resolver.canonicalize("bob") == "bob"

    def test_alias_resolves_to_owner(self, resolver):
        assert resolver.canonicalize("alice@work") == "alice"
        assert resolver.canonicalize("ally") == "alice"

    def test_idempotent(self, resolver):
        once = resolver.canonicalize("ally")
        assert resolver.canonicalize(once) == once

    def test_unknown_identity(self, resolver):
        with pytest.raises(NotFoundError):
            resolver.canonicalize("mallory")

    def test_aliases_of(self, resolver):
        assert resolver.aliases_of("ally") == frozenset({"alice@work", "ally"})
        assert resolver.aliases_of("bob") == frozenset()


class TestConstruction:

    def test_alias_claimed_twice_is_rejected(self):
        with pytest.raises(ValueError):
            AliasResolver({"alice": {"shared"}, "bob": {"shared"}})

    def test_alias_shadowing_identity_is_rejected(self):
        with pytest.raises(ValueError):
            AliasResolver({"alice": {"bob"}, "bob": set()})

    def test_from_storage(self, seeded_storage):
        resolver = AliasResolver.from_storage(seeded_storage)
        assert resolver.canonicalize("alice@work") == "alice"
        assert resolver.canonicalize("eve") == "eve"


class TestValueAliases:

    def test_resolve_value(self, resolver):
        assert resolver.resolve_value("alice", "project", "foo-mobile") == "foo"
        assert resolver.resolve_value("alice", "project", "bar") == "bar"
        assert resolver.resolve_value("alice", "language", "foo-mobile") == "foo-mobile"
        assert resolver.resolve_value("bob", "project", "foo-mobile") == "foo-mobile"
        assert resolver.resolve_value("alice", "project", None) is None
