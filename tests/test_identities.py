"""Tests for the name <-> authority id registry."""

from tracker.identities import IdentityRegistry, canonical_name


class TestIdentityRegistry:
    def test_registered_name_awaits_id(self) -> None:
        registry = IdentityRegistry()
        assert registry.register_local("Alice") is True
        assert registry.register_local("Alice") is False
        assert registry.is_registered("Alice")
        assert registry.lookup_id("Alice") is None

    def test_names_are_case_insensitive(self) -> None:
        registry = IdentityRegistry()
        registry.register_local("Alice")
        registry.sync_from_authority("r1", "ALICE")
        assert registry.lookup_id("alice") == "r1"
        assert registry.lookup_name("r1") == canonical_name("Alice")
        assert len(registry) == 1

    def test_rebind_drops_old_reverse_entry(self) -> None:
        registry = IdentityRegistry()
        registry.sync_from_authority("r1", "bob")
        registry.sync_from_authority("r2", "bob")
        assert registry.lookup_id("bob") == "r2"
        assert registry.lookup_name("r2") == "bob"
        assert registry.lookup_name("r1") is None

    def test_id_moves_to_new_owner(self) -> None:
        registry = IdentityRegistry()
        registry.sync_from_authority("r1", "bob")
        registry.sync_from_authority("r1", "carol")
        assert registry.lookup_name("r1") == "carol"
        assert registry.lookup_id("bob") is None
        assert registry.is_registered("bob")

    def test_sync_without_local_registration_adds_name(self) -> None:
        registry = IdentityRegistry()
        registry.sync_from_authority("r9", "dave")
        assert registry.is_registered("dave")
        assert registry.names() == ["dave"]

    def test_remove(self) -> None:
        registry = IdentityRegistry()
        registry.sync_from_authority("r1", "erin")
        assert registry.remove("Erin") is True
        assert registry.remove("erin") is False
        assert registry.lookup_name("r1") is None
        assert not registry.is_registered("erin")

    def test_clear(self) -> None:
        registry = IdentityRegistry()
        registry.sync_from_authority("r1", "a")
        registry.register_local("b")
        registry.clear()
        assert len(registry) == 0
        assert registry.lookup_name("r1") is None
