from datetime import timedelta

import pytest

from estategate.storage.errors import DuplicateRecord, MissingReference
from estategate.storage.memory import MemoryStore
from estategate.storage.models import SecurityToken, SecurityTokenType


def _token(owner_id, value="value-1", token_type=SecurityTokenType.EMAIL_CONFIRM):
    return SecurityToken.new(token_type, value, owner_id, timedelta(hours=1))


class TestUsers:
    def test_email_is_normalized_and_unique(self):
        store = MemoryStore()
        user = store.create_user("  Mixed@Example.COM ")

        assert user.email == "mixed@example.com"
        assert store.get_user_by_email("MIXED@example.com").id == user.id
        with pytest.raises(DuplicateRecord):
            store.create_user("mixed@example.com")

    def test_returned_records_are_copies(self):
        store = MemoryStore()
        user = store.create_user("copy@example.com")
        user.email_confirmed = True

        assert store.get_user(user.id).email_confirmed is False

    def test_save_password_unknown_user(self):
        with pytest.raises(MissingReference):
            MemoryStore().save_password("missing", "hash")


class TestTokens:
    def test_save_requires_owner(self):
        with pytest.raises(MissingReference):
            MemoryStore().save_token(_token("missing"))

    def test_value_is_unique(self):
        store = MemoryStore()
        owner = store.create_user("o@example.com")
        store.save_token(_token(owner.id, "same"))
        with pytest.raises(DuplicateRecord):
            store.save_token(_token(owner.id, "same"))

    def test_mark_token_used_is_compare_and_swap(self):
        store = MemoryStore()
        owner = store.create_user("o@example.com")
        token = store.save_token(_token(owner.id))

        first = store.mark_token_used(token.id)
        second = store.mark_token_used(token.id)

        assert first is not None and first.used is True
        assert second is None
        assert store.mark_token_used("missing") is None

    def test_list_user_tokens_filters_by_type(self):
        store = MemoryStore()
        owner = store.create_user("o@example.com")
        store.save_token(_token(owner.id, "a"))
        store.save_token(_token(owner.id, "b", SecurityTokenType.PASSWORD_RESET))

        assert len(store.list_user_tokens(owner.id)) == 2
        resets = store.list_user_tokens(owner.id, SecurityTokenType.PASSWORD_RESET)
        assert [t.value for t in resets] == ["b"]


class TestCommunities:
    def test_admins_of_unknown_community_is_none(self):
        assert MemoryStore().find_community_admins("missing") is None

    def test_add_admin_requires_known_user(self):
        store = MemoryStore()
        community = store.create_community("Maple Court", district="North")

        assert store.add_community_admin(community.id, "missing") is False
        assert store.find_community_admins(community.id) == []

    def test_add_admin_is_idempotent(self):
        store = MemoryStore()
        user = store.create_user("a@example.com")
        community = store.create_community("Maple Court")

        assert store.add_community_admin(community.id, user.id) is True
        assert store.add_community_admin(community.id, user.id) is True
        assert store.get_community(community.id).admin_ids == [user.id]

    def test_bulk_add_is_all_or_nothing(self):
        store = MemoryStore()
        first = store.create_user("a@example.com")
        community = store.create_community("Maple Court")

        with pytest.raises(MissingReference) as excinfo:
            store.add_community_admins(community.id, [first.id, "missing"])

        assert excinfo.value.detail == {"user_ids": ["missing"]}
        assert store.get_community(community.id).admin_ids == []

    def test_bulk_add_unknown_community(self):
        store = MemoryStore()
        user = store.create_user("a@example.com")

        with pytest.raises(MissingReference) as excinfo:
            store.add_community_admins("missing", [user.id])

        assert excinfo.value.message == "community not found"

    def test_bulk_add_skips_existing_admins(self):
        store = MemoryStore()
        first = store.create_user("a@example.com")
        second = store.create_user("b@example.com")
        community = store.create_community("Maple Court")
        store.add_community_admin(community.id, first.id)

        updated = store.add_community_admins(community.id, [first.id, second.id])

        assert updated.admin_ids == [first.id, second.id]


class TestPersistence:
    def test_state_survives_restart(self, tmp_path):
        store = MemoryStore(fs_root=str(tmp_path))
        user = store.create_user("persist@example.com", password_hash="hash")
        token = store.save_token(_token(user.id))
        store.mark_token_used(token.id)
        community = store.create_community("Maple Court")
        store.add_community_admin(community.id, user.id)

        reloaded = MemoryStore(fs_root=str(tmp_path))

        assert reloaded.get_user(user.id) == store.get_user(user.id)
        restored = reloaded.find_token_by_value(token.value)
        assert restored.used is True
        assert restored.token_type == SecurityTokenType.EMAIL_CONFIRM
        assert restored.expires_at == token.expires_at
        assert [u.id for u in reloaded.find_community_admins(community.id)] == [user.id]
