"""
Tests for the SQLite user store.
"""
from user_store import UserStore


class TestUserStore:

    def test_ensure_user_is_idempotent(self, store):
        first = store.ensure_user(1)
        second = store.ensure_user(1)

        assert first.requester_id == 1
        assert first.created_at == second.created_at
        assert store.get_stats()["total_users"] == 1

    def test_find_missing(self, store):
        assert store.find_by_requester(404) is None

    def test_upsert_link_normalizes_username(self, store):
        store.upsert_link(1, "  @Some.User ")

        assert store.find_by_requester(1).linked_external_account_id == "some.user"
        assert store.find_by_external_account("SOME.USER").requester_id == 1

    def test_last_link_wins(self, store):
        store.upsert_link(1, "first")
        store.upsert_link(1, "second")

        assert store.find_by_external_account("first") is None
        assert store.find_by_external_account("second").requester_id == 1

    def test_find_by_any_of_several_ids(self, store):
        store.upsert_link(5, "1234567")

        assert store.find_by_external_account("nobody", "1234567").requester_id == 5
        assert store.find_by_external_account(None, "") is None

    def test_download_history_keeps_order(self, store):
        store.append_download_record(1, "https://youtu.be/a")
        store.append_download_record(1, "https://youtu.be/b")

        assert store.find_by_requester(1).downloads == ["https://youtu.be/a", "https://youtu.be/b"]
        assert store.get_stats() == {"total_users": 1, "linked_users": 0, "total_downloads": 2}

    def test_persists_across_connections(self, tmp_path):
        path = str(tmp_path / "users.db")
        first = UserStore(path)
        first.upsert_link(9, "persisted")
        first.close()

        second = UserStore(path)
        assert second.find_by_requester(9).linked_external_account_id == "persisted"
        second.close()
