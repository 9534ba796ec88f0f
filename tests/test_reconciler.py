"""
Tests for reconciling remote fetches with the local mirror
"""
from mailmirror.core.fingerprint import contains
from mailmirror.core.models import FolderName

from .helpers import MessageTestHelper

ACCOUNT = "test@example.com"


class TestReconciler:
    """Tests for trash exclusion and new-item detection"""

    def test_new_message_detected(self, reconciler):
        local = MessageTestHelper.create_messages(2)
        remote = MessageTestHelper.create_messages(3)

        result = reconciler.reconcile(ACCOUNT, FolderName.INBOX, local, remote)

        assert len(result.merged) == 3
        assert [m.subject for m in result.new_items] == ["Test Subject 2"]
        assert result.excluded == 0

    def test_locally_trashed_message_is_not_reimported(self, store, reconciler):
        deleted = MessageTestHelper.create_message(5)
        store.save(ACCOUNT, FolderName.TRASH, [deleted])
        remote = MessageTestHelper.create_messages(2) + [deleted]

        result = reconciler.reconcile(ACCOUNT, FolderName.INBOX, [], remote)

        assert not contains(result.merged, deleted)
        assert not contains(result.new_items, deleted)
        assert result.excluded == 1
        assert result.new_count == 2

    def test_trash_bucket_is_not_filtered_against_itself(self, store, reconciler):
        trashed = MessageTestHelper.create_messages(2)
        store.save(ACCOUNT, FolderName.TRASH, trashed)

        result = reconciler.reconcile(
            ACCOUNT, FolderName.TRASH, trashed, trashed + [MessageTestHelper.create_message(8)]
        )

        assert result.excluded == 0
        assert len(result.merged) == 3

    def test_trash_of_other_account_is_ignored(self, store, reconciler):
        message = MessageTestHelper.create_message(1)
        store.save("other@example.com", FolderName.TRASH, [message])

        result = reconciler.reconcile(ACCOUNT, FolderName.INBOX, [], [message])

        assert result.new_count == 1

    def test_nothing_new(self, reconciler):
        local = MessageTestHelper.create_messages(3)

        result = reconciler.reconcile(ACCOUNT, FolderName.INBOX, local, list(local))

        assert result.new_items == []
        assert len(result.merged) == 3

    def test_remote_duplicates_counted_once(self, reconciler):
        message = MessageTestHelper.create_message(0)

        result = reconciler.reconcile(ACCOUNT, FolderName.INBOX, [], [message, message])

        assert result.new_count == 1
        assert len(result.merged) == 1
