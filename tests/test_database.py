from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from pymongo.errors import AutoReconnect, DuplicateKeyError

from database import Store, Transaction, as_utc, oid, to_str_id
from errors import StorageError, ValidationError


def test_create_document_stamps_times(store):
    doc_id = store.create_document("widgets", {"widget_type": "featured"})
    doc = store["widgets"].find_one({"_id": oid(doc_id)})
    assert doc["created_at"] is not None
    assert doc["updated_at"] is not None
    assert len(store.get_documents("widgets")) == 1


def test_undo_steps_run_in_reverse(store):
    calls = []
    with pytest.raises(RuntimeError):
        with store.transaction() as txn:
            txn.on_rollback(lambda: calls.append("first"))
            txn.on_rollback(lambda: calls.append("second"))
            raise RuntimeError("boom")
    assert calls == ["second", "first"]


def test_rollback_removes_created_documents(store):
    with pytest.raises(ValueError):
        with store.transaction() as txn:
            store.create_document("orders", {"order_number": "RUSSO-1"}, txn)
            raise ValueError("abort")
    assert store["orders"].count_documents({}) == 0


def test_driver_errors_become_storage_errors(store):
    calls = []

    def failing_undo():
        raise AutoReconnect("still down")

    with pytest.raises(StorageError) as info:
        with store.transaction() as txn:
            txn.on_rollback(lambda: calls.append("ran"))
            txn.on_rollback(failing_undo)
            raise AutoReconnect("down")
    assert isinstance(info.value.cause, AutoReconnect)
    # a failing undo step does not stop the rest
    assert calls == ["ran"]


def test_unique_indexes(store):
    store.create_document("users", {"phone": "+58-4120000001"})
    with pytest.raises(DuplicateKeyError):
        store.create_document("users", {"phone": "+58-4120000001"})


def test_server_transaction_commits():
    session = MagicMock()
    session.in_transaction = True
    client = MagicMock()
    client.start_session.return_value.__enter__.return_value = session
    store = Store(MagicMock(), client=client, use_transactions=True)

    with store.transaction() as txn:
        assert txn.session is session
        assert txn.transactional
        txn.on_rollback(lambda: pytest.fail("undo must not run inside a server transaction"))

    session.start_transaction.assert_called_once()
    session.commit_transaction.assert_called_once()
    session.abort_transaction.assert_not_called()


def test_server_transaction_aborts():
    session = MagicMock()
    session.in_transaction = True
    client = MagicMock()
    client.start_session.return_value.__enter__.return_value = session
    store = Store(MagicMock(), client=client, use_transactions=True)

    with pytest.raises(KeyError):
        with store.transaction():
            raise KeyError("nope")

    session.abort_transaction.assert_called_once()
    session.commit_transaction.assert_not_called()


def test_transactions_need_client():
    with pytest.raises(ValueError):
        Store(MagicMock(), use_transactions=True)


def test_helpers():
    with pytest.raises(ValidationError):
        oid("xyz")
    assert to_str_id(None) is None
    doc_id = oid("64b7f0c2a1b2c3d4e5f60718")
    assert to_str_id({"_id": doc_id, "user_id": doc_id}) == {
        "id": "64b7f0c2a1b2c3d4e5f60718",
        "user_id": "64b7f0c2a1b2c3d4e5f60718",
    }
    assert Transaction().transactional is False
    assert as_utc(datetime(2024, 1, 1)).tzinfo == timezone.utc
