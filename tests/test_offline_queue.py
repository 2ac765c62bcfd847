import json

import pytest

from scribe_printer.client.offline_queue import (
    ADD_LIST,
    ADD_LIST_ITEM,
    CHECK_LIST_ITEM,
    DELETE_LIST_ITEM,
    QUEUE_KEY,
    OfflineQueue,
)
from scribe_printer.client.storage import LocalStore
from scribe_printer.core.errors import ValidationError


@pytest.fixture
def store(tmp_path):
    return LocalStore(str(tmp_path / "client"))


@pytest.fixture
def queue(store):
    return OfflineQueue(store)


def test_entries_keep_enqueue_order(queue):
    queue.enqueue(ADD_LIST_ITEM, {"list_id": "l1", "text": "Milk"})
    queue.enqueue(CHECK_LIST_ITEM, {"item_id": "item-1", "checked": True})
    queue.enqueue(ADD_LIST_ITEM, {"list_id": "l1", "text": "Eggs"})

    entries = queue.entries()
    assert [e.seq for e in entries] == [1, 2, 3]
    assert [e.type for e in entries] == [ADD_LIST_ITEM, CHECK_LIST_ITEM, ADD_LIST_ITEM]
    assert len({e.id for e in entries}) == 3
    assert len(queue) == 3


def test_order_ignores_wall_clock(queue, store):
    queue.enqueue(ADD_LIST_ITEM, {"list_id": "l1", "text": "first"})
    queue.enqueue(ADD_LIST_ITEM, {"list_id": "l1", "text": "second"})

    # A clock that went backwards between the two enqueues
    doc = store.get(QUEUE_KEY)
    doc["entries"][1]["created_at"] = "2000-01-01T00:00:00+00:00"
    doc["entries"].reverse()
    store.set(QUEUE_KEY, doc)

    assert [e.payload["text"] for e in queue.entries()] == ["first", "second"]


def test_enqueue_is_durable(store, tmp_path):
    OfflineQueue(store).enqueue(DELETE_LIST_ITEM, {"item_id": "i1"})

    # A fresh process reading the same directory sees the action
    reopened = OfflineQueue(LocalStore(str(tmp_path / "client")))
    assert [e.payload for e in reopened.entries()] == [{"item_id": "i1"}]

    with open(tmp_path / "client" / f"{QUEUE_KEY}.json", encoding="utf-8") as f:
        assert json.load(f)["next_seq"] == 2


def test_seq_survives_removal(queue):
    first = queue.enqueue(DELETE_LIST_ITEM, {"item_id": "a"})
    assert queue.remove(first.id) is True
    assert queue.remove(first.id) is False

    second = queue.enqueue(DELETE_LIST_ITEM, {"item_id": "b"})
    assert second.seq == 2


def test_unknown_type_and_missing_fields(queue):
    with pytest.raises(ValidationError):
        queue.enqueue("RENAME_LIST", {"list_id": "l1"})
    with pytest.raises(ValidationError):
        queue.enqueue(CHECK_LIST_ITEM, {"item_id": "i1"})
    assert len(queue) == 0


def test_reject_and_retry(queue):
    action = queue.enqueue(ADD_LIST_ITEM, {"list_id": "l1", "text": "Milk"})
    queue.enqueue(ADD_LIST_ITEM, {"list_id": "l1", "text": "Eggs"})

    assert queue.mark_rejected(action.id, {"error": "List not found", "code": "not_found"})
    assert [e.payload["text"] for e in queue.pending()] == ["Eggs"]
    rejected = queue.entries()[0]
    assert rejected.rejected["code"] == "not_found"
    assert rejected.rejected["at"]

    assert queue.retry(action.id)
    assert [e.payload["text"] for e in queue.pending()] == ["Milk", "Eggs"]


def test_rewrite_reference(queue):
    queue.enqueue(ADD_LIST, {"household_id": "h1", "name": "Party", "temp_id": "temp-list"})
    queue.enqueue(ADD_LIST_ITEM, {"list_id": "temp-list", "text": "Cups", "temp_id": "temp-item"})
    queue.enqueue(CHECK_LIST_ITEM, {"item_id": "temp-item", "checked": True})
    queue.enqueue(ADD_LIST_ITEM, {"list_id": "other", "text": "Plates"})

    assert queue.rewrite_reference("temp-list", "list-9") == 1
    assert queue.rewrite_reference("temp-item", "item-3") == 1
    assert queue.rewrite_reference("temp-nope", "x") == 0

    payloads = [e.payload for e in queue.entries()]
    assert payloads[1]["list_id"] == "list-9"
    assert payloads[2]["item_id"] == "item-3"
    assert payloads[3]["list_id"] == "other"


def test_replayed_temp_id_is_resolved_for_later_actions(queue):
    queue.enqueue(ADD_LIST_ITEM, {"list_id": "l1", "text": "Milk", "temp_id": "temp-milk"})
    queue.rewrite_reference("temp-milk", "item-1")
    queue.remove(queue.entries()[0].id)

    action = queue.enqueue(CHECK_LIST_ITEM, {"item_id": "temp-milk", "checked": True})

    assert action.payload == {"item_id": "item-1", "checked": True}
    assert queue.resolve("temp-milk") == "item-1"
    assert queue.resolve("item-7") == "item-7"


def test_clear(queue):
    queue.enqueue(DELETE_LIST_ITEM, {"item_id": "a"})
    queue.clear()
    assert queue.entries() == []


def test_corrupt_document_is_not_silently_dropped(queue, store):
    with open(store.directory / f"{QUEUE_KEY}.json", "w", encoding="utf-8") as f:
        f.write("{not json")
    with pytest.raises(json.JSONDecodeError):
        queue.entries()


def test_store_rejects_unsafe_keys(store):
    with pytest.raises(ValueError):
        store.get("../escape")
