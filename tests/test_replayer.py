import threading

import pytest

from scribe_printer.client.offline_queue import ADD_LIST, ADD_LIST_ITEM, CHECK_LIST_ITEM, DELETE_LIST_ITEM, OfflineQueue
from scribe_printer.client.replayer import Replayer
from scribe_printer.client.storage import LocalStore
from scribe_printer.core.errors import NotFoundError, TransientNetworkError


class FakeBackend:
    """
    Records entity writes in call order. `fail` maps a call index (0-based)
    to the exception that call should raise.
    """

    def __init__(self, fail=None):
        self.calls = []
        self.fail = dict(fail or {})
        self.gate = None
        self.entered = threading.Event()
        self._ids = 0

    def _record(self, call):
        index = len(self.calls)
        self.calls.append(call)
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if index in self.fail:
            raise self.fail[index]

    def _new_id(self, prefix):
        self._ids += 1
        return f"{prefix}-{self._ids}"

    def add_item(self, list_id, text, position=None):
        self._record(("add", list_id, text))
        return {"id": self._new_id("item"), "list_id": list_id, "text": text}

    def set_checked(self, item_id, checked):
        self._record(("check", item_id, checked))
        return {"id": item_id, "checked": checked}

    def delete_item(self, item_id):
        self._record(("delete", item_id))

    def create_list(self, name):
        self._record(("create_list", name))
        return {"id": self._new_id("list"), "name": name}


@pytest.fixture
def queue(tmp_path):
    return OfflineQueue(LocalStore(str(tmp_path / "client")))


def test_replays_in_enqueue_order(queue):
    queue.enqueue(ADD_LIST_ITEM, {"list_id": "groceries", "text": "Milk"})
    queue.enqueue(CHECK_LIST_ITEM, {"item_id": "item-1", "checked": True})
    queue.enqueue(ADD_LIST_ITEM, {"list_id": "groceries", "text": "Eggs"})
    backend = FakeBackend()

    result = Replayer(queue, backend).replay()

    assert backend.calls == [
        ("add", "groceries", "Milk"),
        ("check", "item-1", True),
        ("add", "groceries", "Eggs"),
    ]
    assert len(result.applied) == 3
    assert result.remaining == 0
    assert queue.entries() == []


def test_disconnect_aborts_and_keeps_rest(queue):
    queue.enqueue(ADD_LIST_ITEM, {"list_id": "groceries", "text": "Milk"})
    queue.enqueue(DELETE_LIST_ITEM, {"item_id": "item-7"})
    queue.enqueue(ADD_LIST_ITEM, {"list_id": "groceries", "text": "Eggs"})
    backend = FakeBackend(fail={1: TransientNetworkError("offline")})

    result = Replayer(queue, backend).replay()

    assert result.aborted is True
    assert len(backend.calls) == 2
    assert [e.type for e in queue.entries()] == [DELETE_LIST_ITEM, ADD_LIST_ITEM]
    assert result.remaining == 2

    # Next reconnect picks up where it stopped
    backend.fail = {}
    result = Replayer(queue, backend).replay()
    assert backend.calls[2:] == [("delete", "item-7"), ("add", "groceries", "Eggs")]
    assert queue.entries() == []


def test_rejection_is_parked_and_pass_continues(queue):
    bad = queue.enqueue(CHECK_LIST_ITEM, {"item_id": "gone", "checked": True})
    queue.enqueue(ADD_LIST_ITEM, {"list_id": "groceries", "text": "Eggs"})
    backend = FakeBackend(fail={0: NotFoundError("Item not found")})

    result = Replayer(queue, backend).replay()

    assert result.rejected == [bad.id]
    assert len(result.applied) == 1
    assert result.remaining == 0
    entries = queue.entries()
    assert [e.id for e in entries] == [bad.id]
    assert entries[0].rejected["code"] == "not_found"

    # Parked entries are not replayed again until retried
    Replayer(queue, backend).replay()
    assert len(backend.calls) == 2


def test_temp_ids_are_rewritten_before_dependent_entries(queue):
    queue.enqueue(ADD_LIST, {"household_id": "h1", "name": "Party", "temp_id": "temp-list"})
    queue.enqueue(ADD_LIST_ITEM, {"list_id": "temp-list", "text": "Cups", "temp_id": "temp-item"})
    queue.enqueue(CHECK_LIST_ITEM, {"item_id": "temp-item", "checked": True})
    backend = FakeBackend()

    result = Replayer(queue, backend).replay()

    assert backend.calls == [
        ("create_list", "Party"),
        ("add", "list-1", "Cups"),
        ("check", "item-2", True),
    ]
    assert result.id_map == {"temp-list": "list-1", "temp-item": "item-2"}


def test_concurrent_triggers_are_coalesced(queue):
    queue.enqueue(ADD_LIST_ITEM, {"list_id": "groceries", "text": "Milk"})
    backend = FakeBackend()
    backend.gate = threading.Event()
    replayer = Replayer(queue, backend)
    results = []

    first = threading.Thread(target=lambda: results.append(replayer.replay()))
    first.start()
    assert backend.entered.wait(timeout=5)

    # Arrives while the first pass is blocked inside the backend call
    queue.enqueue(ADD_LIST_ITEM, {"list_id": "groceries", "text": "Eggs"})
    assert replayer.replay() is None

    backend.gate.set()
    first.join(timeout=5)

    assert backend.calls == [("add", "groceries", "Milk"), ("add", "groceries", "Eggs")]
    assert results[0].sweeps == 2
    assert queue.entries() == []


def test_trigger_runs_in_background_and_reports(queue):
    queue.enqueue(DELETE_LIST_ITEM, {"item_id": "a"})
    done = []
    replayer = Replayer(queue, FakeBackend(), on_complete=done.append)

    replayer.trigger().join(timeout=5)

    assert len(done) == 1
    assert done[0].remaining == 0
