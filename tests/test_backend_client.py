from urllib.parse import urlsplit

import pytest
import requests

from scribe_printer import client as scribe_client
from scribe_printer.client.backend import BackendClient
from scribe_printer.client.offline_queue import ADD_LIST_ITEM, CHECK_LIST_ITEM
from scribe_printer.core import db as dbh
from scribe_printer.core.errors import (
    AuthenticationError,
    NotFoundError,
    PrinterNotConfiguredError,
    TransientNetworkError,
    ValidationError,
)
from scribe_printer.printing import jobs


class _FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no body")
        return self._payload


class FlaskSession:
    """
    requests.Session stand-in backed by a Flask test client. Flip `down` to
    simulate losing the network.
    """

    def __init__(self, client):
        self.client = client
        self.headers = {}
        self.down = False
        self.calls = []

    def request(self, method, url, timeout=None, params=None, json=None, **kwargs):
        if self.down:
            raise requests.ConnectionError("network is down")
        path = urlsplit(url).path
        self.calls.append((method, path, json))
        resp = self.client.open(path, method=method, query_string=params, json=json, headers=self.headers)
        return _FakeResponse(resp.status_code, resp.get_json(silent=True))

    def get(self, url, timeout=None, **kwargs):
        return self.request("GET", url, timeout=timeout, **kwargs)


@pytest.fixture
def session(client):
    return FlaskSession(client)


@pytest.fixture
def backend(session, headers):
    token = headers["Authorization"].split(" ", 1)[1]
    return BackendClient("http://scribe.local", token, session=session)


def test_household_and_printer(backend, household):
    assert backend.get_household()["id"] == household["id"]
    assert backend.require_printer()["id"] == household["printer"]["id"]


def test_errors_map_to_scribe_errors(backend, session, household):
    with pytest.raises(NotFoundError):
        backend.get_list("missing")
    with pytest.raises(ValidationError):
        backend.create_list("")

    session.down = True
    with pytest.raises(TransientNetworkError):
        backend.list_lists()


def test_bad_token(session, household):
    backend = BackendClient("http://scribe.local", "garbage", session=session)
    with pytest.raises(AuthenticationError):
        backend.get_household()


def test_print_without_printer_never_posts(session, bare_household, bearer_for):
    token = bearer_for(bare_household["user_id"])["Authorization"].split(" ", 1)[1]
    backend = BackendClient("http://scribe.local", token, session=session)

    with pytest.raises(PrinterNotConfiguredError):
        backend.send_message("hello")
    assert all(path != "/api/v1/jobs" for _, path, _ in session.calls)


def test_printer_added_by_another_member_is_picked_up(session, db, bare_household, bearer_for):
    token = bearer_for(bare_household["user_id"])["Authorization"].split(" ", 1)[1]
    backend = BackendClient("http://scribe.local", token, session=session)
    with pytest.raises(PrinterNotConfiguredError):
        backend.require_printer()

    printer = dbh.create_printer(bare_household["id"], "Kitchen", db=db)

    assert backend.require_printer()["id"] == printer["id"]


def test_list_round_trip_and_print(backend, db, household):
    lst = backend.create_list("Groceries")
    milk = backend.add_item(lst["id"], "Milk")
    backend.add_item(lst["id"], "Eggs")
    backend.set_checked(milk["id"], True)

    body = backend.get_list(lst["id"])
    assert body["list"]["name"] == "Groceries"
    assert [(i["text"], i["checked"]) for i in body["items"]] == [("Milk", True), ("Eggs", False)]

    job = backend.print_list(lst["id"], {"title": "Groceries", "items": ["[x] Milk", "[ ] Eggs"]}, clear_after_print=True)
    assert job["status"] == "pending"
    assert backend.get_job(job["id"])["clear_after_print"] is True
    assert [j["id"] for j in backend.list_jobs()] == [job["id"]]

    backend.delete_item(milk["id"])
    assert [i["text"] for i in backend.list_items(lst["id"])] == ["Eggs"]


def test_offline_edits_replay_in_order_on_reconnect(client, session, headers, db, household, tmp_path):
    token = headers["Authorization"].split(" ", 1)[1]
    hc = scribe_client.connect("http://scribe.local", token, data_dir=str(tmp_path / "client"), session=session)
    lst = hc.backend.create_list("Groceries")
    item = hc.backend.add_item(lst["id"], "Bread")
    rec = hc.reconciler(lst["id"], listen=False)

    hc.monitor.check_now()
    session.down = True
    hc.monitor.check_now()

    rec.add_item("Milk")
    rec.toggle_item(item["id"])
    rec.add_item("Eggs")
    assert [e.type for e in hc.queue.entries()] == [ADD_LIST_ITEM, CHECK_LIST_ITEM, ADD_LIST_ITEM]
    assert [i["text"] for i in rec.items] == ["Bread", "Milk", "Eggs"]

    session.down = False
    session.calls.clear()
    hc.monitor.check_now()
    hc.replayer._thread.join(timeout=10)

    writes = [(m, p) for m, p, _ in session.calls if m != "GET"]
    assert writes == [
        ("POST", f"/api/v1/lists/{lst['id']}/items"),
        ("PATCH", f"/api/v1/items/{item['id']}"),
        ("POST", f"/api/v1/lists/{lst['id']}/items"),
    ]
    assert len(hc.queue) == 0

    rows = dbh.list_items(lst["id"], db=db)
    assert [(r["text"], r["checked"]) for r in rows] == [("Bread", True), ("Milk", False), ("Eggs", False)]

    rec.refresh()
    job = rec.print_list()
    assert jobs.get_job(job["id"], db=db)["content"]["items"] == ["[x] Bread", "[ ] Milk", "[ ] Eggs"]


def test_item_added_offline_can_be_edited_after_replay(session, headers, db, household, tmp_path):
    token = headers["Authorization"].split(" ", 1)[1]
    hc = scribe_client.connect("http://scribe.local", token, data_dir=str(tmp_path / "client"), session=session)
    lst = hc.backend.create_list("Groceries")
    rec = hc.reconciler(lst["id"], listen=False)

    session.down = True
    milk = rec.add_item("Milk")
    session.down = False

    result = hc.replayer.replay()
    assert result.rejected == []
    [row] = dbh.list_items(lst["id"], db=db)
    assert [i["id"] for i in rec.items] == [row["id"]]

    assert milk["id"] != row["id"]
    rec.toggle_item(row["id"])

    assert len(hc.queue) == 0
    assert dbh.list_items(lst["id"], db=db)[0]["checked"] is True


def test_start_replays_backlog_from_earlier_session(session, headers, db, household, tmp_path, monkeypatch):
    token = headers["Authorization"].split(" ", 1)[1]
    data_dir = str(tmp_path / "client")
    lst = BackendClient("http://scribe.local", token, session=session).create_list("Groceries")
    earlier = scribe_client.connect("http://scribe.local", token, data_dir=data_dir, session=session)
    earlier.queue.enqueue(ADD_LIST_ITEM, {"list_id": lst["id"], "text": "Milk"})

    hc = scribe_client.connect("http://scribe.local", token, data_dir=data_dir, session=session)
    monkeypatch.setattr(hc.monitor, "start", lambda: None)
    hc.monitor.check_now()  # unknown -> online is not a reconnect

    replay = hc.start()
    replay.join(timeout=10)

    assert len(hc.queue) == 0
    assert [r["text"] for r in dbh.list_items(lst["id"], db=db)] == ["Milk"]


def test_start_with_empty_queue_does_not_replay(session, headers, tmp_path, monkeypatch):
    token = headers["Authorization"].split(" ", 1)[1]
    hc = scribe_client.connect("http://scribe.local", token, data_dir=str(tmp_path / "client"), session=session)
    monkeypatch.setattr(hc.monitor, "start", lambda: None)
    assert hc.start() is None
