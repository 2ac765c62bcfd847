import json

from scribe_printer.client.feed import parse_sse
from scribe_printer.core import db as dbh
from scribe_printer.core.feed import FEED, INSERT, UPDATE, ChangeEvent
from scribe_printer.web.changes import format_sse


def test_format_sse_framing():
    event = ChangeEvent("lists", INSERT, record={"id": "l1", "name": "Groceries"}, commit_timestamp="t")
    text = format_sse(event)
    assert text.startswith("event: change\ndata: ")
    assert text.endswith("\n\n")
    assert json.loads(text.split("data: ", 1)[1])["record"]["name"] == "Groceries"


def test_parse_sse_skips_comments_and_other_events():
    event = ChangeEvent("list_items", UPDATE, record={"id": "i1", "checked": True}, commit_timestamp="t")
    lines = (": connected\n\n" + "event: ping\ndata: {}\n\n" + ": keepalive\n\n" + format_sse(event)).split("\n")

    assert list(parse_sse(lines)) == [event]


def test_list_items_stream_requires_list_id(client, household, headers):
    resp = client.get("/api/v1/changes", query_string={"table": "list_items"}, headers=headers)
    assert resp.status_code == 400

    resp = client.get("/api/v1/changes", query_string={"table": "members"}, headers=headers)
    assert resp.status_code == 400


def test_filter_on_non_text_column_is_rejected(client, db, household, headers):
    lst = dbh.create_list(household["id"], "Groceries", db=db)
    resp = client.get(
        "/api/v1/changes",
        query_string={"table": "list_items", "list_id": lst["id"], "checked": "true"},
        headers=headers,
    )
    assert resp.status_code == 400
    body = resp.get_json()
    assert body["code"] == "validation_error"
    assert "checked" in body["error"]


def test_cannot_stream_foreign_list(client, db, household, bare_household, bearer_for):
    lst = dbh.create_list(household["id"], "Groceries", db=db)
    resp = client.get(
        "/api/v1/changes",
        query_string={"table": "list_items", "list_id": lst["id"]},
        headers=bearer_for(bare_household["user_id"]),
    )
    assert resp.status_code == 404


def test_stream_delivers_matching_changes(client, db, household, headers):
    lst = dbh.create_list(household["id"], "Groceries", db=db)
    before = FEED.subscriber_count()

    resp = client.get(
        "/api/v1/changes",
        query_string={"table": "list_items", "list_id": lst["id"], "limit": 2},
        headers=headers,
    )
    assert resp.status_code == 200
    assert resp.mimetype == "text/event-stream"
    assert FEED.subscriber_count() == before + 1

    item = dbh.add_list_item(lst["id"], "Milk", db=db)
    dbh.set_item_checked(item["id"], True, db=db)

    body = resp.get_data(as_text=True)
    resp.close()
    events = list(parse_sse(body.split("\n")))

    assert [e.type for e in events] == [INSERT, UPDATE]
    assert events[0].record["text"] == "Milk"
    assert events[1].record["checked"] is True
    assert FEED.subscriber_count() == before


def test_access_token_query_arg(client, db, household, headers):
    token = headers["Authorization"].split(" ", 1)[1]
    resp = client.get("/api/v1/changes", query_string={"table": "lists", "limit": 1, "access_token": token})
    assert resp.status_code == 200
    dbh.create_list(household["id"], "Chores", db=db)

    events = list(parse_sse(resp.get_data(as_text=True).split("\n")))
    resp.close()
    assert events[0].record["name"] == "Chores"
