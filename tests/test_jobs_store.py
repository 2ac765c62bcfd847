import pytest

from scribe_printer.core import db as dbh
from scribe_printer.core.errors import ConflictError, NotFoundError, ValidationError
from scribe_printer.printing import jobs


def _enqueue_list_job(db, household, list_id, clear=False, title="Groceries"):
    return jobs.enqueue_job(
        household["id"],
        household["printer"]["id"],
        "list",
        {"title": title, "items": ["[ ] Milk"]},
        clear_after_print=clear,
        list_id=list_id,
        created_by=household["user_id"],
        db=db,
    )


def test_enqueue_then_claim_returns_snapshot(db, household):
    job_id = jobs.enqueue_job(
        household["id"], household["printer"]["id"], "message", {"message": "Be home soon"}, db=db
    )
    assert jobs.get_job(job_id, db=db)["status"] == jobs.PENDING

    claimed = jobs.claim_next_job(household["printer"]["id"], db=db)
    assert claimed["id"] == job_id
    assert claimed["status"] == jobs.PRINTING
    assert claimed["content"] == {"message": "Be home soon"}
    assert claimed["claimed_at"]

    # Nothing else pending
    assert jobs.claim_next_job(household["printer"]["id"], db=db) is None


def test_claim_takes_oldest_first(db, household):
    first = _enqueue_list_job(db, household, None, title="First")
    second = _enqueue_list_job(db, household, None, title="Second")

    assert jobs.claim_next_job(household["printer"]["id"], db=db)["id"] == first
    assert jobs.claim_next_job(household["printer"]["id"], db=db)["id"] == second


def test_claim_only_sees_own_printer(db, household):
    other_home = dbh.create_household("Other", db=db)
    other_printer = dbh.create_printer(other_home["id"], "Other", db=db)
    jobs.enqueue_job(other_home["id"], other_printer["id"], "message", {"message": "hi"}, db=db)

    assert jobs.claim_next_job(household["printer"]["id"], db=db) is None


def test_snapshot_does_not_follow_list_edits(db, household):
    lst = dbh.create_list(household["id"], "Groceries", db=db)
    item = dbh.add_list_item(lst["id"], "Milk", db=db)
    job_id = _enqueue_list_job(db, household, lst["id"])

    dbh.set_item_checked(item["id"], True, db=db)
    dbh.add_list_item(lst["id"], "Eggs", db=db)

    claimed = jobs.claim_next_job(household["printer"]["id"], db=db)
    assert claimed["id"] == job_id
    assert claimed["content"]["items"] == ["[ ] Milk"]


def test_enqueue_rejects_unknown_type(db, household):
    with pytest.raises(ValidationError):
        jobs.enqueue_job(household["id"], household["printer"]["id"], "poster", {"x": 1}, db=db)


def test_finish_done_clears_list_in_same_transaction(db, household):
    lst = dbh.create_list(household["id"], "Groceries", db=db)
    dbh.add_list_item(lst["id"], "Milk", db=db)
    dbh.add_list_item(lst["id"], "Eggs", db=db)
    job_id = _enqueue_list_job(db, household, lst["id"], clear=True)
    jobs.claim_next_job(household["printer"]["id"], db=db)

    finished = jobs.finish_job(job_id, jobs.DONE, db=db)

    assert finished["status"] == jobs.DONE
    assert finished["printed_at"]
    assert dbh.list_items(lst["id"], db=db) == []


def test_finish_failed_keeps_items(db, household):
    lst = dbh.create_list(household["id"], "Groceries", db=db)
    dbh.add_list_item(lst["id"], "Milk", db=db)
    job_id = _enqueue_list_job(db, household, lst["id"], clear=True)
    jobs.claim_next_job(household["printer"]["id"], db=db)

    jobs.finish_job(job_id, jobs.FAILED, db=db)

    assert [i["text"] for i in dbh.list_items(lst["id"], db=db)] == ["Milk"]
    assert jobs.get_job(job_id, db=db)["status"] == jobs.FAILED


def test_terminal_job_cannot_be_finished_again(db, household):
    job_id = _enqueue_list_job(db, household, None)
    jobs.claim_next_job(household["printer"]["id"], db=db)
    jobs.finish_job(job_id, jobs.DONE, db=db)
    printed_at = jobs.get_job(job_id, db=db)["printed_at"]

    with pytest.raises(ConflictError):
        jobs.finish_job(job_id, jobs.FAILED, db=db)

    job = jobs.get_job(job_id, db=db)
    assert job["status"] == jobs.DONE
    assert job["printed_at"] == printed_at


def test_pending_job_cannot_be_finished(db, household):
    job_id = _enqueue_list_job(db, household, None)
    with pytest.raises(ConflictError):
        jobs.finish_job(job_id, jobs.DONE, db=db)
    assert jobs.get_job(job_id, db=db)["status"] == jobs.PENDING


def test_finish_unknown_job(db, household):
    with pytest.raises(NotFoundError):
        jobs.finish_job("nope", jobs.DONE, db=db)


def test_clear_list_items_is_idempotent(db, household):
    lst = dbh.create_list(household["id"], "Groceries", db=db)
    dbh.add_list_item(lst["id"], "Milk", db=db)

    assert dbh.clear_list_items(lst["id"], db=db) == 1
    assert dbh.clear_list_items(lst["id"], db=db) == 0
    assert dbh.list_items(lst["id"], db=db) == []


def test_items_ordered_by_position_then_created_at(db, household):
    lst = dbh.create_list(household["id"], "Groceries", db=db)
    dbh.add_list_item(lst["id"], "Bread", position=1, db=db)
    dbh.add_list_item(lst["id"], "Milk", position=0, db=db)
    dbh.add_list_item(lst["id"], "Jam", position=1, db=db)

    assert [i["text"] for i in dbh.list_items(lst["id"], db=db)] == ["Milk", "Bread", "Jam"]


def test_counts_for_health(db, household):
    _enqueue_list_job(db, household, None)
    _enqueue_list_job(db, household, None)
    jobs.claim_next_job(household["printer"]["id"], db=db)

    counts = jobs.count_by_status(db=db)
    assert counts[jobs.PENDING] == 1
    assert counts[jobs.PRINTING] == 1
    assert jobs.count_stuck_jobs(0, db=db) == 1
    assert jobs.count_stuck_jobs(3600, db=db) == 0
