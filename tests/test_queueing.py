"""Tests for job scheduling helpers."""

import queueing
from conftest import make_user
from models import User
from queueing import AfterCommit, schedule, schedule_quietly


def test_schedule_with_delay(queue):
    schedule("jobs.send_low_credit_notification", "u1", 0, delay=30)
    assert queue.jobs == []
    assert queue.delayed[0][:2] == ("jobs.send_low_credit_notification", ("u1", 0))


def test_after_commit_dispatches_only_after_commit(db, queue):
    after = AfterCommit()
    user = make_user(db)
    after.add("jobs.generate_look_image", "look-1", user.id)

    assert queue.jobs == []
    assert after.commit(db) == 1
    assert queue.names() == ["jobs.generate_look_image"]
    assert len(after) == 0


def test_queue_outage_keeps_committed_rows(db, monkeypatch):
    def broken():
        raise ConnectionError("redis down")

    monkeypatch.setattr(queueing, "_queue", broken)

    after = AfterCommit()
    user = make_user(db)
    user.first_name = "Changed"
    after.add("jobs.generate_look_image", "look-1", user.id)

    assert after.commit(db) == 0
    db.expire_all()
    assert db.get(User, user.id).first_name == "Changed"
    assert schedule_quietly("jobs.send_low_credit_notification", user.id, 1) is False
