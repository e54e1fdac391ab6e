"""Tests for per-key in-process locks and concurrent user sync."""

import threading
import time

from auth import sync_user
from db import SessionLocal
from locks import KeyedLocks
from models import User


def test_same_key_is_serialized():
    locks = KeyedLocks()
    inside = []
    overlap = []

    def work():
        with locks.hold("ext_1"):
            inside.append(1)
            if len(inside) > 1:
                overlap.append(True)
            time.sleep(0.01)
            inside.pop()

    threads = [threading.Thread(target=work) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert overlap == []
    assert locks.active_keys() == []


def test_different_keys_do_not_block():
    locks = KeyedLocks()
    with locks.hold("a"):
        done = threading.Event()

        def other():
            with locks.hold("b"):
                done.set()

        t = threading.Thread(target=other)
        t.start()
        assert done.wait(1)
        t.join()
        assert locks.active_keys() == ["a"]


def test_entry_released_after_exception():
    locks = KeyedLocks()
    try:
        with locks.hold("k"):
            raise ValueError("boom")
    except ValueError:
        pass
    assert locks.active_keys() == []


def test_concurrent_sync_creates_one_user(db):
    claims = {"sub": "ext_race", "email": "race@example.com"}
    ids = []
    guard = threading.Lock()

    def login():
        session = SessionLocal()
        try:
            u = sync_user(session, claims)
            with guard:
                ids.append(u.id)
        finally:
            session.close()

    threads = [threading.Thread(target=login) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(set(ids)) == 1
    assert db.query(User).filter(User.external_id == "ext_race").count() == 1
