"""Tests for single-item try-ons: reuse, charging, retry, delete."""

import pytest

from conftest import fresh, make_item, make_photo, make_user
from models import ItemTryOn, User
from queueing import AfterCommit
from state_machine import GenerationStatus, InvalidStateTransition
from try_ons import (
    TryOnNotFound,
    delete_item_try_on,
    get_owned_try_on,
    retry_item_try_on,
    start_item_try_on,
    update_item_try_on_status,
)


def _start(db, user, item, **kw):
    after = AfterCommit()
    result = start_item_try_on(db, user, item.id, kw.get("size"), kw.get("color"), after)
    after.commit(db)
    return result


@pytest.fixture
def shopper(db, blobs):
    user = make_user(db)
    make_photo(db, user, blobs)
    return user


# ---------------------------------------------------------------------------
# Start
# ---------------------------------------------------------------------------

def test_start_creates_pending_try_on_and_charges(db, shopper, queue):
    item = make_item(db, name="Cotton Tee", category="top")

    result = _start(db, shopper, item, size="M", color="white")

    assert result.success and result.charged
    t = fresh(db, ItemTryOn, result.try_on_id)
    assert (t.status, t.selected_size, t.selected_color) == ("pending", "M", "white")
    assert queue.args_for("jobs.generate_item_try_on_image") == [(t.id,)]
    assert fresh(db, User, shopper.id).free_credits_used_this_week == 1


def test_in_flight_try_on_is_reused_without_charge(db, shopper, queue):
    item = make_item(db, name="Cotton Tee", category="top")
    first = _start(db, shopper, item)

    second = _start(db, shopper, item)

    assert second.try_on_id == first.try_on_id
    assert second.charged is False
    assert len(queue.args_for("jobs.generate_item_try_on_image")) == 1
    assert fresh(db, User, shopper.id).free_credits_used_this_week == 1


def test_failed_try_on_is_reset_and_charged_again(db, shopper):
    item = make_item(db, name="Cotton Tee", category="top")
    first = _start(db, shopper, item)
    update_item_try_on_status(db, first.try_on_id, GenerationStatus.FAILED, error_message="boom")

    second = _start(db, shopper, item, color="black")

    assert second.try_on_id == first.try_on_id
    assert second.charged
    t = fresh(db, ItemTryOn, first.try_on_id)
    assert (t.status, t.error_message, t.selected_color) == ("pending", None, "black")
    assert fresh(db, User, shopper.id).free_credits_used_this_week == 2


def test_completed_try_on_without_image_gets_new_record(db, shopper, queue):
    item = make_item(db, name="Cotton Tee", category="top")
    first = _start(db, shopper, item)
    broken = fresh(db, ItemTryOn, first.try_on_id)
    broken.status = GenerationStatus.COMPLETED.value
    broken.storage_key = None
    db.commit()

    second = _start(db, shopper, item)

    assert second.success and second.charged
    assert second.try_on_id != first.try_on_id
    assert fresh(db, ItemTryOn, second.try_on_id).status == "pending"
    assert fresh(db, ItemTryOn, first.try_on_id).status == "completed"
    assert queue.args_for("jobs.generate_item_try_on_image")[-1] == (second.try_on_id,)
    assert fresh(db, User, shopper.id).free_credits_used_this_week == 2


def test_start_errors(db, blobs):
    user = make_user(db)
    inactive = make_item(db, is_active=False)
    item = make_item(db, name="Cotton Tee", category="top")

    assert _start(db, user, inactive).error == "Item not found or inactive"
    assert _start(db, user, item).error == "Please upload a photo first to try on items"

    make_photo(db, user, blobs)
    broke = fresh(db, User, user.id)
    broke.free_credits_used_this_week = 5
    db.commit()
    assert _start(db, broke, item).error == "insufficient_credits"
    assert db.query(ItemTryOn).count() == 0


# ---------------------------------------------------------------------------
# Status / retry / delete
# ---------------------------------------------------------------------------

def test_completion_schedules_notification(db, shopper, queue):
    item = make_item(db, name="Cotton Tee", category="top")
    t_id = _start(db, shopper, item).try_on_id

    update_item_try_on_status(db, t_id, "processing")
    update_item_try_on_status(db, t_id, "completed")

    assert queue.args_for("jobs.send_try_on_ready_notification") == [(shopper.id, t_id)]


def test_retry_only_from_failed(db, shopper, queue):
    item = make_item(db, name="Cotton Tee", category="top")
    t_id = _start(db, shopper, item).try_on_id

    with pytest.raises(InvalidStateTransition):
        retry_item_try_on(db, shopper, t_id, AfterCommit())

    update_item_try_on_status(db, t_id, "failed", error_message="boom")
    after = AfterCommit()
    t = retry_item_try_on(db, shopper, t_id, after)
    after.commit(db)

    assert t.status == "pending"
    assert len(queue.args_for("jobs.generate_item_try_on_image")) == 2


def test_foreign_try_on_is_not_found(db, shopper):
    item = make_item(db, name="Cotton Tee", category="top")
    t_id = _start(db, shopper, item).try_on_id
    stranger = make_user(db)

    with pytest.raises(TryOnNotFound):
        get_owned_try_on(db, stranger, t_id)
    with pytest.raises(TryOnNotFound):
        delete_item_try_on(db, stranger, t_id)


def test_delete_removes_row_and_blob(db, shopper, blobs):
    item = make_item(db, name="Cotton Tee", category="top")
    t_id = _start(db, shopper, item).try_on_id
    t = fresh(db, ItemTryOn, t_id)
    t.storage_key = "try-ons/x.png"
    db.commit()
    blobs.objects["try-ons/x.png"] = b"IMG"

    delete_item_try_on(db, shopper, t_id)

    assert fresh(db, ItemTryOn, t_id) is None
    assert "try-ons/x.png" not in blobs.objects
