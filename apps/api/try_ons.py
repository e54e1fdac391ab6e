import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from catalog import image_url, primary_image
from credits import deduct_credit
from models import Item, ItemTryOn, User
from profiles import primary_user_image
from queueing import AfterCommit, schedule_quietly
from state_machine import GenerationStatus
from state_service import change_status, retry_generation
from storage import delete as delete_blob, get_url

logger = logging.getLogger(__name__)


class TryOnNotFound(Exception):
    pass


@dataclass
class TryOnResult:
    success: bool
    try_on_id: str | None = None
    status: str | None = None
    charged: bool = False
    error: str | None = None


def _now() -> datetime:
    return datetime.utcnow()


def get_owned_try_on(db: Session, user: User, try_on_id: str) -> ItemTryOn:
    t = db.query(ItemTryOn).filter(ItemTryOn.id == try_on_id).first()
    if not t or t.user_id != user.id:
        raise TryOnNotFound("try-on not found")
    return t


def _existing_try_on(db: Session, user_id: str, item_id: str) -> ItemTryOn | None:
    return (
        db.query(ItemTryOn)
        .filter(ItemTryOn.user_id == user_id, ItemTryOn.item_id == item_id)
        .order_by(ItemTryOn.created_at.desc())
        .first()
    )


def _is_reusable(t: ItemTryOn) -> bool:
    if t.status in (GenerationStatus.PENDING.value, GenerationStatus.PROCESSING.value):
        return True
    return t.status == GenerationStatus.COMPLETED.value and bool(t.storage_key)


# ---------------- Start ----------------

def start_item_try_on(
    db: Session,
    user: User,
    item_id: str,
    selected_size: str | None,
    selected_color: str | None,
    after: AfterCommit,
) -> TryOnResult:
    item = db.query(Item).filter(Item.id == item_id).first()
    if not item or not item.is_active:
        return TryOnResult(success=False, error="Item not found or inactive")

    photo = primary_user_image(db, user.id)
    if not photo:
        return TryOnResult(success=False, error="Please upload a photo first to try on items")

    existing = _existing_try_on(db, user.id, item.id)
    if existing and _is_reusable(existing):
        # уже есть / уже генерируется: повторно не списываем
        return TryOnResult(success=True, try_on_id=existing.id, status=existing.status)

    credit = deduct_credit(db, user.id, 1)
    if not credit.success:
        return TryOnResult(success=False, error="insufficient_credits")

    now = _now()
    if existing and existing.status == GenerationStatus.FAILED.value:
        # failed -> pending, с новыми параметрами.
        # completed без картинки сюда не попадает: для него новая запись
        change_status(db, existing, GenerationStatus.PENDING, actor_id=user.id)
        existing.user_image_id = photo.id
        existing.selected_size = selected_size
        existing.selected_color = selected_color
        existing.updated_at = now
        try_on = existing
    else:
        try_on = ItemTryOn(
            id=str(uuid.uuid4()),
            item_id=item.id,
            user_id=user.id,
            user_image_id=photo.id,
            selected_size=selected_size,
            selected_color=selected_color,
            status=GenerationStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        db.add(try_on)
        db.flush()

    after.add("jobs.generate_item_try_on_image", try_on.id)
    return TryOnResult(success=True, try_on_id=try_on.id, status=try_on.status, charged=True)


def retry_item_try_on(db: Session, user: User, try_on_id: str, after: AfterCommit) -> ItemTryOn:
    """failed -> pending; из любого другого статуса InvalidStateTransition."""
    t = get_owned_try_on(db, user, try_on_id)
    retry_generation(db, t, actor_id=user.id)
    after.add("jobs.generate_item_try_on_image", t.id)
    return t


def delete_item_try_on(db: Session, user: User, try_on_id: str) -> None:
    t = get_owned_try_on(db, user, try_on_id)
    key = t.storage_key
    db.delete(t)
    db.commit()
    if key:
        try:
            delete_blob(key)
        except Exception as e:
            logger.warning("failed to delete try-on blob %s: %s", key, e)


# ---------------- Status ----------------

def update_item_try_on_status(
    db: Session,
    try_on_id: str,
    status: GenerationStatus | str,
    error_message: str | None = None,
) -> ItemTryOn | None:
    t = db.query(ItemTryOn).filter(ItemTryOn.id == try_on_id).first()
    if not t:
        return None

    changed = change_status(db, t, status, error_message=error_message)
    db.commit()

    if changed and t.status == GenerationStatus.COMPLETED.value:
        schedule_quietly("jobs.send_try_on_ready_notification", t.user_id, t.id)
    return t


def try_on_to_dict(db: Session, t: ItemTryOn) -> dict:
    item = db.query(Item).filter(Item.id == t.item_id).first()
    return {
        "id": t.id,
        "item_id": t.item_id,
        "item_name": item.name if item else None,
        "item_image_url": image_url(primary_image(db, t.item_id)) if item else None,
        "status": t.status,
        "error_message": t.error_message,
        "selected_size": t.selected_size,
        "selected_color": t.selected_color,
        "image_url": get_url(t.storage_key) if t.storage_key else None,
        "created_at": t.created_at.isoformat() if t.created_at else None,
        "updated_at": t.updated_at.isoformat() if t.updated_at else None,
    }
