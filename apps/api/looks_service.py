"""
Look record manager.

После создания у Look меняются только generation_status / error_message и
привязанное изображение (LookImage); item_ids неизменяемы.
"""
import logging
import secrets
import string
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from sqlalchemy.orm import Session

import rate_limit
from catalog import get_items_in_order, item_summary
from credits import deduct_credit
from models import Item, Look, LookImage, User
from profiles import primary_user_image, target_gender
from queueing import AfterCommit, schedule_quietly
from state_machine import GenerationStatus
from state_service import change_status, retry_generation
from storage import delete as delete_blob, get_url

logger = logging.getLogger(__name__)

MAX_STYLE_TAGS = 5
MIN_SELECTED_ITEMS = 2
MAX_SELECTED_ITEMS = 6


class LookNotFound(Exception):
    """Нет такого look или он принадлежит другому пользователю."""
    pass


@dataclass
class LookResult:
    success: bool
    look_id: str | None = None
    public_id: str | None = None
    error: str | None = None
    message: str | None = None


def _now() -> datetime:
    return datetime.utcnow()


def generate_public_id(prefix: str) -> str:
    alphabet = string.ascii_lowercase + string.digits
    return f"{prefix}_" + "".join(secrets.choice(alphabet) for _ in range(12))


def derive_look_fields(items: Sequence[Item]) -> tuple[int, str, list[str]]:
    """(total_price, currency, style_tags). Валюта: последней вещи."""
    total = 0
    currency = "KES"
    tags: list[str] = []
    for item in items:
        total += item.price or 0
        currency = item.currency or currency
        for tag in item.tags or []:
            if tag not in tags:
                tags.append(tag)
    return total, currency, tags[:MAX_STYLE_TAGS]


# ---------------- Create ----------------

def create_look(
    db: Session,
    items: Sequence[Item],
    *,
    creator: User | None,
    name: str | None = None,
    occasion: str | None = None,
    nima_comment: str | None = None,
    created_by: str = "user",
    creation_source: str = "chat",
    original_look_id: str | None = None,
    style_tags: Sequence[str] | None = None,
) -> Look:
    """Добавляет pending look в сессию (flush, без commit)."""
    total, currency, derived_tags = derive_look_fields(items)
    now = _now()

    look = Look(
        id=str(uuid.uuid4()),
        public_id=generate_public_id("look"),
        item_ids=[i.id for i in items],
        total_price=total,
        currency=currency,
        name=name,
        style_tags=list(style_tags)[:MAX_STYLE_TAGS] if style_tags else derived_tags,
        occasion=occasion,
        nima_comment=nima_comment,
        target_gender=target_gender(creator) if creator else "unisex",
        target_budget_range=creator.budget_range if creator else None,
        is_active=True,
        generation_status=GenerationStatus.PENDING.value,
        error_message=None,
        created_by=created_by,
        creator_user_id=creator.id if creator else None,
        creation_source=creation_source,
        original_look_id=original_look_id,
        created_at=now,
        updated_at=now,
    )
    db.add(look)
    db.flush()
    return look


def get_owned_look(db: Session, user: User, look_id: str) -> Look:
    look = db.query(Look).filter(Look.id == look_id).first()
    if not look or look.creator_user_id != user.id:
        raise LookNotFound("look not found")
    return look


# ---------------- Status ----------------

def update_look_generation_status(
    db: Session,
    look_id: str,
    status: GenerationStatus | str,
    error_message: str | None = None,
    actor_id: str | None = None,
) -> Look | None:
    look = db.query(Look).filter(Look.id == look_id).first()
    if not look:
        return None

    changed = change_status(db, look, status, error_message=error_message, actor_id=actor_id)
    db.commit()

    # уведомление: побочный эффект, не должен ломать смену статуса
    if changed and look.generation_status == GenerationStatus.COMPLETED.value \
            and look.created_by == "user" and look.creator_user_id:
        schedule_quietly("jobs.send_look_ready_notification", look.creator_user_id, look.id)
    return look


def attach_look_image(
    db: Session,
    look: Look,
    user_id: str,
    storage_key: str,
    user_image_id: str | None,
    provider: str | None,
) -> LookImage:
    # предыдущие рендеры остаются, но перестают быть текущими
    (
        db.query(LookImage)
        .filter(LookImage.look_id == look.id, LookImage.is_current.is_(True))
        .update({LookImage.is_current: False}, synchronize_session=False)
    )
    img = LookImage(
        id=str(uuid.uuid4()),
        look_id=look.id,
        user_id=user_id,
        user_image_id=user_image_id,
        storage_key=storage_key,
        generation_provider=provider,
        is_current=True,
        created_at=_now(),
    )
    db.add(img)
    return img


def current_look_image(db: Session, look_id: str) -> LookImage | None:
    return (
        db.query(LookImage)
        .filter(LookImage.look_id == look_id, LookImage.is_current.is_(True))
        .order_by(LookImage.created_at.desc())
        .first()
    )


def retry_look(db: Session, user: User, look_id: str, after: AfterCommit) -> Look:
    """Только владелец и только из failed; InvalidStateTransition иначе."""
    look = get_owned_look(db, user, look_id)
    retry_generation(db, look, actor_id=user.id)
    after.add("jobs.generate_look_image", look.id, user.id)
    return look


# ---------------- User flows ----------------

def _active_items_or_none(db: Session, item_ids: Sequence[str]) -> list[Item] | None:
    items = get_items_in_order(db, item_ids)
    if len(items) != len(item_ids) or any(not i.is_active for i in items):
        return None
    return items


def create_look_from_items(
    db: Session,
    user: User,
    item_ids: Sequence[str],
    occasion: str | None,
    after: AfterCommit,
) -> LookResult:
    """Apparel flow: пользователь сам выбрал 2-6 вещей. 1 кредит."""
    item_ids = list(dict.fromkeys(item_ids))
    if len(item_ids) < MIN_SELECTED_ITEMS:
        return LookResult(success=False, error="Please select at least 2 items.")
    if len(item_ids) > MAX_SELECTED_ITEMS:
        return LookResult(success=False, error="Maximum 6 items per look.")

    items = _active_items_or_none(db, item_ids)
    if items is None:
        return LookResult(success=False, error="Some items are no longer available.")

    if not primary_user_image(db, user.id):
        return LookResult(success=False, error="no_photo")

    limit = rate_limit.hit("create_look", user.id)
    if not limit.ok:
        return LookResult(
            success=False,
            error="Rate limit exceeded. You can create up to 10 looks per hour. Please try again later.",
        )

    credit = deduct_credit(db, user.id, 1)
    if not credit.success:
        return LookResult(success=False, error="insufficient_credits")

    look = create_look(db, items, creator=user, occasion=occasion, creation_source="apparel")
    after.add("jobs.generate_look_image", look.id, user.id)
    return LookResult(success=True, look_id=look.id, public_id=look.public_id)


def recreate_look(db: Session, user: User, look_id: str, after: AfterCommit) -> LookResult:
    original = db.query(Look).filter(Look.id == look_id).first()
    if not original or not original.is_active:
        return LookResult(success=False, error="Look not found.")

    items = _active_items_or_none(db, original.item_ids or [])
    if items is None:
        return LookResult(success=False, error="Some items in this look are no longer available.")

    if not primary_user_image(db, user.id):
        return LookResult(success=False, error="no_photo")

    credit = deduct_credit(db, user.id, 1)
    if not credit.success:
        return LookResult(success=False, error="insufficient_credits")

    look = create_look(
        db,
        items,
        creator=user,
        name=f"{original.name} (Recreated)" if original.name else None,
        occasion=original.occasion,
        nima_comment=original.nima_comment,
        style_tags=original.style_tags,
        creation_source="recreated",
        original_look_id=original.id,
    )
    after.add("jobs.generate_look_image", look.id, user.id)
    return LookResult(success=True, look_id=look.id, public_id=look.public_id)


def delete_look(db: Session, user: User, look_id: str, hard: bool = False) -> None:
    look = get_owned_look(db, user, look_id)

    if not hard:
        look.is_active = False
        look.updated_at = _now()
        db.commit()
        return

    images = db.query(LookImage).filter(LookImage.look_id == look.id).all()
    keys = [img.storage_key for img in images]
    for img in images:
        db.delete(img)
    (
        db.query(Look)
        .filter(Look.original_look_id == look.id)
        .update({Look.original_look_id: None}, synchronize_session=False)
    )
    db.delete(look)
    db.commit()

    # блобы: только после commit, best-effort
    for key in keys:
        try:
            delete_blob(key)
        except Exception as e:
            logger.warning("failed to delete look image blob %s: %s", key, e)


# ---------------- Read ----------------

def look_to_dict(db: Session, look: Look, with_items: bool = False) -> dict:
    img = current_look_image(db, look.id)
    data = {
        "id": look.id,
        "public_id": look.public_id,
        "name": look.name,
        "item_ids": look.item_ids or [],
        "total_price": look.total_price,
        "currency": look.currency,
        "style_tags": look.style_tags or [],
        "occasion": look.occasion,
        "nima_comment": look.nima_comment,
        "generation_status": look.generation_status,
        "error_message": look.error_message,
        "creation_source": look.creation_source,
        "image_url": get_url(img.storage_key) if img else None,
        "created_at": look.created_at.isoformat() if getattr(look, "created_at", None) else None,
        "updated_at": look.updated_at.isoformat() if getattr(look, "updated_at", None) else None,
    }
    if with_items:
        data["items"] = [item_summary(db, i) for i in get_items_in_order(db, look.item_ids or [])]
    return data
