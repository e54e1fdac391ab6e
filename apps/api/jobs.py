"""
RQ задачи: генерация изображений (look / item try-on), онбординг, уведомления, STK push.

Задачи не бросают исключений наружу: любая ошибка генерации становится статусом
failed с текстом ошибки на записи.
"""
import logging
import os
import random
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

import requests

import ai_client
import prompts
from catalog import get_items_in_order, primary_image
from credits import fail_purchase, refund_credits
from db import SessionLocal
from looks_service import attach_look_image, update_look_generation_status
from models import Item, ItemTryOn, Look, User, UserImage
from notifications import (
    look_ready_message,
    low_credit_message,
    notify,
    onboarding_ready_message,
    purchase_message,
    try_on_ready_message,
)
from onboarding import build_onboarding_looks
from profiles import primary_user_image
from state_machine import GenerationStatus, InvalidStateTransition
from state_service import change_status
from storage import get_bytes, store
from try_ons import update_item_try_on_status

logger = logging.getLogger(__name__)

MAX_ITEM_IMAGES = 5
FETCH_WORKERS = 6
IMAGE_FETCH_TIMEOUT = (5, 30)

NO_PRIMARY_IMAGE = "User does not have a primary image for try-on"
NO_IMAGE_RETURNED = (
    "Image generation failed - model did not return an image. "
    "The model may not support image generation or the request was blocked."
)


class GenerationError(Exception):
    pass


@dataclass
class FetchedImage:
    data: bytes
    mime_type: str
    description: str


def _mime_for(key_or_url: str, fallback: str = "image/jpeg") -> str:
    lowered = key_or_url.lower().split("?")[0]
    if lowered.endswith(".png"):
        return "image/png"
    if lowered.endswith(".webp"):
        return "image/webp"
    if lowered.endswith(".jpg") or lowered.endswith(".jpeg"):
        return "image/jpeg"
    return fallback


def fetch_image(storage_key: str | None = None, url: str | None = None) -> tuple[bytes, str]:
    if storage_key:
        return get_bytes(storage_key), _mime_for(storage_key)
    if url:
        resp = requests.get(url, timeout=IMAGE_FETCH_TIMEOUT)
        resp.raise_for_status()
        return resp.content, resp.headers.get("Content-Type") or _mime_for(url)
    raise GenerationError("no image source")


def _fetch_item_image(ref: tuple[str | None, str | None, str]) -> FetchedImage | None:
    storage_key, url, description = ref
    try:
        data, mime = fetch_image(storage_key, url)
        return FetchedImage(data=data, mime_type=mime, description=description)
    except Exception as e:
        # вещь без картинки просто выпадает из промпта
        logger.warning("failed to fetch item image for %r: %s", description, e)
        return None


def _claim(db, entity) -> bool:
    """pending -> processing. Не pending (дубль задачи / уже готово): пропускаем."""
    try:
        return change_status(db, entity, GenerationStatus.PROCESSING)
    except InvalidStateTransition:
        return False


def _render(parts: list[dict[str, Any]], retry_parts: list[dict[str, Any]]) -> ai_client.ImageResult:
    result = ai_client.generate_image(parts)
    if result.image:
        return result

    logger.info("no image in first response (%s), retrying with simplified prompt", (result.text or "")[:100])
    result = ai_client.generate_image(retry_parts)
    if result.image:
        return result
    raise GenerationError(NO_IMAGE_RETURNED)


# ============================================================
# LOOK IMAGE
# ============================================================

def generate_look_image(look_id: str, user_id: str) -> dict[str, Any]:
    # 1) claim; после него любая ошибка переводит look в failed
    with SessionLocal() as db:
        look = db.query(Look).filter(Look.id == look_id).first()
        if not look:
            return {"success": False, "error": "Look not found"}
        if not _claim(db, look):
            logger.info("look %s is %s, skipping generation", look_id, look.generation_status)
            return {"success": False, "error": "skipped", "status": look.generation_status}
        db.commit()
        item_ids = list(look.item_ids or [])

    try:
        with SessionLocal() as db:
            photo = primary_user_image(db, user_id)
            photo_key = photo.storage_key if photo else None
            photo_id = photo.id if photo else None

            refs = []
            for item in get_items_in_order(db, item_ids):
                img = primary_image(db, item.id)
                if not img:
                    logger.warning("item %s has no image, dropped from look %s", item.id, look_id)
                    continue
                refs.append((img.storage_key, img.external_url,
                             prompts.describe_item(item.name, item.brand, item.colors)))

        if not photo_key:
            raise GenerationError(NO_PRIMARY_IMAGE)

        # 2) фото пользователя и вещей параллельно
        with ThreadPoolExecutor(max_workers=FETCH_WORKERS) as pool:
            photo_future = pool.submit(fetch_image, photo_key)
            fetched = [f for f in pool.map(_fetch_item_image, refs) if f is not None]
            user_bytes, user_mime = photo_future.result()

        descriptions = [f.description for f in fetched] or [r[2] for r in refs]

        # 3) текстовый промпт от "режиссёра"
        generated = ai_client.generate_text(
            prompts.look_prompt_request(descriptions),
            system=prompts.DIRECTOR_SYSTEM,
            temperature=0.7,
        )

        # 4) картинка: фото пользователя + до 5 вещей; при пустом ответе: упрощённый промпт
        shown = fetched[:MAX_ITEM_IMAGES]
        parts = [ai_client.text_part(prompts.look_full_prompt([f.description for f in shown], generated)),
                 ai_client.image_part(user_bytes, user_mime)]
        parts += [ai_client.image_part(f.data, f.mime_type) for f in shown]
        retry_parts = [ai_client.text_part(prompts.look_simple_prompt(", ".join(descriptions))),
                       ai_client.image_part(user_bytes, user_mime)]

        result = _render(parts, retry_parts)
        key = store(result.image, content_type=result.mime_type, prefix="looks")

        # 5) сохраняем и закрываем
        with SessionLocal() as db:
            look = db.query(Look).filter(Look.id == look_id).first()
            attach_look_image(db, look, user_id, key, photo_id, ai_client.provider_name())
            db.commit()
            update_look_generation_status(db, look_id, GenerationStatus.COMPLETED)

        logger.info("look %s generated (%d item images)", look_id, len(shown))
        return {"success": True, "storage_key": key}

    except Exception as e:
        logger.exception("look %s generation failed", look_id)
        with SessionLocal() as db:
            try:
                update_look_generation_status(db, look_id, GenerationStatus.FAILED, error_message=str(e))
            except InvalidStateTransition:
                db.rollback()
        return {"success": False, "error": str(e)}


# ============================================================
# ITEM TRY-ON IMAGE
# ============================================================

def generate_item_try_on_image(try_on_id: str) -> dict[str, Any]:
    with SessionLocal() as db:
        try_on = db.query(ItemTryOn).filter(ItemTryOn.id == try_on_id).first()
        if not try_on:
            return {"success": False, "error": "Try-on not found"}
        if not _claim(db, try_on):
            logger.info("try-on %s is %s, skipping generation", try_on_id, try_on.status)
            return {"success": False, "error": "skipped", "status": try_on.status}
        db.commit()
        user_image_id, owner_id = try_on.user_image_id, try_on.user_id
        item_id, selected_color = try_on.item_id, try_on.selected_color

    try:
        with SessionLocal() as db:
            photo = None
            if user_image_id:
                photo = db.query(UserImage).filter(UserImage.id == user_image_id).first()
            photo = photo or primary_user_image(db, owner_id)
            photo_key = photo.storage_key if photo else None

            item = db.query(Item).filter(Item.id == item_id).first()
            img = primary_image(db, item.id) if item else None
            item_ref = (img.storage_key, img.external_url) if img else None
            description = prompts.describe_item(item.name, item.brand, item.colors, selected_color) if item else ""
            category = item.category if item else ""
            item_description = item.description if item else None

        if not photo_key:
            raise GenerationError(NO_PRIMARY_IMAGE)
        if not description:
            raise GenerationError("Item not found")

        with ThreadPoolExecutor(max_workers=2) as pool:
            photo_future = pool.submit(fetch_image, photo_key)
            item_future = pool.submit(_fetch_item_image, (*item_ref, description)) if item_ref else None
            user_bytes, user_mime = photo_future.result()
            item_image = item_future.result() if item_future else None

        generated = ai_client.generate_text(
            prompts.try_on_prompt_request(description, category, item_description),
            system=prompts.DIRECTOR_SYSTEM,
            temperature=0.7,
        )

        parts = [ai_client.text_part(prompts.try_on_full_prompt(description, generated, item_image is not None)),
                 ai_client.image_part(user_bytes, user_mime)]
        if item_image:
            parts.append(ai_client.image_part(item_image.data, item_image.mime_type))
        retry_parts = [ai_client.text_part(prompts.try_on_simple_prompt(description)),
                       ai_client.image_part(user_bytes, user_mime)]

        result = _render(parts, retry_parts)
        key = store(result.image, content_type=result.mime_type, prefix="try-ons")

        with SessionLocal() as db:
            try_on = db.query(ItemTryOn).filter(ItemTryOn.id == try_on_id).first()
            try_on.storage_key = key
            try_on.generation_provider = ai_client.provider_name()
            update_item_try_on_status(db, try_on_id, GenerationStatus.COMPLETED)

        return {"success": True, "storage_key": key}

    except Exception as e:
        logger.exception("try-on %s generation failed", try_on_id)
        with SessionLocal() as db:
            try:
                update_item_try_on_status(db, try_on_id, GenerationStatus.FAILED, error_message=str(e))
            except InvalidStateTransition:
                db.rollback()
        return {"success": False, "error": str(e)}


# ============================================================
# ONBOARDING
# ============================================================

def process_onboarding_looks(user_id: str, exclude_item_ids: list[str] | None = None,
                             charged: int = 0) -> dict[str, Any]:
    """
    Собирает до трёх образов и генерирует их картинки по очереди.
    charged: сколько кредитов уже списано; за несобранные образы возвращаем.
    """
    with SessionLocal() as db:
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            return {"success": False, "error": "User not found"}

        try:
            looks = build_onboarding_looks(db, user, exclude_item_ids or [], rng=random.Random())
            look_ids = [lk.id for lk in looks]
            db.commit()
        except Exception as e:
            db.rollback()
            logger.exception("onboarding look selection failed for user %s", user_id)
            if charged:
                refund_credits(db, user_id, charged)
            return {"success": False, "error": str(e)}

        if charged > len(look_ids):
            refund_credits(db, user_id, charged - len(look_ids))

    success_count = 0
    for look_id in look_ids:
        if generate_look_image(look_id, user_id).get("success"):
            success_count += 1

    with SessionLocal() as db:
        user = db.query(User).filter(User.id == user_id).first()
        if user and not user.onboarding_completed:
            user.onboarding_completed = True
            db.commit()

    if success_count:
        send_onboarding_ready_notification(user_id, success_count)

    logger.info("onboarding for user %s: %d/%d looks generated", user_id, success_count, len(look_ids))
    return {"success": success_count > 0, "look_ids": look_ids, "generated": success_count}


# ============================================================
# NOTIFICATIONS
# ============================================================

def send_low_credit_notification(user_id: str, remaining: int) -> bool:
    title, body = low_credit_message(remaining)
    with SessionLocal() as db:
        return notify(db, user_id, title, body, {"type": "low_credits", "remaining": remaining}, "credits")


def send_purchase_notification(user_id: str, credits_added: int, new_balance: int) -> bool:
    title, body = purchase_message(credits_added, new_balance)
    data = {"type": "credits_added", "creditsAdded": credits_added, "newBalance": new_balance}
    with SessionLocal() as db:
        return notify(db, user_id, title, body, data, "credits")


def send_look_ready_notification(user_id: str, look_id: str) -> bool:
    with SessionLocal() as db:
        look = db.query(Look).filter(Look.id == look_id).first()
        if not look:
            return False
        title, body = look_ready_message(look.name)
        return notify(db, user_id, title, body, {"type": "look_ready", "lookId": look_id}, "looks")


def send_try_on_ready_notification(user_id: str, try_on_id: str) -> bool:
    with SessionLocal() as db:
        try_on = db.query(ItemTryOn).filter(ItemTryOn.id == try_on_id).first()
        if not try_on:
            return False
        item = db.query(Item).filter(Item.id == try_on.item_id).first()
        title, body = try_on_ready_message(item.name if item else "your item")
        data = {"type": "try_on_ready", "tryOnId": try_on_id, "itemId": try_on.item_id}
        return notify(db, user_id, title, body, data, "looks")


def send_onboarding_ready_notification(user_id: str, success_count: int) -> bool:
    title, body = onboarding_ready_message(success_count)
    with SessionLocal() as db:
        return notify(db, user_id, title, body, {"type": "onboarding_looks_ready"}, "looks")


# ============================================================
# PAYMENTS (Fingo M-Pesa STK push)
# ============================================================

def _fingo_url() -> str:
    return (os.getenv("FINGO_API_URL") or "https://api.fingopay.io/v1/mpesa/charge").strip()


def request_stk_push(merchant_transaction_id: str, amount_cents: int, phone_number: str,
                     narration: str) -> dict[str, Any]:
    api_key = (os.getenv("FINGO_LIVE_KEY") or "").strip()
    if not api_key:
        logger.error("FINGO_LIVE_KEY is not set")
        with SessionLocal() as db:
            fail_purchase(db, merchant_transaction_id, "Payment service not configured")
        return {"success": False, "error": "Payment service not configured"}

    try:
        resp = requests.post(
            _fingo_url(),
            json={
                "merchantTransactionId": merchant_transaction_id,
                "amount": amount_cents,
                "phoneNumber": phone_number,
                "narration": narration,
            },
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "Idempotency-Key": merchant_transaction_id,
            },
            timeout=(5, 30),
        )
    except requests.RequestException as e:
        logger.warning("STK push request failed for %s: %s", merchant_transaction_id, e)
        with SessionLocal() as db:
            fail_purchase(db, merchant_transaction_id, f"STK push failed: {e}")
        return {"success": False, "error": str(e)}

    if resp.status_code == 202 or resp.ok:
        # итог придёт webhook'ом
        logger.info("STK push accepted for %s", merchant_transaction_id)
        return {"success": True}

    try:
        data = resp.json()
    except ValueError:
        data = {}
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        error = error.get("message")
    reason = str(error) if error else f"HTTP {resp.status_code}"
    with SessionLocal() as db:
        fail_purchase(db, merchant_transaction_id, reason)
    return {"success": False, "error": reason}
