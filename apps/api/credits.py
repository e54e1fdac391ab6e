"""
Credit ledger: допуск к платной генерации и покупка кредитов через M-Pesa.

Баланс = бесплатные кредиты недели (5, сбрасываются раз в 7 дней) + купленные.
Списание атомарное "всё или ничего": compare-and-set UPDATE по колонкам баланса
(+ SELECT ... FOR UPDATE там, где диалект его поддерживает), без внешних локов.
"""
import logging
import re
import secrets
import string
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_, case, func, select, update
from sqlalchemy.orm import Session

from models import CreditPurchase, User
from queueing import schedule_quietly

logger = logging.getLogger(__name__)

FREE_WEEKLY_CREDITS = 5
ONE_WEEK = timedelta(days=7)
LOW_CREDIT_THRESHOLD = 2

# сколько раз повторяем CAS при гонке с параллельным списанием
MAX_DEDUCT_ATTEMPTS = 5

KENYAN_PHONE_RE = re.compile(r"^(?:\+254|254|0)(?:7|1)\d{8}$")


@dataclass(frozen=True)
class CreditPackage:
    id: str
    credits: int
    price_kes: int
    popular: bool = False


CREDIT_PACKAGES: dict[str, CreditPackage] = {
    "pack_10": CreditPackage("pack_10", 10, 500),
    "pack_20": CreditPackage("pack_20", 20, 1000, popular=True),
    "pack_50": CreditPackage("pack_50", 50, 2500),
    "pack_100": CreditPackage("pack_100", 100, 5000),
}


@dataclass
class DeductResult:
    success: bool
    remaining: int
    error: str | None = None


@dataclass
class PurchaseResult:
    success: bool
    purchase_id: str | None = None
    merchant_transaction_id: str | None = None
    error: str | None = None


def _now() -> datetime:
    return datetime.utcnow()


# ---------------- Balance ----------------

def _weekly_window(used: int | None, reset_at: datetime | None, now: datetime) -> tuple[int, datetime]:
    """(использовано бесплатных, начало окна) с учётом истёкшей недели."""
    if reset_at is None or now - reset_at >= ONE_WEEK:
        return 0, now
    return used or 0, reset_at


def get_credit_balance(user: User, now: datetime | None = None) -> dict:
    now = now or _now()
    used, reset_at = _weekly_window(user.free_credits_used_this_week, user.weekly_credits_reset_at, now)
    free_remaining = max(0, FREE_WEEKLY_CREDITS - used)
    purchased = user.credits or 0
    return {
        "free_remaining": free_remaining,
        "purchased": purchased,
        "total": free_remaining + purchased,
        "free_resets_at": (reset_at + ONE_WEEK).isoformat(),
    }


# ---------------- Deduct / refund ----------------

def deduct_credit(db: Session, user_id: str, count: int = 1, now: datetime | None = None) -> DeductResult:
    """
    Атомарно списывает count кредитов: сначала бесплатные, потом купленные.

    Коммитит собственную транзакцию: вызывать до остальных записей запроса.
    Недостаточно кредитов -> success=False, баланс не меняется.
    """
    if count <= 0:
        raise ValueError("count must be positive")

    for _ in range(MAX_DEDUCT_ATTEMPTS):
        row = db.execute(
            select(User.credits, User.free_credits_used_this_week, User.weekly_credits_reset_at)
            .where(User.id == user_id)
            .with_for_update()
        ).first()
        if row is None:
            return DeductResult(success=False, remaining=0, error="user_not_found")

        purchased, used_raw, reset_raw = row
        purchased = purchased or 0
        ts = now or _now()
        used, reset_at = _weekly_window(used_raw, reset_raw, ts)

        free_left = max(0, FREE_WEEKLY_CREDITS - used)
        total = free_left + purchased
        if total < count:
            return DeductResult(success=False, remaining=total, error="insufficient_credits")

        from_free = min(free_left, count)
        from_purchased = count - from_free

        # CAS: строка не должна была измениться с момента чтения
        guard = [
            User.id == user_id,
            User.credits == purchased,
            User.free_credits_used_this_week == (used_raw or 0),
        ]
        if reset_raw is None:
            guard.append(User.weekly_credits_reset_at.is_(None))
        else:
            guard.append(User.weekly_credits_reset_at == reset_raw)

        res = db.execute(
            update(User)
            .where(*guard)
            .values(
                credits=purchased - from_purchased,
                free_credits_used_this_week=used + from_free,
                weekly_credits_reset_at=reset_at,
                updated_at=ts,
            )
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            db.rollback()
            continue

        db.commit()
        db.expire_all()

        remaining = total - count
        if remaining <= LOW_CREDIT_THRESHOLD:
            schedule_quietly("jobs.send_low_credit_notification", user_id, remaining)
        return DeductResult(success=True, remaining=remaining)

    logger.warning("credit deduction for user %s lost %d CAS rounds", user_id, MAX_DEDUCT_ATTEMPTS)
    return DeductResult(success=False, remaining=0, error="credit_conflict")


def refund_credits(db: Session, user_id: str, count: int, now: datetime | None = None) -> None:
    """
    Возврат за допущенную, но не выполненную работу.

    Сначала возвращаются бесплатные кредиты текущей недели (в пределах
    потраченных), остаток уходит в купленные. После сброса недели всё в купленные.
    """
    if count <= 0:
        return
    ts = now or _now()
    used = func.coalesce(User.free_credits_used_this_week, 0)
    in_week = User.weekly_credits_reset_at > ts - ONE_WEEK
    to_free = case(
        (and_(in_week, used >= count), count),
        (in_week, used),
        else_=0,
    )
    # SET считается по старым значениям строки: одно атомарное UPDATE
    db.execute(
        update(User)
        .where(User.id == user_id)
        .values(
            free_credits_used_this_week=used - to_free,
            credits=User.credits + count - to_free,
            updated_at=ts,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.expire_all()
    logger.info("refunded %d credits to user %s", count, user_id)


def add_credits(db: Session, user_id: str, amount: int) -> int:
    db.execute(
        update(User)
        .where(User.id == user_id)
        .values(credits=User.credits + amount, updated_at=_now())
        .execution_options(synchronize_session=False)
    )
    db.flush()
    return db.execute(select(User.credits).where(User.id == user_id)).scalar_one()


# ---------------- Purchases ----------------

def generate_merchant_transaction_id() -> str:
    alphabet = string.ascii_letters + string.digits
    return "nima_cr_" + "".join(secrets.choice(alphabet) for _ in range(16))


def is_valid_kenyan_phone(phone: str) -> bool:
    return bool(KENYAN_PHONE_RE.match((phone or "").strip()))


def initiate_purchase(db: Session, user: User, package_id: str, phone_number: str) -> PurchaseResult:
    pkg = CREDIT_PACKAGES.get(package_id)
    if not pkg:
        return PurchaseResult(success=False, error="Invalid package")

    phone = (phone_number or "").strip()
    if not is_valid_kenyan_phone(phone):
        return PurchaseResult(
            success=False,
            error="Invalid phone number format. Use Kenyan format (e.g., +254712345678)",
        )

    now = _now()
    purchase = CreditPurchase(
        id=str(uuid.uuid4()),
        user_id=user.id,
        package_id=pkg.id,
        credit_amount=pkg.credits,
        price_kes=pkg.price_kes,
        phone_number=phone,
        merchant_transaction_id=generate_merchant_transaction_id(),
        status="pending",
        created_at=now,
        updated_at=now,
    )
    db.add(purchase)

    if not user.phone_number:
        user.phone_number = phone
        user.updated_at = now

    db.commit()

    # Fingo ждёт сумму в центах
    schedule_quietly(
        "jobs.request_stk_push",
        purchase.merchant_transaction_id,
        pkg.price_kes * 100,
        phone,
        f"Nima {pkg.credits} Credits",
    )
    return PurchaseResult(
        success=True,
        purchase_id=purchase.id,
        merchant_transaction_id=purchase.merchant_transaction_id,
    )


def _purchase_by_merchant_id(db: Session, merchant_transaction_id: str) -> CreditPurchase | None:
    return (
        db.query(CreditPurchase)
        .filter(CreditPurchase.merchant_transaction_id == merchant_transaction_id)
        .with_for_update()
        .first()
    )


def complete_purchase(
    db: Session,
    merchant_transaction_id: str,
    provider_transaction_id: str | None = None,
) -> dict:
    """Идемпотентно: повторный webhook по завершённой покупке ничего не начисляет."""
    purchase = _purchase_by_merchant_id(db, merchant_transaction_id)
    if not purchase:
        return {"success": False, "error": "purchase_not_found"}

    if purchase.status == "completed":
        return {"success": True, "already_completed": True}

    now = _now()
    purchase.status = "completed"
    purchase.provider_transaction_id = provider_transaction_id or purchase.provider_transaction_id
    purchase.failure_reason = None
    purchase.completed_at = now
    purchase.updated_at = now

    new_balance = add_credits(db, purchase.user_id, purchase.credit_amount)

    user = db.query(User).filter(User.id == purchase.user_id).first()
    if user and not user.phone_number:
        user.phone_number = purchase.phone_number
        user.updated_at = now

    db.commit()

    schedule_quietly(
        "jobs.send_purchase_notification",
        purchase.user_id,
        purchase.credit_amount,
        new_balance,
    )
    return {"success": True, "credits_added": purchase.credit_amount, "balance": new_balance}


def fail_purchase(db: Session, merchant_transaction_id: str, reason: str, status: str = "failed") -> dict:
    purchase = _purchase_by_merchant_id(db, merchant_transaction_id)
    if not purchase:
        return {"success": False, "error": "purchase_not_found"}

    # завершённую покупку не перетираем поздним/повторным событием
    if purchase.status == "completed":
        logger.warning("ignoring failure for completed purchase %s", merchant_transaction_id)
        return {"success": False, "error": "already_completed"}

    purchase.status = status
    purchase.failure_reason = reason
    purchase.updated_at = _now()
    db.commit()
    return {"success": True}
