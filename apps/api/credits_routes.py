import hashlib
import hmac
import json
import logging
import os
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from auth import get_current_user
from credits import CREDIT_PACKAGES, complete_purchase, fail_purchase, get_credit_balance, initiate_purchase
from db import get_db
from models import CreditPurchase, User

logger = logging.getLogger(__name__)

router = APIRouter(tags=["credits"])

SIGNATURE_HEADERS = ("x-webhook-signature", "webhook-signature", "x-fingo-signature")
COMPLETED_STATUSES = ("completed", "success", "successful")
FAILED_STATUSES = ("failed", "failure", "cancelled", "canceled", "rejected")


class PurchaseReq(BaseModel):
    package_id: str
    phone_number: str


@router.get("/v1/credits", operation_id="credit_balance")
def balance(current: User = Depends(get_current_user)):
    return get_credit_balance(current)


@router.get("/v1/credits/packages", operation_id="credit_packages")
def packages():
    return {
        "items": [
            {"id": p.id, "credits": p.credits, "price_kes": p.price_kes, "popular": p.popular}
            for p in CREDIT_PACKAGES.values()
        ]
    }


@router.post("/v1/credits/purchase", operation_id="purchase_credits")
def purchase(payload: PurchaseReq, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    result = initiate_purchase(db, current, payload.package_id, payload.phone_number)
    if not result.success:
        raise HTTPException(status_code=400, detail=result.error)
    return {
        "purchase_id": result.purchase_id,
        "merchant_transaction_id": result.merchant_transaction_id,
        "status": "pending",
    }


@router.get("/v1/credits/purchases/{purchase_id}", operation_id="get_purchase")
def get_purchase(purchase_id: str, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    p = db.query(CreditPurchase).filter(CreditPurchase.id == purchase_id).first()
    if not p or p.user_id != current.id:
        raise HTTPException(status_code=404, detail="purchase not found")
    return {
        "id": p.id,
        "package_id": p.package_id,
        "credit_amount": p.credit_amount,
        "price_kes": p.price_kes,
        "status": p.status,
        "failure_reason": p.failure_reason,
        "created_at": p.created_at.isoformat() if p.created_at else None,
        "completed_at": p.completed_at.isoformat() if p.completed_at else None,
    }


# ---------------- Fingo webhook ----------------

def _webhook_secret() -> str:
    return (os.getenv("FINGO_WEBHOOK_SECRET") or os.getenv("FINGO_WEBHOOK_SECRET_KEY") or "").strip()


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    provided = signature.split("=", 1)[1] if signature.startswith("sha256=") else signature
    return hmac.compare_digest(expected, provided.strip())


def _pick(data: dict[str, Any], *keys: str) -> Optional[str]:
    for k in keys:
        v = data.get(k)
        if v:
            return str(v)
    return None


@router.post("/webhooks/fingo", operation_id="fingo_webhook")
async def fingo_webhook(request: Request, db: Session = Depends(get_db)):
    body = await request.body()

    secret = _webhook_secret()
    signature = next((request.headers.get(h) for h in SIGNATURE_HEADERS if request.headers.get(h)), None)
    if secret and not verify_signature(body, signature, secret):
        # TODO: отклонять (401), когда Fingo подтвердит формат подписи в проде
        logger.warning("fingo webhook signature mismatch")

    try:
        event = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="invalid JSON")
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="invalid payload")

    data = event.get("data") if isinstance(event.get("data"), dict) else event
    merchant_id = _pick(data, "merchantTransactionId", "merchant_transaction_id")
    if not merchant_id:
        raise HTTPException(status_code=400, detail="missing merchantTransactionId")

    # "payment.completed" -> "completed"
    status = (_pick(data, "status") or _pick(event, "status", "type") or "").lower().rsplit(".", 1)[-1]
    provider_tx = _pick(data, "transactionId", "mpesaReceiptNumber", "id")

    if status in COMPLETED_STATUSES:
        result = complete_purchase(db, merchant_id, provider_tx)
    elif status in FAILED_STATUSES:
        reason = _pick(data, "failureReason", "resultDesc", "message") or f"Payment {status}"
        result = fail_purchase(db, merchant_id, reason, status="cancelled" if status.startswith("cancel") else "failed")
    else:
        logger.info("fingo webhook %s: ignoring status %r", merchant_id, status)
        return {"received": True, "ignored": True}

    if not result.get("success") and result.get("error") == "purchase_not_found":
        logger.warning("fingo webhook for unknown purchase %s", merchant_id)
    return {"received": True, **result}
