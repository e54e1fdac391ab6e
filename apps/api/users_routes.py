import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from auth import get_current_user
from db import get_db
from models import PushToken, User, UserImage
from onboarding import generate_more_looks, start_onboarding
from profiles import add_user_image
from queueing import AfterCommit
from storage import get_url, put_object

router = APIRouter(prefix="/v1", tags=["users"])

MAX_PHOTO_BYTES = 10 * 1024 * 1024


def guess_ext(filename: str | None) -> str | None:
    if not filename or "." not in filename:
        return None
    ext = filename.rsplit(".", 1)[1].lower()
    if ext in ("jpg", "jpeg", "png", "webp"):
        return "jpg" if ext == "jpeg" else ext
    return None


# ---------------- Photos ----------------

@router.post("/users/photos", operation_id="upload_user_photo")
async def upload_photo(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    if not file.content_type or not file.content_type.startswith("image/"):
        raise HTTPException(status_code=400, detail="only image/* is allowed")

    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="empty file")
    if len(data) > MAX_PHOTO_BYTES:
        raise HTTPException(status_code=413, detail="photo is too large")

    ext = guess_ext(file.filename) or "jpg"
    object_key = f"users/{current.id}/{uuid.uuid4()}.{ext}"
    put_object(object_key, data, file.content_type)

    img = add_user_image(db, current, object_key, file.content_type, make_primary=True)
    db.commit()
    return {"id": img.id, "is_primary": img.is_primary, "url": get_url(object_key)}


@router.get("/users/photos", operation_id="list_user_photos")
def list_photos(db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    rows = (
        db.query(UserImage)
        .filter(UserImage.user_id == current.id)
        .order_by(UserImage.created_at.desc())
        .all()
    )
    return {
        "items": [
            {"id": r.id, "is_primary": r.is_primary, "url": get_url(r.storage_key)}
            for r in rows
        ]
    }


# ---------------- Push tokens ----------------

class PushTokenReq(BaseModel):
    token: str = Field(..., min_length=1)
    platform: Optional[str] = None


@router.post("/notifications/tokens", operation_id="register_push_token")
def register_token(payload: PushTokenReq, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    now = datetime.utcnow()
    row = db.query(PushToken).filter(PushToken.token == payload.token).first()
    if row:
        # токен переехал на другой аккаунт (перелогин на том же устройстве)
        row.user_id = current.id
        row.platform = payload.platform or row.platform
        row.updated_at = now
    else:
        db.add(
            PushToken(
                id=str(uuid.uuid4()),
                user_id=current.id,
                token=payload.token,
                platform=payload.platform,
                created_at=now,
                updated_at=now,
            )
        )
    db.commit()
    return {"status": "ok"}


@router.delete("/notifications/tokens/{token}", operation_id="delete_push_token")
def delete_token(token: str, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    db.query(PushToken).filter(PushToken.token == token, PushToken.user_id == current.id).delete()
    db.commit()
    return {"status": "ok"}


# ---------------- Onboarding ----------------

def _onboarding_response(db: Session, after: AfterCommit, result) -> dict:
    if not result.success:
        db.rollback()
        status = {"rate_limited": 429, "insufficient_credits": 402}.get(result.error, 400)
        raise HTTPException(status_code=status, detail=result.error)
    after.commit(db)
    return {"status": "processing", "looks_requested": result.looks_requested}


@router.post("/onboarding/start", operation_id="start_onboarding")
def onboarding_start(db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    after = AfterCommit()
    return _onboarding_response(db, after, start_onboarding(db, current, after))


@router.post("/onboarding/more", operation_id="generate_more_looks")
def onboarding_more(db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    after = AfterCommit()
    return _onboarding_response(db, after, generate_more_looks(db, current, after))
