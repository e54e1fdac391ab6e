from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from auth import get_current_user
from chat_service import (
    create_look_from_chat,
    create_looks_from_chat,
    create_mixed_look,
    create_remixed_look,
    schedule_chat_look_generation,
)
from db import get_db
from models import User
from queueing import AfterCommit

router = APIRouter(prefix="/v1/chat", tags=["chat"])


class ChatLooksReq(BaseModel):
    occasion: Optional[str] = None
    context: Optional[str] = None


class MixReq(BaseModel):
    item_ids: list[str] = Field(..., min_length=1)
    occasion: Optional[str] = None


class RemixReq(BaseModel):
    look_id: str
    twist: str = Field(..., min_length=1)
    occasion: Optional[str] = None


class ScheduleReq(BaseModel):
    look_ids: list[str] = Field(..., min_length=1, max_length=10)


def _finish(db: Session, after: AfterCommit, success: bool, reason: Optional[str], payload: dict) -> dict:
    # чат показывает бизнес-исходы сообщением, HTTP-ошибка только на лимит
    if reason == "rate_limited":
        db.rollback()
        raise HTTPException(status_code=429, detail="Rate limit exceeded. Please try again later.")
    if not success:
        db.rollback()
        return payload
    after.commit(db)
    return payload


@router.post("/looks", operation_id="chat_create_looks")
def chat_looks(payload: ChatLooksReq, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    after = AfterCommit()
    result = create_looks_from_chat(db, current, payload.occasion, payload.context, after)
    reason = None if result.success else result.message
    return _finish(db, after, result.success, reason, asdict(result))


@router.post("/look", operation_id="chat_create_look")
def chat_look(payload: ChatLooksReq, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    after = AfterCommit()
    result = create_look_from_chat(db, current, payload.occasion, payload.context, after)
    return _finish(db, after, result.success, result.error, asdict(result))


@router.post("/mix", operation_id="chat_mix_look")
def chat_mix(payload: MixReq, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    after = AfterCommit()
    result = create_mixed_look(db, current, payload.item_ids, payload.occasion, after)
    return _finish(db, after, result.success, result.error, asdict(result))


@router.post("/remix", operation_id="chat_remix_look")
def chat_remix(payload: RemixReq, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    after = AfterCommit()
    result = create_remixed_look(db, current, payload.look_id, payload.twist, payload.occasion, after)
    return _finish(db, after, result.success, result.error, asdict(result))


@router.post("/looks/schedule", operation_id="chat_schedule_looks")
def chat_schedule(payload: ScheduleReq, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    after = AfterCommit()
    scheduled = schedule_chat_look_generation(db, current, payload.look_ids, after)
    after.commit(db)
    return {"scheduled": scheduled}
