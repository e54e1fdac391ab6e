from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from auth import get_current_user
from db import get_db
from models import ItemTryOn, User
from queueing import AfterCommit
from try_ons import (
    delete_item_try_on,
    get_owned_try_on,
    retry_item_try_on,
    start_item_try_on,
    try_on_to_dict,
)

router = APIRouter(prefix="/v1/try-ons", tags=["try-ons"])


class StartTryOnReq(BaseModel):
    item_id: str
    selected_size: Optional[str] = None
    selected_color: Optional[str] = None


@router.post("", operation_id="start_try_on")
def start(payload: StartTryOnReq, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    after = AfterCommit()
    result = start_item_try_on(db, current, payload.item_id, payload.selected_size, payload.selected_color, after)
    if not result.success:
        db.rollback()
        status = 402 if result.error == "insufficient_credits" else 400
        raise HTTPException(status_code=status, detail=result.error)
    after.commit(db)
    return {"try_on_id": result.try_on_id, "status": result.status, "charged": result.charged}


@router.get("", operation_id="list_try_ons")
def list_try_ons(
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    q = db.query(ItemTryOn).filter(ItemTryOn.user_id == current.id)
    total = q.count()
    rows = q.order_by(ItemTryOn.created_at.desc()).limit(limit).offset(offset).all()
    return {"items": [try_on_to_dict(db, t) for t in rows], "limit": limit, "offset": offset, "total": total}


@router.get("/{try_on_id}", operation_id="get_try_on")
def get_try_on(try_on_id: str, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    return try_on_to_dict(db, get_owned_try_on(db, current, try_on_id))


@router.post("/{try_on_id}/retry", operation_id="retry_try_on")
def retry(try_on_id: str, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    after = AfterCommit()
    t = retry_item_try_on(db, current, try_on_id, after)
    after.commit(db)
    return {"try_on_id": t.id, "status": t.status}


@router.delete("/{try_on_id}", operation_id="delete_try_on")
def delete(try_on_id: str, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    delete_item_try_on(db, current, try_on_id)
    return {"status": "ok"}
