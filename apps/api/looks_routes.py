from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from auth import get_current_user
from db import get_db
from looks_service import (
    LookResult,
    create_look_from_items,
    delete_look,
    get_owned_look,
    look_to_dict,
    recreate_look,
    retry_look,
)
from models import Look, User
from queueing import AfterCommit

router = APIRouter(prefix="/v1", tags=["looks"])


class FromItemsReq(BaseModel):
    item_ids: list[str] = Field(..., min_length=1)
    occasion: Optional[str] = None


def _result_or_error(db: Session, result: LookResult, after: AfterCommit) -> dict:
    if not result.success:
        db.rollback()
        status = 402 if result.error == "insufficient_credits" else 400
        if result.error and result.error.startswith("Rate limit"):
            status = 429
        raise HTTPException(status_code=status, detail=result.error)
    after.commit(db)
    return {"look_id": result.look_id, "public_id": result.public_id, "status": "pending"}


@router.get("/looks", operation_id="list_looks")
def list_looks(
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    status: Optional[str] = Query(None),
):
    q = db.query(Look).filter(Look.creator_user_id == current.id, Look.is_active.is_(True))
    if status:
        q = q.filter(Look.generation_status == status)

    total = q.count()
    looks = q.order_by(Look.created_at.desc()).limit(limit).offset(offset).all()

    return {
        "items": [look_to_dict(db, lk) for lk in looks],
        "limit": limit,
        "offset": offset,
        "total": total,
    }


@router.get("/looks/{look_id}", operation_id="get_look")
def get_look(look_id: str, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    return look_to_dict(db, get_owned_look(db, current, look_id), with_items=True)


@router.post("/looks/from-items", operation_id="create_look_from_items")
def create_from_items(
    payload: FromItemsReq,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    after = AfterCommit()
    result = create_look_from_items(db, current, payload.item_ids, payload.occasion, after)
    return _result_or_error(db, result, after)


@router.post("/looks/{look_id}/recreate", operation_id="recreate_look")
def recreate(look_id: str, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    after = AfterCommit()
    result = recreate_look(db, current, look_id, after)
    return _result_or_error(db, result, after)


@router.post("/looks/{look_id}/retry", operation_id="retry_look")
def retry(look_id: str, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    after = AfterCommit()
    look = retry_look(db, current, look_id, after)
    after.commit(db)
    return {"look_id": look.id, "status": look.generation_status}


@router.delete("/looks/{look_id}", operation_id="delete_look")
def delete(
    look_id: str,
    hard: bool = Query(False),
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    delete_look(db, current, look_id, hard=hard)
    return {"status": "ok"}
