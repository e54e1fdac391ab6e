import os
import uuid
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from credits import get_credit_balance
from db import get_db
from locks import user_sync_locks
from models import User

# ---------------- Config ----------------

JWT_SECRET = (os.getenv("JWT_SECRET") or "").strip()
JWT_ALG = (os.getenv("JWT_ALG") or "HS256").strip()

if not JWT_SECRET:
    raise RuntimeError("JWT_SECRET is not set")

bearer = HTTPBearer(auto_error=False)

router = APIRouter(prefix="/v1/auth", tags=["auth"])

GENDERS = ("male", "female", "prefer-not-to-say")
BUDGETS = ("low", "mid", "premium")


# ---------------- Helpers ----------------

def decode_token(token: str) -> dict[str, Any]:
    """Токен выпускает внешний identity provider; sub: внешний id пользователя."""
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except JWTError:
        raise HTTPException(status_code=401, detail="Not authenticated")
    if not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Not authenticated")
    return payload


def sync_user(db: Session, claims: dict[str, Any]) -> User:
    """
    Находит или создаёт пользователя по внешнему id.
    Не более одного синка на identity в процессе; гонку между процессами ловит unique.
    """
    external_id = str(claims["sub"])
    with user_sync_locks.hold(external_id):
        u = db.query(User).filter(User.external_id == external_id).first()
        if u:
            return u

        now = datetime.utcnow()
        u = User(
            id=str(uuid.uuid4()),
            external_id=external_id,
            email=claims.get("email"),
            first_name=claims.get("first_name") or claims.get("given_name"),
            style_preferences=[],
            credits=0,
            free_credits_used_this_week=0,
            weekly_credits_reset_at=now,
            onboarding_completed=False,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        db.add(u)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            u = db.query(User).filter(User.external_id == external_id).first()
            if not u:
                raise
        return u


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Session = Depends(get_db),
) -> User:
    if creds is None or not creds.credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")

    u = sync_user(db, decode_token(creds.credentials))

    if getattr(u, "is_active", True) is False:
        raise HTTPException(status_code=401, detail="User inactive")
    return u


# ---------------- Schemas ----------------

class MeResp(BaseModel):
    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    gender: Optional[str] = None
    style_preferences: list[str] = []
    budget_range: Optional[str] = None
    onboarding_completed: bool = False
    credits: dict[str, Any]


class MePatch(BaseModel):
    first_name: Optional[str] = None
    gender: Optional[str] = None
    style_preferences: Optional[list[str]] = None
    budget_range: Optional[str] = None


def _me(user: User) -> MeResp:
    return MeResp(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        gender=user.gender,
        style_preferences=user.style_preferences or [],
        budget_range=user.budget_range,
        onboarding_completed=bool(user.onboarding_completed),
        credits=get_credit_balance(user),
    )


# ---------------- Routes ----------------

@router.get("/me", response_model=MeResp)
def me(user: User = Depends(get_current_user)):
    return _me(user)


@router.patch("/me", response_model=MeResp)
def patch_me(patch: MePatch, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    if patch.gender is not None and patch.gender not in GENDERS:
        raise HTTPException(status_code=400, detail=f"gender must be one of {', '.join(GENDERS)}")
    if patch.budget_range is not None and patch.budget_range not in BUDGETS:
        raise HTTPException(status_code=400, detail=f"budget_range must be one of {', '.join(BUDGETS)}")

    if patch.first_name is not None:
        user.first_name = patch.first_name.strip() or None
    if patch.gender is not None:
        user.gender = patch.gender
    if patch.style_preferences is not None:
        user.style_preferences = [s.strip().lower() for s in patch.style_preferences if s.strip()]
    if patch.budget_range is not None:
        user.budget_range = patch.budget_range

    user.updated_at = datetime.utcnow()
    db.commit()
    return _me(user)
