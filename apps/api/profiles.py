import uuid
from datetime import datetime

from sqlalchemy.orm import Session

from models import User, UserImage


def matching_gender(user: User) -> str | None:
    # prefer-not-to-say / пусто: без фильтра по полу
    return user.gender if user.gender in ("male", "female") else None


def target_gender(user: User) -> str:
    return matching_gender(user) or "unisex"


def primary_user_image(db: Session, user_id: str) -> UserImage | None:
    # .first(): дубли primary не должны ронять запрос
    return (
        db.query(UserImage)
        .filter(UserImage.user_id == user_id, UserImage.is_primary.is_(True))
        .order_by(UserImage.created_at.desc())
        .first()
    )


def add_user_image(db: Session, user: User, storage_key: str, content_type: str | None,
                   make_primary: bool = True) -> UserImage:
    now = datetime.utcnow()
    if make_primary:
        (
            db.query(UserImage)
            .filter(UserImage.user_id == user.id, UserImage.is_primary.is_(True))
            .update({UserImage.is_primary: False}, synchronize_session=False)
        )
    img = UserImage(
        id=str(uuid.uuid4()),
        user_id=user.id,
        storage_key=storage_key,
        content_type=content_type,
        is_primary=make_primary,
        created_at=now,
    )
    db.add(img)
    return img
