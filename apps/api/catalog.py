from typing import Sequence

from sqlalchemy.orm import Session

from models import Item, ItemImage
from storage import get_url

DEFAULT_CANDIDATE_LIMIT = 100


class SqlCatalog:
    """
    Read-only доступ к каталогу для подбора образов.

    by_category(): при известном поле вещи этого пола + унисекс (каждый запрос с лимитом),
    иначе все активные вещи категории.
    """

    def __init__(self, db: Session, limit: int = DEFAULT_CANDIDATE_LIMIT):
        self.db = db
        self.limit = limit

    def by_category(self, category: str, gender: str | None = None) -> list[Item]:
        base = self.db.query(Item).filter(Item.category == category, Item.is_active.is_(True))

        if gender in ("male", "female"):
            own = base.filter(Item.gender == gender).limit(self.limit).all()
            unisex = base.filter(Item.gender == "unisex").limit(self.limit).all()
            return own + unisex

        return base.limit(self.limit).all()


def get_items_in_order(db: Session, item_ids: Sequence[str]) -> list[Item]:
    if not item_ids:
        return []
    rows = db.query(Item).filter(Item.id.in_(list(item_ids))).all()
    by_id = {i.id: i for i in rows}
    return [by_id[i] for i in item_ids if i in by_id]


def primary_image(db: Session, item_id: str) -> ItemImage | None:
    img = (
        db.query(ItemImage)
        .filter(ItemImage.item_id == item_id, ItemImage.is_primary.is_(True))
        .first()
    )
    if img:
        return img
    # нет помеченной основной: берём первую по порядку
    return (
        db.query(ItemImage)
        .filter(ItemImage.item_id == item_id)
        .order_by(ItemImage.sort_order.asc())
        .first()
    )


def image_url(img: ItemImage | None) -> str | None:
    if img is None:
        return None
    if img.external_url:
        return img.external_url
    if img.storage_key:
        return get_url(img.storage_key)
    return None


def item_summary(db: Session, item: Item) -> dict:
    return {
        "id": item.id,
        "public_id": item.public_id,
        "name": item.name,
        "brand": item.brand,
        "category": item.category,
        "price": item.price,
        "currency": item.currency,
        "colors": item.colors or [],
        "image_url": image_url(primary_image(db, item.id)),
    }
