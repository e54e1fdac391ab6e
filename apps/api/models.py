from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import (
    Column,
    String,
    Boolean,
    Integer,
    DateTime,
    ForeignKey,
    JSON,
    Text,
    Index,
    UniqueConstraint,
)


class Base(DeclarativeBase):
    pass


# ---------------- Users ----------------

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)

    # subject из внешнего провайдера идентичности (JWT "sub")
    external_id = Column(String, nullable=False)

    email = Column(String, nullable=True)
    first_name = Column(String, nullable=True)

    gender = Column(String, nullable=True)  # male/female/prefer-not-to-say
    style_preferences = Column(JSON, default=list)
    budget_range = Column(String, nullable=True)  # low/mid/premium
    phone_number = Column(String, nullable=True)

    # купленные кредиты; бесплатные считаются по неделе
    credits = Column(Integer, default=0, nullable=False)
    free_credits_used_this_week = Column(Integer, default=0, nullable=False)
    weekly_credits_reset_at = Column(DateTime, nullable=True)

    onboarding_completed = Column(Boolean, default=False, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("external_id", name="uq_users_external_id"),
        Index("ix_users_email", "email"),
        Index("ix_users_is_active", "is_active"),
    )


class UserImage(Base):
    __tablename__ = "user_images"

    id = Column(String, primary_key=True)

    user_id = Column(String, ForeignKey("users.id"), nullable=False)

    storage_key = Column(String, nullable=False)
    content_type = Column(String, nullable=True)
    is_primary = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_user_images_user_primary", "user_id", "is_primary"),
    )


# ---------------- Catalog ----------------
# Каталог магазина: только чтение со стороны подбора образов

class Item(Base):
    __tablename__ = "items"

    id = Column(String, primary_key=True)
    public_id = Column(String, nullable=False)

    name = Column(String, nullable=False)
    brand = Column(String, nullable=True)
    description = Column(Text, nullable=True)

    # top/bottom/dress/outfit/outerwear/shoes/accessory/bag/jewelry/swimwear
    category = Column(String, nullable=False)
    subcategory = Column(String, nullable=True)
    gender = Column(String, nullable=False, default="unisex")  # male/female/unisex

    price = Column(Integer, nullable=False, default=0)
    currency = Column(String, nullable=False, default="KES")

    colors = Column(JSON, default=list)
    sizes = Column(JSON, default=list)
    tags = Column(JSON, default=list)
    occasion = Column(JSON, default=list)

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("public_id", name="uq_items_public_id"),
        Index("ix_items_category_active", "category", "is_active"),
        Index("ix_items_gender_category", "gender", "category", "is_active"),
    )


class ItemImage(Base):
    __tablename__ = "item_images"

    id = Column(String, primary_key=True)

    item_id = Column(String, ForeignKey("items.id"), nullable=False)

    # либо объект в MinIO, либо внешний URL поставщика
    storage_key = Column(String, nullable=True)
    external_url = Column(String, nullable=True)

    sort_order = Column(Integer, default=0, nullable=False)
    is_primary = Column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_item_images_item_id", "item_id"),
        Index("ix_item_images_item_primary", "item_id", "is_primary"),
    )


# ---------------- Looks (Outfits) ----------------

class Look(Base):
    __tablename__ = "looks"

    id = Column(String, primary_key=True)
    public_id = Column(String, nullable=False)

    # порядок важен; после создания не меняется
    item_ids = Column(JSON, nullable=False, default=list)

    total_price = Column(Integer, nullable=False, default=0)
    currency = Column(String, nullable=False, default="KES")

    name = Column(String, nullable=True)
    style_tags = Column(JSON, default=list)
    occasion = Column(String, nullable=True)
    nima_comment = Column(Text, nullable=True)

    target_gender = Column(String, nullable=True)
    target_budget_range = Column(String, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    generation_status = Column(String, nullable=False, default="pending")
    error_message = Column(Text, nullable=True)

    created_by = Column(String, nullable=False, default="user")  # system/user
    creator_user_id = Column(String, ForeignKey("users.id"), nullable=True)
    # chat/apparel/recreated/onboarding
    creation_source = Column(String, nullable=True)
    original_look_id = Column(String, ForeignKey("looks.id"), nullable=True)

    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("public_id", name="uq_looks_public_id"),
        Index("ix_looks_creator_created", "creator_user_id", "created_at"),
        Index("ix_looks_generation_status", "generation_status"),
    )


class LookImage(Base):
    __tablename__ = "look_images"

    id = Column(String, primary_key=True)

    look_id = Column(String, ForeignKey("looks.id"), nullable=False)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    user_image_id = Column(String, ForeignKey("user_images.id"), nullable=True)

    storage_key = Column(String, nullable=False)
    generation_provider = Column(String, nullable=True)

    # повторная генерация создаёт новую запись, старая становится не текущей
    is_current = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_look_images_look_current", "look_id", "is_current"),
        Index("ix_look_images_user_id", "user_id"),
    )


# ---------------- Item try-ons ----------------

class ItemTryOn(Base):
    __tablename__ = "item_try_ons"

    id = Column(String, primary_key=True)

    item_id = Column(String, ForeignKey("items.id"), nullable=False)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    user_image_id = Column(String, ForeignKey("user_images.id"), nullable=True)

    storage_key = Column(String, nullable=True)
    selected_size = Column(String, nullable=True)
    selected_color = Column(String, nullable=True)

    status = Column(String, nullable=False, default="pending")
    generation_provider = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_item_try_ons_item_user", "item_id", "user_id"),
        Index("ix_item_try_ons_user_created", "user_id", "created_at"),
    )


# ---------------- Credits ----------------

class CreditPurchase(Base):
    __tablename__ = "credit_purchases"

    id = Column(String, primary_key=True)

    user_id = Column(String, ForeignKey("users.id"), nullable=False)

    package_id = Column(String, nullable=True)
    credit_amount = Column(Integer, nullable=False)
    price_kes = Column(Integer, nullable=False)
    phone_number = Column(String, nullable=False)

    merchant_transaction_id = Column(String, nullable=False)
    provider_transaction_id = Column(String, nullable=True)

    status = Column(String, nullable=False)  # pending/processing/completed/failed/cancelled
    failure_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("merchant_transaction_id", name="uq_credit_purchases_merchant_tx"),
        Index("ix_credit_purchases_user_created", "user_id", "created_at"),
    )


# ---------------- Push tokens ----------------

class PushToken(Base):
    __tablename__ = "push_tokens"

    id = Column(String, primary_key=True)

    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    token = Column(String, nullable=False)
    platform = Column(String, nullable=True)  # ios/android

    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("token", name="uq_push_tokens_token"),
        Index("ix_push_tokens_user_id", "user_id"),
    )


# ---------------- State history ----------------
# Аудит переходов статусов генерации (look / item_try_on)

class StateHistory(Base):
    __tablename__ = "state_history"

    id = Column(String, primary_key=True)

    entity_type = Column(String, nullable=False)
    entity_id = Column(String, nullable=False)

    from_state = Column(String, nullable=True)
    to_state = Column(String, nullable=True)
    event = Column(String, nullable=False)
    actor = Column(String, nullable=True)

    created_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_state_history_entity", "entity_type", "entity_id"),
    )
