"""nima core schema

Revision ID: a1c3e5f70001
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa

revision = "a1c3e5f70001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("external_id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("first_name", sa.String(), nullable=True),
        sa.Column("gender", sa.String(), nullable=True),
        sa.Column("style_preferences", sa.JSON(), nullable=True),
        sa.Column("budget_range", sa.String(), nullable=True),
        sa.Column("phone_number", sa.String(), nullable=True),
        sa.Column("credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("free_credits_used_this_week", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("weekly_credits_reset_at", sa.DateTime(), nullable=True),
        sa.Column("onboarding_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("external_id", name="uq_users_external_id"),
    )
    op.create_index("ix_users_email", "users", ["email"])
    op.create_index("ix_users_is_active", "users", ["is_active"])

    op.create_table(
        "user_images",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("storage_key", sa.String(), nullable=False),
        sa.Column("content_type", sa.String(), nullable=True),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_user_images_user_primary", "user_images", ["user_id", "is_primary"])

    op.create_table(
        "items",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("public_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("brand", sa.String(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("subcategory", sa.String(), nullable=True),
        sa.Column("gender", sa.String(), nullable=False, server_default="unisex"),
        sa.Column("price", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(), nullable=False, server_default="KES"),
        sa.Column("colors", sa.JSON(), nullable=True),
        sa.Column("sizes", sa.JSON(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("occasion", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("public_id", name="uq_items_public_id"),
    )
    op.create_index("ix_items_category_active", "items", ["category", "is_active"])
    op.create_index("ix_items_gender_category", "items", ["gender", "category", "is_active"])

    op.create_table(
        "item_images",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("item_id", sa.String(), sa.ForeignKey("items.id"), nullable=False),
        sa.Column("storage_key", sa.String(), nullable=True),
        sa.Column("external_url", sa.String(), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_item_images_item_id", "item_images", ["item_id"])
    op.create_index("ix_item_images_item_primary", "item_images", ["item_id", "is_primary"])

    op.create_table(
        "looks",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("public_id", sa.String(), nullable=False),
        sa.Column("item_ids", sa.JSON(), nullable=False),
        sa.Column("total_price", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(), nullable=False, server_default="KES"),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("style_tags", sa.JSON(), nullable=True),
        sa.Column("occasion", sa.String(), nullable=True),
        sa.Column("nima_comment", sa.Text(), nullable=True),
        sa.Column("target_gender", sa.String(), nullable=True),
        sa.Column("target_budget_range", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("generation_status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=False, server_default="user"),
        sa.Column("creator_user_id", sa.String(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("creation_source", sa.String(), nullable=True),
        sa.Column("original_look_id", sa.String(), sa.ForeignKey("looks.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("public_id", name="uq_looks_public_id"),
    )
    op.create_index("ix_looks_creator_created", "looks", ["creator_user_id", "created_at"])
    op.create_index("ix_looks_generation_status", "looks", ["generation_status"])

    op.create_table(
        "look_images",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("look_id", sa.String(), sa.ForeignKey("looks.id"), nullable=False),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("user_image_id", sa.String(), sa.ForeignKey("user_images.id"), nullable=True),
        sa.Column("storage_key", sa.String(), nullable=False),
        sa.Column("generation_provider", sa.String(), nullable=True),
        sa.Column("is_current", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_look_images_look_current", "look_images", ["look_id", "is_current"])
    op.create_index("ix_look_images_user_id", "look_images", ["user_id"])

    op.create_table(
        "item_try_ons",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("item_id", sa.String(), sa.ForeignKey("items.id"), nullable=False),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("user_image_id", sa.String(), sa.ForeignKey("user_images.id"), nullable=True),
        sa.Column("storage_key", sa.String(), nullable=True),
        sa.Column("selected_size", sa.String(), nullable=True),
        sa.Column("selected_color", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("generation_provider", sa.String(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_item_try_ons_item_user", "item_try_ons", ["item_id", "user_id"])
    op.create_index("ix_item_try_ons_user_created", "item_try_ons", ["user_id", "created_at"])

    op.create_table(
        "credit_purchases",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("package_id", sa.String(), nullable=True),
        sa.Column("credit_amount", sa.Integer(), nullable=False),
        sa.Column("price_kes", sa.Integer(), nullable=False),
        sa.Column("phone_number", sa.String(), nullable=False),
        sa.Column("merchant_transaction_id", sa.String(), nullable=False),
        sa.Column("provider_transaction_id", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("merchant_transaction_id", name="uq_credit_purchases_merchant_tx"),
    )
    op.create_index("ix_credit_purchases_user_created", "credit_purchases", ["user_id", "created_at"])

    op.create_table(
        "push_tokens",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("token", sa.String(), nullable=False),
        sa.Column("platform", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("token", name="uq_push_tokens_token"),
    )
    op.create_index("ix_push_tokens_user_id", "push_tokens", ["user_id"])

    op.create_table(
        "state_history",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_id", sa.String(), nullable=False),
        sa.Column("from_state", sa.String(), nullable=True),
        sa.Column("to_state", sa.String(), nullable=True),
        sa.Column("event", sa.String(), nullable=False),
        sa.Column("actor", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_state_history_entity", "state_history", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_index("ix_state_history_entity", table_name="state_history")
    op.drop_table("state_history")

    op.drop_index("ix_push_tokens_user_id", table_name="push_tokens")
    op.drop_table("push_tokens")

    op.drop_index("ix_credit_purchases_user_created", table_name="credit_purchases")
    op.drop_table("credit_purchases")

    op.drop_index("ix_item_try_ons_user_created", table_name="item_try_ons")
    op.drop_index("ix_item_try_ons_item_user", table_name="item_try_ons")
    op.drop_table("item_try_ons")

    op.drop_index("ix_look_images_user_id", table_name="look_images")
    op.drop_index("ix_look_images_look_current", table_name="look_images")
    op.drop_table("look_images")

    op.drop_index("ix_looks_generation_status", table_name="looks")
    op.drop_index("ix_looks_creator_created", table_name="looks")
    op.drop_table("looks")

    op.drop_index("ix_item_images_item_primary", table_name="item_images")
    op.drop_index("ix_item_images_item_id", table_name="item_images")
    op.drop_table("item_images")

    op.drop_index("ix_items_gender_category", table_name="items")
    op.drop_index("ix_items_category_active", table_name="items")
    op.drop_table("items")

    op.drop_index("ix_user_images_user_primary", table_name="user_images")
    op.drop_table("user_images")

    op.drop_index("ix_users_is_active", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
