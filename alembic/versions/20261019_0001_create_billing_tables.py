"""create billing and stock tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _index_exists(inspector: sa.Inspector, table_name: str, index_name: str) -> bool:
    return index_name in {index["name"] for index in inspector.get_indexes(table_name)}


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


INDEXES: dict[str, list[tuple[str, list[str]]]] = {
    "products": [
        ("ix_products_business_id", ["business_id"]),
        ("ix_products_user_id", ["user_id"]),
        ("ix_products_business_created_at", ["business_id", "created_at"]),
    ],
    "bills": [
        ("ix_bills_user_id", ["user_id"]),
        ("ix_bills_business_id", ["business_id"]),
        ("ix_bills_party_id", ["party_id"]),
        ("ix_bills_user_business_date", ["user_id", "business_id", "bill_date"]),
        ("ix_bills_business_type_date", ["business_id", "type", "bill_date"]),
    ],
    "bill_items": [
        ("ix_bill_items_bill_id", ["bill_id"]),
        ("ix_bill_items_product_id", ["product_id"]),
    ],
    "stock_movements": [
        ("ix_stock_movements_business_id", ["business_id"]),
        ("ix_stock_movements_product_id", ["product_id"]),
        ("ix_stock_movements_product_date", ["product_id", "movement_date"]),
    ],
    "audit_logs": [
        ("ix_audit_logs_business_id", ["business_id"]),
        ("ix_audit_logs_actor_user_id", ["actor_user_id"]),
        ("ix_audit_logs_target_id", ["target_id"]),
        ("ix_audit_logs_business_created_at", ["business_id", "created_at"]),
        ("ix_audit_logs_business_action_created_at", ["business_id", "action", "created_at"]),
    ],
}


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not _table_exists(inspector, "products"):
        op.create_table(
            "products",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("business_id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=True),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("image", sa.String(length=500), nullable=True),
            sa.Column("primary_unit", sa.String(length=30), nullable=False, server_default="pcs"),
            sa.Column("secondary_unit", sa.String(length=30), nullable=True),
            sa.Column("sale_price", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("purchase_price", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("tax_included", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("opening_stock", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("current_stock", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("low_stock_alert", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("hsn", sa.String(length=20), nullable=True),
            sa.Column("gst", sa.String(length=20), nullable=True),
            sa.Column("note", sa.String(length=255), nullable=True),
            *_timestamps(),
            sa.CheckConstraint("opening_stock >= 0", name="ck_products_opening_stock_non_negative"),
            sa.CheckConstraint("current_stock >= 0", name="ck_products_current_stock_non_negative"),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "bills"):
        op.create_table(
            "bills",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("business_id", sa.String(length=36), nullable=False),
            sa.Column("type", sa.String(length=20), nullable=False),
            sa.Column("bill_number", sa.Integer(), nullable=False),
            sa.Column("bill_date", sa.DateTime(timezone=True), nullable=False),
            sa.Column("party_id", sa.String(length=36), nullable=False),
            sa.Column("party_name", sa.String(length=255), nullable=False),
            sa.Column("party_phone", sa.String(length=40), nullable=False),
            sa.Column("additional_charges", sa.JSON(), nullable=False),
            sa.Column("discounts", sa.JSON(), nullable=False),
            sa.Column("optional_fields", sa.JSON(), nullable=True),
            sa.Column("note", sa.Text(), nullable=True),
            sa.Column("photos", sa.JSON(), nullable=False),
            sa.Column("method", sa.String(length=20), nullable=False),
            sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("balance_due", sa.Numeric(12, 2), nullable=True),
            sa.Column("total_amount", sa.Numeric(12, 2), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("business_id", "type", "bill_number", name="uq_bills_business_type_number"),
        )

    if not _table_exists(inspector, "bill_items"):
        op.create_table(
            "bill_items",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("bill_id", sa.String(length=36), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=False),
            sa.Column("product_name", sa.String(length=255), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("price", sa.Numeric(12, 2), nullable=False),
            sa.ForeignKeyConstraint(["bill_id"], ["bills.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "bill_counters"):
        op.create_table(
            "bill_counters",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("business_id", sa.String(length=36), nullable=False),
            sa.Column("type", sa.String(length=20), nullable=False),
            sa.Column("seq", sa.Integer(), nullable=False, server_default="0"),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("business_id", "type", name="uq_bill_counters_business_type"),
        )

    if not _table_exists(inspector, "stock_movements"):
        op.create_table(
            "stock_movements",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("business_id", sa.String(length=36), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=False),
            sa.Column("type", sa.String(length=3), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("purchase_price", sa.Numeric(12, 2), nullable=False),
            sa.Column("movement_date", sa.DateTime(timezone=True), nullable=False),
            sa.Column("note", sa.String(length=255), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "audit_logs"):
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("business_id", sa.String(length=36), nullable=False),
            sa.Column("actor_user_id", sa.String(length=36), nullable=True),
            sa.Column("action", sa.String(length=100), nullable=False),
            sa.Column("target_type", sa.String(length=100), nullable=False),
            sa.Column("target_id", sa.String(length=36), nullable=True),
            sa.Column("metadata_json", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
        )

    inspector = sa.inspect(bind)
    for table_name, indexes in INDEXES.items():
        for index_name, columns in indexes:
            if not _index_exists(inspector, table_name, index_name):
                op.create_index(index_name, table_name, columns, unique=False)


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    for table_name in ("audit_logs", "stock_movements", "bill_counters", "bill_items", "bills", "products"):
        if not _table_exists(inspector, table_name):
            continue
        for index_name, _columns in reversed(INDEXES.get(table_name, [])):
            if _index_exists(inspector, table_name, index_name):
                op.drop_index(index_name, table_name=table_name)
        op.drop_table(table_name)
