"""Create company, platform, product, freight and run log tables."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_create_freight_tables"
down_revision = None
branch_labels = None
depends_on = None


def _jsonb() -> sa.types.TypeEngine:
    return sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade() -> None:
    op.create_table(
        "companies",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String()),
        sa.Column("site", sa.String()),
    )
    op.create_table(
        "platforms",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("type", sa.String()),
        sa.Column("slug", sa.String(), unique=True),
        sa.Column("name", sa.String()),
        sa.Column("parameters", _jsonb()),
    )
    op.create_table(
        "company_platforms",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("config", _jsonb()),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id")),
        sa.Column("platform_id", sa.Integer(), sa.ForeignKey("platforms.id")),
        sa.UniqueConstraint("company_id", "platform_id", name="uq_company_platforms_company_id_platform_id"),
    )
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("external_id", sa.String()),
        sa.Column("sku", sa.String(), nullable=False),
        sa.Column("name", sa.String()),
        sa.Column("store_reference", sa.String()),
        sa.Column("external_reference", sa.String()),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.UniqueConstraint("company_id", "sku", name="uq_products_company_id_sku"),
    )
    op.create_index("ix_products_company_store_reference", "products", ["company_id", "store_reference"])

    op.create_table(
        "freight_quotes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("quote_id", sa.String(), nullable=False),
        sa.Column("partner_platform", sa.String()),
        sa.Column("external_quote_id", sa.String()),
        sa.Column("quoted_at", sa.DateTime(timezone=True)),
        sa.Column("date", sa.String(length=10)),
        sa.Column("time", sa.String(length=8)),
        sa.Column("destination_zip", sa.String()),
        sa.Column("destination_state", sa.String()),
        sa.Column("destination_state_name", sa.String()),
        sa.Column("destination_state_region", sa.String()),
        sa.Column("destination_country_region", sa.String()),
        sa.Column("channel", sa.String()),
        sa.Column("store_name", sa.String()),
        sa.Column("invoice_value", sa.Numeric(14, 2)),
        sa.Column("total_weight", sa.Numeric(14, 3)),
        sa.Column("total_volume", sa.Numeric(14, 6)),
        sa.Column("total_packages", sa.Integer()),
        sa.Column("best_deadline", sa.Integer()),
        sa.Column("best_freight_cost", sa.Numeric(14, 2)),
        sa.Column("store_limit", sa.Integer()),
        sa.Column("channel_limit", sa.Integer()),
        sa.Column("timings", _jsonb()),
        sa.Column("channel_config", _jsonb()),
        sa.Column("input", _jsonb()),
        sa.Column("category_restrictions", _jsonb()),
        sa.Column("delivery_options", _jsonb()),
        sa.Column("raw", _jsonb()),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("platform_id", sa.Integer(), sa.ForeignKey("platforms.id")),
        sa.UniqueConstraint(
            "company_id", "platform_id", "quote_id", name="uq_freight_quotes_company_id_platform_id_quote_id"
        ),
    )
    op.create_index("idx_freight_quotes_company_date", "freight_quotes", ["company_id", "date"])

    op.create_table(
        "freight_quote_options",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column(
            "freight_quote_id",
            sa.Integer(),
            sa.ForeignKey("freight_quotes.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("line_index", sa.Integer(), nullable=False),
        sa.Column("shipping_value", sa.Numeric(14, 2)),
        sa.Column("shipping_cost", sa.Numeric(14, 2)),
        sa.Column("carrier", sa.String()),
        sa.Column("warehouse_uf", sa.String()),
        sa.Column("warehouse_city", sa.String()),
        sa.Column("warehouse_name", sa.String()),
        sa.Column("shipping_name", sa.String()),
        sa.Column("carrier_deadline", sa.Integer()),
        sa.Column("holiday_deadline", sa.Integer()),
        sa.Column("warehouse_deadline", sa.Integer()),
        sa.Column("deadline", sa.Integer()),
        sa.Column("has_stock", sa.Boolean()),
        sa.Column("raw", _jsonb()),
        sa.UniqueConstraint(
            "freight_quote_id", "line_index", name="uq_freight_quote_options_freight_quote_id_line_index"
        ),
    )

    op.create_table(
        "freight_quotes_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column(
            "quote_id",
            sa.Integer(),
            sa.ForeignKey("freight_quotes.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id")),
        sa.Column("line_index", sa.Integer(), nullable=False),
        sa.Column("partner_sku", sa.String()),
        sa.Column("partner_sku_id", sa.String()),
        sa.Column("quantity", sa.Integer()),
        sa.Column("price", sa.Numeric(14, 2)),
        sa.Column("volumes", sa.Integer()),
        sa.Column("stock", sa.Integer()),
        sa.Column("stock_product", sa.Integer()),
        sa.Column("category", sa.String()),
        sa.Column("aggregator", sa.String()),
        sa.Column("partner_original_sku", sa.String()),
        sa.Column("channel_price_from", sa.Numeric(14, 2)),
        sa.Column("registration_price", sa.Numeric(14, 2)),
        sa.Column("channel_price_to", sa.Numeric(14, 2)),
        sa.Column("raw", _jsonb()),
        sa.UniqueConstraint("quote_id", "line_index", name="uq_freight_quotes_items_quote_id_line_index"),
    )

    op.create_table(
        "freight_orders",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("external_id", sa.String(), nullable=False),
        sa.Column("order_date", sa.DateTime(timezone=True)),
        sa.Column("date", sa.String(length=10)),
        sa.Column("time", sa.String(length=8)),
        sa.Column("order_code", sa.String()),
        sa.Column("store_name", sa.String()),
        sa.Column("quote_id", sa.String()),
        sa.Column("channel", sa.String()),
        sa.Column("freight_amount", sa.Numeric(14, 2)),
        sa.Column("freight_cost", sa.Numeric(14, 2)),
        sa.Column("delta_quote", sa.Numeric(14, 2)),
        sa.Column("address", sa.String()),
        sa.Column("address_zip", sa.String()),
        sa.Column("address_state", sa.String()),
        sa.Column("address_city", sa.String()),
        sa.Column("address_neighborhood", sa.String()),
        sa.Column("address_number", sa.String()),
        sa.Column("address_complement", sa.String()),
        sa.Column("estimated_delivery_date", sa.DateTime(timezone=True)),
        sa.Column("delivery_date", sa.DateTime(timezone=True)),
        sa.Column("delta_quote_delivery_date", sa.Numeric(14, 2)),
        sa.Column("raw", _jsonb()),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("platform_id", sa.Integer(), sa.ForeignKey("platforms.id")),
        sa.UniqueConstraint(
            "company_id", "platform_id", "external_id", name="uq_freight_orders_company_id_platform_id_external_id"
        ),
    )

    op.create_table(
        "logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("date", sa.Date()),
        sa.Column("status", sa.String()),
        sa.Column("command", sa.String(), nullable=False),
        sa.Column("log", _jsonb(), nullable=False),
        sa.Column("errors", _jsonb()),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("platform_id", sa.Integer(), sa.ForeignKey("platforms.id")),
    )
    op.create_index("ix_logs_company_command_recent", "logs", ["company_id", "command", "processed_at"])


def downgrade() -> None:
    op.drop_index("ix_logs_company_command_recent", table_name="logs")
    op.drop_table("logs")
    op.drop_table("freight_orders")
    op.drop_table("freight_quotes_items")
    op.drop_table("freight_quote_options")
    op.drop_index("idx_freight_quotes_company_date", table_name="freight_quotes")
    op.drop_table("freight_quotes")
    op.drop_index("ix_products_company_store_reference", table_name="products")
    op.drop_table("products")
    op.drop_table("company_platforms")
    op.drop_table("platforms")
    op.drop_table("companies")
