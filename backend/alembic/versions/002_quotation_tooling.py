"""quotation_tooling

Revision ID: 002_quotation_tooling
Revises: 001_quotation_schema
Create Date: 2026-10-19

Adds per-tier tooling to quotations:
- quotation_tools (one row per tool per tier quantity)
- quotation_tool_library (default tool prices)
- quotation_volume_pricing.tooling_cost

Idempotent like 001: existing tables and columns are left alone.
"""
import logging
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect

revision = '002_quotation_tooling'
down_revision = '001_quotation_schema'
branch_labels = None
depends_on = None

logger = logging.getLogger("alembic.002")


def _table_exists(conn, table_name: str) -> bool:
    return inspect(conn).has_table(table_name)


def _column_exists(conn, table_name: str, column_name: str) -> bool:
    return any(c["name"] == column_name for c in inspect(conn).get_columns(table_name))


def upgrade() -> None:
    conn = op.get_bind()

    if not _table_exists(conn, 'quotation_tools'):
        op.create_table(
            'quotation_tools',
            sa.Column('id', sa.String(36), primary_key=True),
            sa.Column('quotation_id', sa.String(36), sa.ForeignKey('system_quotations.id'),
                      nullable=False, index=True),
            sa.Column('line_number', sa.Integer, server_default='1'),
            sa.Column('tool_name', sa.String(255), nullable=False),
            sa.Column('price', sa.Numeric(14, 4), server_default='0'),
            sa.Column('markup', sa.Numeric(6, 2), server_default='0'),
            sa.Column('volume', sa.Integer, nullable=True),
            sa.Column('quantity', sa.Numeric(12, 4), server_default='0'),
            sa.Column('total', sa.Numeric(14, 2), server_default='0'),
        )
        logger.info("Created table: quotation_tools")

    if not _table_exists(conn, 'quotation_tool_library'):
        op.create_table(
            'quotation_tool_library',
            sa.Column('id', sa.String(36), primary_key=True),
            sa.Column('tool_name', sa.String(255), nullable=False, unique=True),
            sa.Column('default_price', sa.Numeric(14, 4), server_default='0'),
            sa.Column('is_active', sa.Boolean, server_default=sa.true()),
        )
        logger.info("Created table: quotation_tool_library")

    if not _column_exists(conn, 'quotation_volume_pricing', 'tooling_cost'):
        op.add_column(
            'quotation_volume_pricing',
            sa.Column('tooling_cost', sa.Numeric(14, 2), server_default='0'),
        )
        logger.info("Added column: quotation_volume_pricing.tooling_cost")


def downgrade() -> None:
    conn = op.get_bind()
    if _column_exists(conn, 'quotation_volume_pricing', 'tooling_cost'):
        op.drop_column('quotation_volume_pricing', 'tooling_cost')
    for name in ('quotation_tool_library', 'quotation_tools'):
        if _table_exists(conn, name):
            op.drop_table(name)
