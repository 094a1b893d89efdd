"""quotation_schema

Revision ID: 001_quotation_schema
Revises:
Create Date: 2026-10-19

Creates the quotation and quick-quote tables:
- system_quotations + materials / subcons / routings / volume_pricing children
- quotation_resources, quotation_settings
- quote_materials, material_price_records, post_process_types, quick_quote_settings

Each table is created only when missing, so the migration is idempotent
after Base.metadata.create_all() has already run.
"""
import logging
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect

revision = '001_quotation_schema'
down_revision = None
branch_labels = None
depends_on = None

logger = logging.getLogger("alembic.001")


def _table_exists(conn, table_name: str) -> bool:
    return inspect(conn).has_table(table_name)


def _create(conn, name: str, *columns) -> None:
    if _table_exists(conn, name):
        logger.info(f"Table {name} already exists, skipping create")
        return
    op.create_table(name, *columns)
    logger.info(f"Created table: {name}")


def _quotation_fk():
    return sa.Column('quotation_id', sa.String(36), sa.ForeignKey('system_quotations.id'),
                     nullable=False, index=True)


def upgrade() -> None:
    conn = op.get_bind()

    # ── quotations ────────────────────────────────────────────────────────────
    _create(
        conn, 'system_quotations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('quote_number', sa.String(50)),
        sa.Column('customer', sa.String(255)),
        sa.Column('customer_code', sa.String(50)),
        sa.Column('part_number', sa.String(100)),
        sa.Column('revision', sa.String(20)),
        sa.Column('description', sa.Text),
        sa.Column('currency', sa.String(3), server_default='EUR'),
        sa.Column('status', sa.String(30), server_default='draft'),
        sa.Column('material_markup', sa.Numeric(6, 2), server_default='20'),
        sa.Column('subcon_markup', sa.Numeric(6, 2), server_default='20'),
        sa.Column('version', sa.Integer, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    _create(
        conn, 'quotation_materials',
        sa.Column('id', sa.String(36), primary_key=True),
        _quotation_fk(),
        sa.Column('line_number', sa.Integer, server_default='1'),
        sa.Column('vendor_no', sa.String(50)),
        sa.Column('vendor_name', sa.String(255)),
        sa.Column('material_description', sa.Text),
        sa.Column('category', sa.String(50)),
        sa.Column('std_cost_est', sa.Numeric(14, 4), server_default='0'),
        sa.Column('qty_per_unit', sa.Numeric(14, 4), server_default='1'),
        sa.Column('total_material', sa.Numeric(14, 4), server_default='0'),
    )
    _create(
        conn, 'quotation_subcons',
        sa.Column('id', sa.String(36), primary_key=True),
        _quotation_fk(),
        sa.Column('line_number', sa.Integer, server_default='1'),
        sa.Column('subcon_id', sa.Integer, server_default='1'),
        sa.Column('vendor_no', sa.String(50)),
        sa.Column('vendor_name', sa.String(255)),
        sa.Column('part_number', sa.String(120)),
        sa.Column('process_description', sa.Text),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('std_cost_est', sa.Numeric(14, 4), server_default='0'),
        sa.Column('certification_required', sa.Boolean, server_default=sa.false()),
        sa.Column('total_subcon', sa.Numeric(14, 4), server_default='0'),
    )
    _create(
        conn, 'quotation_routings',
        sa.Column('id', sa.String(36), primary_key=True),
        _quotation_fk(),
        sa.Column('op_no', sa.Integer, nullable=False),
        sa.Column('resource_no', sa.String(50)),
        sa.Column('operation_details', sa.Text),
        sa.Column('setup_time', sa.Numeric(12, 4), server_default='0'),
        sa.Column('run_time', sa.Numeric(12, 4), server_default='0'),
        sa.Column('override_cost', sa.Numeric(14, 4), nullable=True),
    )
    _create(
        conn, 'quotation_volume_pricing',
        sa.Column('id', sa.String(36), primary_key=True),
        _quotation_fk(),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('margin', sa.Numeric(6, 2), nullable=False),
        sa.Column('hours', sa.Numeric(14, 3), server_default='0'),
        sa.Column('cost_per_hour', sa.Numeric(10, 2), server_default='0'),
        sa.Column('labour_cost', sa.Numeric(14, 2), server_default='0'),
        sa.Column('material_cost', sa.Numeric(14, 2), server_default='0'),
        sa.Column('subcon_cost', sa.Numeric(14, 2), server_default='0'),
        sa.Column('total_cost', sa.Numeric(14, 2), server_default='0'),
        sa.Column('cost_per_unit', sa.Numeric(14, 2), server_default='0'),
        sa.Column('unit_price_quoted', sa.Numeric(14, 2), server_default='0'),
        sa.Column('total_price', sa.Numeric(16, 2), server_default='0'),
        sa.Column('used_fallback_rate', sa.Boolean, server_default=sa.false()),
        sa.UniqueConstraint('quotation_id', 'quantity', name='uq_volume_pricing_quantity'),
    )

    # ── resources & settings ──────────────────────────────────────────────────
    _create(
        conn, 'quotation_resources',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('resource_no', sa.String(50), nullable=False, unique=True),
        sa.Column('description', sa.String(255)),
        sa.Column('cost_per_minute', sa.Numeric(10, 4), server_default='0'),
        sa.Column('is_subcon', sa.Boolean, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean, server_default=sa.true()),
    )
    _create(
        conn, 'quotation_settings',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('setting_key', sa.String(100), nullable=False, unique=True),
        sa.Column('setting_value', sa.String(255), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # ── quick quote ───────────────────────────────────────────────────────────
    _create(
        conn, 'quote_materials',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('grade', sa.String(100)),
        sa.Column('form', sa.String(100)),
        sa.Column('density_kg_m3', sa.Numeric(10, 2)),
        sa.Column('default_yield', sa.Numeric(5, 4)),
        sa.Column('volatility_level', sa.String(10), server_default='MEDIUM'),
        sa.Column('inflation_rate_per_year', sa.Numeric(6, 4)),
        sa.Column('is_active', sa.Boolean, server_default=sa.true()),
    )
    _create(
        conn, 'material_price_records',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('material_id', sa.String(36), sa.ForeignKey('quote_materials.id'), nullable=False, index=True),
        sa.Column('record_date', sa.Date, nullable=False),
        sa.Column('price_per_kg', sa.Numeric(12, 4), nullable=False),
        sa.Column('supplier_name', sa.String(255)),
        sa.Column('quantity_min', sa.Integer),
        sa.Column('quantity_max', sa.Integer),
        sa.Column('notes', sa.Text),
    )
    _create(
        conn, 'post_process_types',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('pricing_model', sa.String(20), server_default='PER_PART'),
        sa.Column('unit_cost', sa.Numeric(12, 4), server_default='0'),
        sa.Column('setup_fee', sa.Numeric(12, 2)),
        sa.Column('minimum_lot_charge', sa.Numeric(12, 2)),
        sa.Column('default_lead_time_days', sa.Integer),
        sa.Column('is_active', sa.Boolean, server_default=sa.true()),
    )
    _create(
        conn, 'quick_quote_settings',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('setting_key', sa.String(100), nullable=False, unique=True),
        sa.Column('setting_value', sa.String(255), nullable=False),
        sa.Column('description', sa.Text),
    )


def downgrade() -> None:
    conn = op.get_bind()
    for name in (
        'quick_quote_settings', 'post_process_types', 'material_price_records', 'quote_materials',
        'quotation_settings', 'quotation_resources',
        'quotation_volume_pricing', 'quotation_routings', 'quotation_subcons', 'quotation_materials',
        'system_quotations',
    ):
        if _table_exists(conn, name):
            op.drop_table(name)
