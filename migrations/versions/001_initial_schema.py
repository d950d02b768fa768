"""
Alembic migration: initial print shop schema.

Creates users, vouchers, orders with items and status history, loyalty
accounts with their point ledger, carrier shipments with tracking events,
and the operator-editable settings table. Enum columns store member names.

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ENUMS = {
    'order_status': (
        'PENDING', 'CONFIRMED', 'IN_PRODUCTION', 'READY', 'SHIPPED', 'DELIVERED', 'CANCELLED',
    ),
    'payment_status': ('PENDING', 'PAID', 'FAILED', 'REFUNDED'),
    'payment_method': ('CARD', 'VOUCHER', 'BANK_TRANSFER'),
    'product_type': ('DTF_TEXTILE', 'DTF_UV', 'VOUCHER', 'OTHER'),
    'voucher_type': ('METERS', 'DISCOUNT_AMOUNT', 'DISCOUNT_PERCENT'),
    'loyalty_tier': ('BRONZE', 'SILVER', 'GOLD', 'PLATINUM'),
    'point_transaction_type': ('EARNED', 'REDEEMED'),
    'shipment_status': (
        'CREATED', 'PICKED_UP', 'IN_TRANSIT', 'OUT_FOR_DELIVERY', 'DELIVERED', 'EXCEPTION',
    ),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _id() -> sa.Column:
    return sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, nullable=False)


def _created_at() -> sa.Column:
    return sa.Column(
        'created_at',
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text('clock_timestamp()'),
    )


def _timestamps() -> list[sa.Column]:
    return [
        _created_at(),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text('now()'),
        ),
    ]


def _money(name: str, nullable: bool = False, default: bool = True) -> sa.Column:
    return sa.Column(
        name,
        sa.Numeric(precision=10, scale=2),
        nullable=nullable,
        server_default=sa.text('0') if default else None,
    )


def upgrade() -> None:
    """Create the print shop schema."""
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        'users',
        _id(),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('full_name', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        *_timestamps(),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'orders',
        _id(),
        sa.Column('order_number', sa.String(50), nullable=False, unique=True),
        sa.Column(
            'user_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('users.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('status', _enum('order_status'), nullable=False),
        sa.Column('payment_status', _enum('payment_status'), nullable=False),
        sa.Column('payment_method', _enum('payment_method'), nullable=True),
        sa.Column('payment_reference', sa.String(255), nullable=True),
        _money('subtotal'),
        _money('tax_amount'),
        _money('shipping_cost'),
        _money('discount_amount'),
        _money('points_discount'),
        _money('total_price', default=False),
        sa.Column('points_used', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('points_earned', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('voucher_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column(
            'is_voucher_purchase', sa.Boolean(), nullable=False, server_default=sa.text('false')
        ),
        sa.Column('customer_name', sa.String(255), nullable=False),
        sa.Column('customer_email', sa.String(255), nullable=False),
        sa.Column('customer_phone', sa.String(50), nullable=True),
        sa.Column('shipping_address', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('tracking_number', sa.String(100), nullable=True),
        sa.Column('invoice_requested_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('subtotal >= 0', name='ck_orders_subtotal_non_negative'),
        sa.CheckConstraint('tax_amount >= 0', name='ck_orders_tax_non_negative'),
        sa.CheckConstraint('shipping_cost >= 0', name='ck_orders_shipping_non_negative'),
        sa.CheckConstraint('discount_amount >= 0', name='ck_orders_discount_non_negative'),
        sa.CheckConstraint('points_discount >= 0', name='ck_orders_points_discount_non_negative'),
        sa.CheckConstraint('total_price >= 0', name='ck_orders_total_non_negative'),
        sa.CheckConstraint('points_used >= 0', name='ck_orders_points_used_non_negative'),
        sa.CheckConstraint('points_earned >= 0', name='ck_orders_points_earned_non_negative'),
        comment='Customer orders with payment and fulfillment status',
    )
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_user_created', 'orders', ['user_id', 'created_at'])
    op.create_index('ix_orders_status_created', 'orders', ['status', 'created_at'])
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'])

    op.create_table(
        'vouchers',
        _id(),
        sa.Column('code', sa.String(50), nullable=False, unique=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('type', _enum('voucher_type'), nullable=False),
        _money('initial_meters'),
        _money('remaining_meters'),
        sa.Column('initial_shipments', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column(
            'remaining_shipments', sa.Integer(), nullable=False, server_default=sa.text('0')
        ),
        _money('price'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('is_template', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('validity_days', sa.Integer(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            'user_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('users.id', ondelete='CASCADE'),
            nullable=True,
        ),
        sa.Column(
            'order_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('orders.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column(
            'template_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('vouchers.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default=sa.text('0')),
        *_timestamps(),
        sa.CheckConstraint(
            'remaining_meters >= 0 AND remaining_meters <= initial_meters',
            name='ck_vouchers_remaining_meters_bounds',
        ),
        sa.CheckConstraint(
            'remaining_shipments >= 0 AND remaining_shipments <= initial_shipments',
            name='ck_vouchers_remaining_shipments_bounds',
        ),
        sa.CheckConstraint('usage_count >= 0', name='ck_vouchers_usage_non_negative'),
        sa.CheckConstraint(
            'is_template OR user_id IS NOT NULL OR NOT is_active',
            name='ck_vouchers_active_owned',
        ),
        comment='Prepaid meter/shipment vouchers and purchasable templates',
    )
    op.create_index('ix_vouchers_order_id', 'vouchers', ['order_id'])
    op.create_index(
        'ix_vouchers_user_type_created', 'vouchers', ['user_id', 'type', 'created_at']
    )
    op.create_index('ix_vouchers_expires_at', 'vouchers', ['expires_at'])

    # orders <-> vouchers reference each other
    op.create_foreign_key(
        'fk_orders_voucher_id',
        'orders',
        'vouchers',
        ['voucher_id'],
        ['id'],
        ondelete='SET NULL',
    )

    op.create_table(
        'order_items',
        _id(),
        sa.Column(
            'order_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('product_type', _enum('product_type'), nullable=False),
        sa.Column('product_name', sa.String(255), nullable=False),
        sa.Column('quantity', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('unit_price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('subtotal', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column(
            'customizations',
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        *_timestamps(),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
        sa.CheckConstraint('unit_price >= 0', name='ck_order_items_unit_price_non_negative'),
        sa.CheckConstraint('subtotal >= 0', name='ck_order_items_subtotal_non_negative'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    op.create_table(
        'order_status_history',
        _id(),
        sa.Column(
            'order_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('status', _enum('order_status'), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('actor', sa.String(255), nullable=True),
        _created_at(),
    )
    op.create_index(
        'ix_order_status_history_order_created',
        'order_status_history',
        ['order_id', 'created_at'],
    )

    op.create_table(
        'loyalty_accounts',
        _id(),
        sa.Column(
            'user_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('users.id', ondelete='CASCADE'),
            nullable=False,
            unique=True,
        ),
        sa.Column('available_points', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('total_points', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('lifetime_points', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column(
            'total_spent',
            sa.Numeric(precision=12, scale=2),
            nullable=False,
            server_default=sa.text('0'),
        ),
        sa.Column('tier', _enum('loyalty_tier'), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            'available_points >= 0', name='ck_loyalty_accounts_available_non_negative'
        ),
        sa.CheckConstraint('total_spent >= 0', name='ck_loyalty_accounts_spent_non_negative'),
    )

    op.create_table(
        'point_transactions',
        _id(),
        sa.Column(
            'account_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('loyalty_accounts.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('type', _enum('point_transaction_type'), nullable=False),
        sa.Column(
            'order_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('orders.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('description', sa.String(500), nullable=True),
        _created_at(),
        sa.UniqueConstraint('order_id', 'type', name='uq_point_transactions_order_type'),
        sa.CheckConstraint(
            "(type = 'EARNED' AND points > 0) OR (type = 'REDEEMED' AND points < 0)",
            name='ck_point_transactions_sign',
        ),
    )
    op.create_index(
        'ix_point_transactions_account_created',
        'point_transactions',
        ['account_id', 'created_at'],
    )

    op.create_table(
        'shipments',
        _id(),
        sa.Column(
            'order_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
            unique=True,
        ),
        sa.Column('carrier', sa.String(50), nullable=False, server_default='GLS'),
        sa.Column('carrier_reference', sa.String(100), nullable=True),
        sa.Column('tracking_number', sa.String(100), nullable=True),
        sa.Column('status', _enum('shipment_status'), nullable=False),
        sa.Column('incidence', sa.Text(), nullable=True),
        sa.Column('status_before_exception', _enum('shipment_status'), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('recipient_name', sa.String(255), nullable=False),
        sa.Column('recipient_address', sa.String(500), nullable=False),
        sa.Column('recipient_city', sa.String(255), nullable=False),
        sa.Column('recipient_postal_code', sa.String(20), nullable=False),
        sa.Column('recipient_country', sa.String(2), nullable=False, server_default='ES'),
        sa.Column('recipient_phone', sa.String(50), nullable=True),
        sa.Column('recipient_email', sa.String(255), nullable=True),
        sa.Column('packages', sa.Integer(), nullable=False, server_default=sa.text('1')),
        sa.Column('weight', sa.Numeric(precision=8, scale=2), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('packages >= 1', name='ck_shipments_packages_positive'),
    )
    op.create_index('ix_shipments_carrier_reference', 'shipments', ['carrier_reference'])
    op.create_index('ix_shipments_tracking_number', 'shipments', ['tracking_number'])
    op.create_index('ix_shipments_status', 'shipments', ['status'])

    op.create_table(
        'shipment_tracking_events',
        _id(),
        sa.Column(
            'shipment_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('shipments.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('event_date', sa.DateTime(timezone=False), nullable=False),
        sa.Column('description', sa.String(500), nullable=False),
        sa.Column('location', sa.String(255), nullable=True),
        sa.Column('status', _enum('shipment_status'), nullable=True),
        sa.Column('event_code', sa.String(20), nullable=True),
        sa.Column('event_type', sa.String(50), nullable=True),
        _created_at(),
        sa.UniqueConstraint(
            'shipment_id', 'event_date', 'description', name='uq_shipment_tracking_events_key'
        ),
    )

    op.create_table(
        'settings',
        _id(),
        sa.Column('key', sa.String(100), nullable=False, unique=True),
        sa.Column('value', sa.Text(), nullable=False, server_default=''),
        sa.Column('category', sa.String(50), nullable=False, server_default='general'),
        sa.Column('description', sa.String(500), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_settings_category', 'settings', ['category'])


def downgrade() -> None:
    """Drop the print shop schema."""
    op.drop_index('ix_settings_category', table_name='settings')
    op.drop_table('settings')
    op.drop_table('shipment_tracking_events')
    op.drop_index('ix_shipments_status', table_name='shipments')
    op.drop_index('ix_shipments_tracking_number', table_name='shipments')
    op.drop_index('ix_shipments_carrier_reference', table_name='shipments')
    op.drop_table('shipments')
    op.drop_index('ix_point_transactions_account_created', table_name='point_transactions')
    op.drop_table('point_transactions')
    op.drop_table('loyalty_accounts')
    op.drop_index('ix_order_status_history_order_created', table_name='order_status_history')
    op.drop_table('order_status_history')
    op.drop_index('ix_order_items_order_id', table_name='order_items')
    op.drop_table('order_items')
    op.drop_constraint('fk_orders_voucher_id', 'orders', type_='foreignkey')
    op.drop_index('ix_vouchers_expires_at', table_name='vouchers')
    op.drop_index('ix_vouchers_user_type_created', table_name='vouchers')
    op.drop_index('ix_vouchers_order_id', table_name='vouchers')
    op.drop_table('vouchers')
    op.drop_index('ix_orders_payment_status', table_name='orders')
    op.drop_index('ix_orders_status_created', table_name='orders')
    op.drop_index('ix_orders_user_created', table_name='orders')
    op.drop_index('ix_orders_user_id', table_name='orders')
    op.drop_table('orders')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
