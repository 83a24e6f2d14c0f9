"""create_payment_tables

Revision ID: 3f2a9c1d7b44
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f2a9c1d7b44'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'orders',
        sa.Column('id', sa.String(length=64), nullable=False, comment='Order ID'),
        sa.Column('user_id', sa.String(length=128), nullable=False, comment='Owner user ID'),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending', comment='Fulfilment status'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='INR', comment='ISO-4217 currency code'),
        sa.Column('items', sa.JSON(), nullable=False, comment='Line items'),
        sa.Column('subtotal', sa.Numeric(precision=15, scale=2), nullable=False, comment='Items subtotal'),
        sa.Column('shipping', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0', comment='Shipping fee'),
        sa.Column('tax', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0', comment='Tax'),
        sa.Column('total', sa.Numeric(precision=15, scale=2), nullable=False, comment='Amount payable'),
        sa.Column('payment_method', sa.String(length=32), nullable=False, server_default='razorpay', comment='Payment method'),
        sa.Column('payment_status', sa.String(length=32), nullable=False, server_default='pending', comment='Payment status'),
        sa.Column('provider_order_id', sa.String(length=64), nullable=True, comment='Gateway order ID'),
        sa.Column('provider_payment_id', sa.String(length=64), nullable=True, comment='Gateway payment ID'),
        sa.Column('failure_reason', sa.Text(), nullable=True, comment='Last payment failure reason'),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True, comment='Payment confirmation time'),
        sa.Column('refunded_amount', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0', comment='Refunded amount'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0', comment='Incremented by every write'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='Created at'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='Updated at'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_orders')),
    )
    op.create_index('ix_orders_user_id', 'orders', ['user_id'], unique=False)
    op.create_index('ix_orders_status', 'orders', ['status'], unique=False)
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'], unique=False)
    op.create_index('ix_orders_provider_order_id', 'orders', ['provider_order_id'], unique=False)
    op.create_index('ix_orders_user_status', 'orders', ['user_id', 'status'], unique=False)

    op.create_table(
        'transactions',
        sa.Column('id', sa.String(length=40), nullable=False, comment='TXN-<ms>-<hex>'),
        sa.Column('order_id', sa.String(length=64), nullable=False, comment='Order ID'),
        sa.Column('user_id', sa.String(length=128), nullable=False, comment='Paying user ID'),
        sa.Column('provider_order_id', sa.String(length=64), nullable=False, comment='Gateway order ID'),
        sa.Column('provider_payment_id', sa.String(length=64), nullable=False, comment='Gateway payment ID'),
        sa.Column('provider_signature', sa.String(length=128), nullable=True, comment='Checkout callback signature'),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False, comment='Captured amount'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='INR', comment='ISO-4217 currency code'),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='captured', comment='captured/failed/refunded'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='Created at'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], name=op.f('fk_transactions_order_id_orders')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_transactions')),
        sa.UniqueConstraint('provider_payment_id', name='uq_transactions_provider_payment_id'),
    )
    op.create_index('ix_transactions_order_id', 'transactions', ['order_id'], unique=False)
    op.create_index('ix_transactions_user_id', 'transactions', ['user_id'], unique=False)
    op.create_index('ix_transactions_created_at', 'transactions', ['created_at'], unique=False)
    op.create_index('ix_transactions_provider_pair', 'transactions', ['provider_order_id', 'provider_payment_id'], unique=False)

    op.create_table(
        'refunds',
        sa.Column('id', sa.String(length=40), nullable=False, comment='REF-<digits>-<hex>'),
        sa.Column('transaction_id', sa.String(length=40), nullable=False, comment='Refunded transaction ID'),
        sa.Column('order_id', sa.String(length=64), nullable=False, comment='Order ID'),
        sa.Column('provider_payment_id', sa.String(length=64), nullable=False, comment='Gateway payment ID'),
        sa.Column('provider_refund_id', sa.String(length=64), nullable=True, comment='Gateway refund ID'),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False, comment='Refund amount'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='INR', comment='ISO-4217 currency code'),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending', comment='Refund status'),
        sa.Column('reason', sa.Text(), nullable=True, comment='Refund reason'),
        sa.Column('processed_by', sa.String(length=128), nullable=True, comment='Actor who issued the refund'),
        sa.Column('payload', sa.JSON(), nullable=True, comment='Gateway refund entity'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='Created at'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='Updated at'),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id'], name=op.f('fk_refunds_transaction_id_transactions')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_refunds')),
        sa.UniqueConstraint('provider_refund_id', name='uq_refunds_provider_refund_id'),
    )
    op.create_index('ix_refunds_transaction_id', 'refunds', ['transaction_id'], unique=False)
    op.create_index('ix_refunds_order_id', 'refunds', ['order_id'], unique=False)
    op.create_index('ix_refunds_provider_payment_id', 'refunds', ['provider_payment_id'], unique=False)
    op.create_index('ix_refunds_status', 'refunds', ['status'], unique=False)
    op.create_index('ix_refunds_created_at', 'refunds', ['created_at'], unique=False)
    op.create_index('ix_refunds_status_created', 'refunds', ['status', 'created_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_refunds_status_created', table_name='refunds')
    op.drop_index('ix_refunds_created_at', table_name='refunds')
    op.drop_index('ix_refunds_status', table_name='refunds')
    op.drop_index('ix_refunds_provider_payment_id', table_name='refunds')
    op.drop_index('ix_refunds_order_id', table_name='refunds')
    op.drop_index('ix_refunds_transaction_id', table_name='refunds')
    op.drop_table('refunds')

    op.drop_index('ix_transactions_provider_pair', table_name='transactions')
    op.drop_index('ix_transactions_created_at', table_name='transactions')
    op.drop_index('ix_transactions_user_id', table_name='transactions')
    op.drop_index('ix_transactions_order_id', table_name='transactions')
    op.drop_table('transactions')

    op.drop_index('ix_orders_user_status', table_name='orders')
    op.drop_index('ix_orders_provider_order_id', table_name='orders')
    op.drop_index('ix_orders_payment_status', table_name='orders')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_index('ix_orders_user_id', table_name='orders')
    op.drop_table('orders')
