"""Init store schema

Revision ID: 5b1e7c2d9a41
Revises: 
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5b1e7c2d9a41'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TS = sa.DateTime(timezone=True)


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(100), nullable=False, unique=True),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('full_name', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('telegram_user_id', sa.BigInteger(), nullable=True, unique=True),
        sa.Column('created_at', TS, nullable=False),
        sa.Column('last_login_at', TS, nullable=True),
    )

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('brand', sa.String(100), nullable=False, server_default=''),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('size', sa.String(50), nullable=False, server_default=''),
        sa.Column('color', sa.String(50), nullable=False, server_default=''),
        sa.Column('images', sa.JSON(), nullable=False),
        sa.Column('quantity_in_stock', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('gender', sa.String(20), nullable=True),
        sa.Column('condition', sa.String(50), nullable=True),
        sa.Column('published_at', TS, nullable=True),
        sa.Column('created_at', TS, nullable=False),
        sa.Column('updated_at', TS, nullable=False),
    )
    op.create_index('ix_products_published_at', 'products', ['published_at'])

    op.create_table(
        'cart_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('session_id', sa.String(255), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', TS, nullable=False),
        sa.Column('updated_at', TS, nullable=False),
        sa.UniqueConstraint('session_id', 'product_id', name='uq_cart_session_product'),
    )
    op.create_index('ix_cart_items_session_id', 'cart_items', ['session_id'])
    op.create_index('ix_cart_items_product_id', 'cart_items', ['product_id'])
    op.create_index('ix_cart_items_updated_at', 'cart_items', ['updated_at'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('order_number', sa.String(50), nullable=False, unique=True),
        sa.Column('customer_name', sa.String(255), nullable=False),
        sa.Column('customer_phone', sa.String(50), nullable=False),
        sa.Column('customer_email', sa.String(255), nullable=True),
        sa.Column('customer_address', sa.Text(), nullable=True),
        sa.Column('delivery_method', sa.String(100), nullable=True),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('total_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column('created_at', TS, nullable=False),
        sa.Column('updated_at', TS, nullable=False),
        sa.Column('cancelled_at', TS, nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
    )

    # product_id без внешнего ключа: история заказа переживает удаление товара
    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(255), nullable=False),
        sa.Column('product_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
    )

    op.create_table(
        'announcements',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('scheduled_at', TS, nullable=False),
        sa.Column('product_ids', sa.JSON(), nullable=False),
        sa.Column('collage_images', sa.JSON(), nullable=False),
        sa.Column('is_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('sent_at', TS, nullable=True),
        sa.Column('sent_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', TS, nullable=False),
    )
    op.create_index('ix_announcements_scheduled_at', 'announcements', ['scheduled_at'])

    op.create_table(
        'brands',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False, unique=True),
        sa.Column('created_at', TS, nullable=False),
    )

    op.create_table(
        'telegram_errors',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('error_date', TS, nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('error_type', sa.String(50), nullable=False),
        sa.Column('product_info', sa.Text(), nullable=True),
        sa.Column('image_count', sa.Integer(), nullable=True),
        sa.Column('channel_id', sa.String(100), nullable=True),
    )
    op.create_index('ix_telegram_errors_error_date', 'telegram_errors', ['error_date'])


def downgrade() -> None:
    op.drop_table('telegram_errors')
    op.drop_table('brands')
    op.drop_table('announcements')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('cart_items')
    op.drop_table('products')
    op.drop_table('users')
