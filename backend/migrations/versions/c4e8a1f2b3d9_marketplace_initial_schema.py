"""marketplace initial schema

Revision ID: c4e8a1f2b3d9
Revises:
Create Date: 2026-10-19 09:12:04.118203

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'c4e8a1f2b3d9'
down_revision = None
branch_labels = None
depends_on = None


def _create_index_once(insp, name, table, columns, unique=False):
    try:
        existing = {i['name'] for i in insp.get_indexes(table)}
    except Exception:
        existing = set()
    if name not in existing:
        op.create_index(name, table, columns, unique=unique)


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    tables = set(insp.get_table_names())

    if 'profiles' not in tables:
        op.create_table(
            'profiles',
            sa.Column('id', sa.String(length=64), primary_key=True),
            sa.Column('email', sa.String(length=255), nullable=False, server_default=''),
            sa.Column('role', sa.String(length=16), nullable=False, server_default='user'),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.CheckConstraint("role IN ('user', 'admin', 'banned')", name='ck_profiles_role'),
        )
    _create_index_once(insp, 'ix_profiles_role', 'profiles', ['role'])

    if 'listings' not in tables:
        op.create_table(
            'listings',
            sa.Column('id', sa.String(length=36), primary_key=True),
            sa.Column('seller_id', sa.String(length=64), sa.ForeignKey('profiles.id'), nullable=False),
            sa.Column('title', sa.String(length=200), nullable=False),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('price_amount', sa.Integer(), nullable=False),
            sa.Column('currency', sa.String(length=3), nullable=False, server_default='DKK'),
            sa.Column('images', sa.JSON(), nullable=False),
            sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.CheckConstraint('price_amount > 0', name='ck_listings_price_positive'),
            sa.CheckConstraint("status IN ('active', 'sold', 'hidden')", name='ck_listings_status'),
        )
    _create_index_once(insp, 'ix_listings_seller_id', 'listings', ['seller_id'])
    _create_index_once(insp, 'ix_listings_status', 'listings', ['status'])

    if 'orders' not in tables:
        op.create_table(
            'orders',
            sa.Column('id', sa.String(length=36), primary_key=True),
            sa.Column('listing_id', sa.String(length=36), sa.ForeignKey('listings.id'), nullable=False),
            sa.Column('buyer_id', sa.String(length=64), sa.ForeignKey('profiles.id'), nullable=False),
            sa.Column('amount', sa.Integer(), nullable=False),
            sa.Column('currency', sa.String(length=3), nullable=False),
            sa.Column('payment_ref', sa.String(length=255), nullable=True),
            sa.Column('status', sa.String(length=24), nullable=False, server_default='requires_payment'),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.CheckConstraint(
                "status IN ('requires_payment', 'paid', 'shipped', 'refunded')",
                name='ck_orders_status',
            ),
        )
    _create_index_once(insp, 'ix_orders_listing_id', 'orders', ['listing_id'])
    _create_index_once(insp, 'ix_orders_buyer_id', 'orders', ['buyer_id'])
    _create_index_once(insp, 'ix_orders_payment_ref', 'orders', ['payment_ref'], unique=True)
    _create_index_once(insp, 'ix_orders_status', 'orders', ['status'])
    _create_index_once(insp, 'ix_orders_created_at', 'orders', ['created_at'])

    if 'shipping_addresses' not in tables:
        op.create_table(
            'shipping_addresses',
            sa.Column('id', sa.String(length=36), primary_key=True),
            sa.Column('order_id', sa.String(length=36), sa.ForeignKey('orders.id'), nullable=False),
            sa.Column('buyer_id', sa.String(length=64), sa.ForeignKey('profiles.id'), nullable=False),
            sa.Column('name', sa.String(length=200), nullable=False),
            sa.Column('line1', sa.String(length=255), nullable=False),
            sa.Column('line2', sa.String(length=255), nullable=True),
            sa.Column('postal_code', sa.String(length=32), nullable=False),
            sa.Column('city', sa.String(length=120), nullable=False),
            sa.Column('country', sa.String(length=120), nullable=False),
        )
    _create_index_once(insp, 'ix_shipping_addresses_order_id', 'shipping_addresses', ['order_id'], unique=True)
    _create_index_once(insp, 'ix_shipping_addresses_buyer_id', 'shipping_addresses', ['buyer_id'])

    if 'connect_accounts' not in tables:
        op.create_table(
            'connect_accounts',
            sa.Column('user_id', sa.String(length=64), sa.ForeignKey('profiles.id'), primary_key=True),
            sa.Column('external_account_ref', sa.String(length=255), nullable=False),
            sa.Column('charges_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
        )
    _create_index_once(
        insp, 'ix_connect_accounts_external_account_ref', 'connect_accounts', ['external_account_ref'], unique=True
    )

    if 'bans' not in tables:
        op.create_table(
            'bans',
            sa.Column('id', sa.String(length=36), primary_key=True),
            sa.Column('user_id', sa.String(length=64), sa.ForeignKey('profiles.id'), nullable=False),
            sa.Column('reason', sa.Text(), nullable=True),
            sa.Column('banned_by', sa.String(length=64), sa.ForeignKey('profiles.id'), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=False),
        )
    _create_index_once(insp, 'ix_bans_user_id', 'bans', ['user_id'])

    if 'webhook_events' not in tables:
        op.create_table(
            'webhook_events',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('provider', sa.String(length=32), nullable=False, server_default='stripe'),
            sa.Column('event_id', sa.String(length=128), nullable=False, unique=True),
            sa.Column('event_type', sa.String(length=64), nullable=False, server_default=''),
            sa.Column('reference', sa.String(length=255), nullable=True),
            sa.Column('status', sa.String(length=32), nullable=False, server_default='received'),
            sa.Column('processed_at', sa.DateTime(), nullable=True),
            sa.Column('request_id', sa.String(length=64), nullable=True),
            sa.Column('payload_hash', sa.String(length=128), nullable=True),
            sa.Column('error', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
        )


def downgrade():
    op.drop_table('webhook_events')
    op.drop_index('ix_bans_user_id', table_name='bans')
    op.drop_table('bans')
    op.drop_index('ix_connect_accounts_external_account_ref', table_name='connect_accounts')
    op.drop_table('connect_accounts')
    op.drop_index('ix_shipping_addresses_buyer_id', table_name='shipping_addresses')
    op.drop_index('ix_shipping_addresses_order_id', table_name='shipping_addresses')
    op.drop_table('shipping_addresses')
    for name in ('ix_orders_created_at', 'ix_orders_status', 'ix_orders_payment_ref', 'ix_orders_buyer_id', 'ix_orders_listing_id'):
        op.drop_index(name, table_name='orders')
    op.drop_table('orders')
    op.drop_index('ix_listings_status', table_name='listings')
    op.drop_index('ix_listings_seller_id', table_name='listings')
    op.drop_table('listings')
    op.drop_index('ix_profiles_role', table_name='profiles')
    op.drop_table('profiles')
