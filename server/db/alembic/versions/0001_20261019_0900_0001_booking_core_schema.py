"""Booking core schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table('users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('commission_rate', sa.Numeric(precision=5, scale=2), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            'commission_rate IS NULL OR (commission_rate >= 0 AND commission_rate <= 100)',
            name='ck_user_commission_rate_range'
        ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email')
    )
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=False)

    op.create_table('cancellation_policies',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_default', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('cancellation_policy_rules',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('policy_id', sa.Uuid(), nullable=False),
        sa.Column('days_before_travel', sa.Integer(), nullable=False),
        sa.Column('refund_percentage', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('fee_amount', sa.Integer(), nullable=False),
        sa.CheckConstraint('days_before_travel >= 0', name='ck_policy_rule_days_non_negative'),
        sa.CheckConstraint(
            'refund_percentage >= 0 AND refund_percentage <= 100',
            name='ck_policy_rule_percentage_range'
        ),
        sa.CheckConstraint('fee_amount >= 0', name='ck_policy_rule_fee_non_negative'),
        sa.ForeignKeyConstraint(['policy_id'], ['cancellation_policies.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('policy_id', 'days_before_travel', name='uq_policy_rule_threshold')
    )
    op.create_index(
        op.f('ix_cancellation_policy_rules_policy_id'), 'cancellation_policy_rules', ['policy_id'], unique=False
    )

    op.create_table('packages',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('price_amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('max_participants', sa.Integer(), nullable=False),
        sa.Column('cancellation_policy_id', sa.Uuid(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('price_amount >= 0', name='ck_package_price_non_negative'),
        sa.CheckConstraint('max_participants >= 0', name='ck_package_max_participants_non_negative'),
        sa.CheckConstraint('length(currency) = 3', name='ck_package_currency_iso'),
        sa.ForeignKeyConstraint(['cancellation_policy_id'], ['cancellation_policies.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('package_availability',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('package_id', sa.Uuid(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('available_slots', sa.Integer(), nullable=False),
        sa.Column('booked_slots', sa.Integer(), nullable=False),
        sa.Column('price_override', sa.Integer(), nullable=True),
        sa.Column('is_available', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('available_slots >= 0', name='ck_availability_slots_non_negative'),
        sa.CheckConstraint('booked_slots >= 0', name='ck_availability_booked_non_negative'),
        sa.CheckConstraint(
            'price_override IS NULL OR price_override >= 0', name='ck_availability_price_non_negative'
        ),
        sa.ForeignKeyConstraint(['package_id'], ['packages.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('package_id', 'date', name='uq_package_availability_package_date')
    )
    op.create_index(
        op.f('ix_package_availability_package_id'), 'package_availability', ['package_id'], unique=False
    )

    op.create_table('inventory_holds',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('package_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('travel_date', sa.Date(), nullable=False),
        sa.Column('slots_held', sa.Integer(), nullable=False),
        sa.Column('hold_token', sa.String(length=64), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('booking_id', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('slots_held > 0', name='ck_hold_slots_positive'),
        sa.CheckConstraint(
            "status IN ('active', 'converted', 'released', 'expired')", name='ck_hold_status_valid'
        ),
        sa.ForeignKeyConstraint(['package_id'], ['packages.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('hold_token')
    )
    op.create_index(op.f('ix_inventory_holds_hold_token'), 'inventory_holds', ['hold_token'], unique=False)
    op.create_index(op.f('ix_inventory_holds_user_id'), 'inventory_holds', ['user_id'], unique=False)
    op.create_index(
        'ix_inventory_holds_capacity', 'inventory_holds',
        ['package_id', 'travel_date', 'status', 'expires_at'], unique=False
    )
    op.create_index('ix_inventory_holds_status_expires', 'inventory_holds', ['status', 'expires_at'], unique=False)

    op.create_table('promo_codes',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('code', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('discount_type', sa.String(length=20), nullable=False),
        sa.Column('discount_value', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('min_order_amount', sa.Integer(), nullable=True),
        sa.Column('max_discount_amount', sa.Integer(), nullable=True),
        sa.Column('usage_limit', sa.Integer(), nullable=True),
        sa.Column('usage_count', sa.Integer(), nullable=False),
        sa.Column('usage_limit_per_user', sa.Integer(), nullable=True),
        sa.Column('applicable_packages', sa.JSON(), nullable=True),
        sa.Column('excluded_packages', sa.JSON(), nullable=True),
        sa.Column('valid_from', sa.DateTime(), nullable=True),
        sa.Column('valid_until', sa.DateTime(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('discount_value >= 0', name='ck_promo_value_non_negative'),
        sa.CheckConstraint('usage_count >= 0', name='ck_promo_usage_count_non_negative'),
        sa.CheckConstraint('usage_limit IS NULL OR usage_count <= usage_limit', name='ck_promo_usage_within_limit'),
        sa.CheckConstraint("discount_type IN ('percentage', 'fixed')", name='ck_promo_discount_type_valid'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code')
    )
    op.create_index(op.f('ix_promo_codes_code'), 'promo_codes', ['code'], unique=False)

    op.create_table('bookings',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('booking_number', sa.String(length=16), nullable=False),
        sa.Column('package_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('agent_id', sa.Uuid(), nullable=True),
        sa.Column('travel_date', sa.Date(), nullable=False),
        sa.Column('adults', sa.Integer(), nullable=False),
        sa.Column('children', sa.Integer(), nullable=False),
        sa.Column('infants', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('package_price', sa.Integer(), nullable=False),
        sa.Column('discount', sa.Integer(), nullable=False),
        sa.Column('promo_code_id', sa.Uuid(), nullable=True),
        sa.Column('promo_discount', sa.Integer(), nullable=False),
        sa.Column('tax', sa.Integer(), nullable=False),
        sa.Column('total_amount', sa.Integer(), nullable=False),
        sa.Column('paid_amount', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('payment_status', sa.String(length=20), nullable=False),
        sa.Column('cancellation_fee', sa.Integer(), nullable=False),
        sa.Column('refund_amount', sa.Integer(), nullable=False),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('hold_token', sa.String(length=64), nullable=True),
        sa.Column('travelers_info', sa.JSON(), nullable=True),
        sa.Column('special_requests', sa.Text(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('adults >= 1', name='ck_booking_adults_positive'),
        sa.CheckConstraint('children >= 0 AND infants >= 0', name='ck_booking_party_non_negative'),
        sa.CheckConstraint('total_amount >= 0', name='ck_booking_total_non_negative'),
        sa.CheckConstraint('paid_amount >= 0', name='ck_booking_paid_non_negative'),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled', 'completed')", name='ck_booking_status_valid'
        ),
        sa.CheckConstraint(
            "payment_status IN ('pending', 'partial', 'paid', 'refunded')", name='ck_booking_payment_status_valid'
        ),
        sa.ForeignKeyConstraint(['package_id'], ['packages.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['agent_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['promo_code_id'], ['promo_codes.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('booking_number')
    )
    op.create_index(op.f('ix_bookings_booking_number'), 'bookings', ['booking_number'], unique=False)
    op.create_index(op.f('ix_bookings_package_id'), 'bookings', ['package_id'], unique=False)
    op.create_index(op.f('ix_bookings_user_id'), 'bookings', ['user_id'], unique=False)
    op.create_index('ix_bookings_package_date', 'bookings', ['package_id', 'travel_date'], unique=False)

    op.create_table('promo_code_usages',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('promo_code_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('booking_id', sa.Uuid(), nullable=False),
        sa.Column('discount_applied', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['promo_code_id'], ['promo_codes.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('promo_code_id', 'booking_id', name='uq_promo_usage_code_booking')
    )
    op.create_index(op.f('ix_promo_code_usages_promo_code_id'), 'promo_code_usages', ['promo_code_id'], unique=False)
    op.create_index(op.f('ix_promo_code_usages_user_id'), 'promo_code_usages', ['user_id'], unique=False)

    op.create_table('agent_commissions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('agent_id', sa.Uuid(), nullable=False),
        sa.Column('booking_id', sa.Uuid(), nullable=False),
        sa.Column('booking_amount', sa.Integer(), nullable=False),
        sa.Column('commission_rate', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('commission_amount', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('commission_amount >= 0', name='ck_commission_amount_non_negative'),
        sa.CheckConstraint("status IN ('pending', 'paid', 'cancelled')", name='ck_commission_status_valid'),
        sa.ForeignKeyConstraint(['agent_id'], ['users.id']),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('booking_id')
    )
    op.create_index(op.f('ix_agent_commissions_agent_id'), 'agent_commissions', ['agent_id'], unique=False)

    op.create_table('idempotency_keys',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('key', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('endpoint', sa.String(length=255), nullable=False),
        sa.Column('method', sa.String(length=10), nullable=False),
        sa.Column('request_params', sa.Text(), nullable=False),
        sa.Column('request_hash', sa.String(length=64), nullable=False),
        sa.Column('is_processing', sa.Boolean(), nullable=False),
        sa.Column('response_status', sa.Integer(), nullable=True),
        sa.Column('response_body', sa.Text(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('length(key) > 0', name='ck_idempotency_key_not_empty'),
        sa.CheckConstraint('length(request_hash) = 64', name='ck_idempotency_hash_length'),
        sa.CheckConstraint(
            'response_status IS NULL OR (response_status >= 100 AND response_status <= 599)',
            name='ck_idempotency_status_code_valid'
        ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('key')
    )
    op.create_index(op.f('ix_idempotency_keys_expires_at'), 'idempotency_keys', ['expires_at'], unique=False)
    op.create_index(op.f('ix_idempotency_keys_user_id'), 'idempotency_keys', ['user_id'], unique=False)


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table('idempotency_keys')
    op.drop_table('agent_commissions')
    op.drop_table('promo_code_usages')
    op.drop_table('bookings')
    op.drop_table('promo_codes')
    op.drop_table('inventory_holds')
    op.drop_table('package_availability')
    op.drop_table('packages')
    op.drop_table('cancellation_policy_rules')
    op.drop_table('cancellation_policies')
    op.drop_table('users')
