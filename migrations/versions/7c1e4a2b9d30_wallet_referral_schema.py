"""Create users, expenses, rewards, global_settings and withdrawals"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '7c1e4a2b9d30'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('full_name', sa.String(150), nullable=False),
        sa.Column('mobile', sa.String(20), nullable=False, unique=True),
        sa.Column('pin_hash', sa.String(255), nullable=False),
        sa.Column('recovery_key_hash', sa.String(255), nullable=False),
        sa.Column('device_fingerprint', sa.String(128), nullable=True),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('wallet_balance', sa.Numeric(12, 2), nullable=False, server_default=sa.text('0.00')),
        sa.Column('subscription_status', sa.String(20), nullable=False, server_default='free'),
        sa.Column('premium_activated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('activation_cycle', sa.String(32), nullable=True),
        sa.Column('referred_by', sa.String(20), nullable=True),
        sa.Column('age', sa.Integer(), nullable=True),
        sa.Column('gender', sa.String(20), nullable=True),
        sa.Column('bank_name', sa.String(120), nullable=True),
        sa.Column('account_holder_name', sa.String(150), nullable=True),
        sa.Column('ifsc_code', sa.String(20), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('wallet_balance >= 0', name='chk_wallet_non_negative'),
    )
    op.create_index('ix_users_subscription_status', 'users', ['subscription_status'])
    op.create_index('ix_users_referred_by', 'users', ['referred_by'])
    op.create_index('idx_user_referred_cycle', 'users', ['referred_by', 'subscription_status', 'activation_cycle'])

    op.create_table(
        'expenses',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('category', sa.String(20), nullable=False),
        sa.Column('description', sa.String(255), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_expenses_user_id', 'expenses', ['user_id'])
    op.create_index('idx_expense_user_created', 'expenses', ['user_id', 'created_at'])

    op.create_table(
        'rewards',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('from_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('tier', sa.String(10), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('cycle_id', sa.String(32), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'from_user_id', 'tier', name='uq_reward_recipient_origin_tier'),
        sa.CheckConstraint('amount > 0', name='chk_reward_positive'),
    )
    op.create_index('ix_rewards_user_id', 'rewards', ['user_id'])
    op.create_index('ix_rewards_from_user_id', 'rewards', ['from_user_id'])
    op.create_index('idx_reward_tier_cycle', 'rewards', ['tier', 'cycle_id'])

    op.create_table(
        'global_settings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('subscription_fee', sa.Numeric(12, 2), nullable=False),
        sa.Column('t1_reward', sa.Numeric(12, 2), nullable=False),
        sa.Column('t2_reward', sa.Numeric(12, 2), nullable=False),
        sa.Column('current_cycle_id', sa.String(32), nullable=False),
        sa.Column('notice_text', sa.Text(), nullable=False, server_default=''),
        sa.Column('campaign_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('campaign_title', sa.String(150), nullable=False, server_default=''),
        *_timestamps(),
    )

    op.create_table(
        'withdrawals',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('method', sa.String(10), nullable=False),
        sa.Column('upi_id', sa.String(100), nullable=True),
        sa.Column('account_number', sa.String(34), nullable=True),
        sa.Column('ifsc_code', sa.String(20), nullable=True),
        sa.Column('account_name', sa.String(150), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        *_timestamps(),
    )
    op.create_index('ix_withdrawals_user_id', 'withdrawals', ['user_id'])


def downgrade():
    op.drop_table('withdrawals')
    op.drop_table('global_settings')
    op.drop_table('rewards')
    op.drop_table('expenses')
    op.drop_table('users')
