"""initial_tenancy_schema

Revision ID: 3c1f0a9d2b7e
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c1f0a9d2b7e'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.TEXT(), nullable=False),
        sa.Column('external_id', sa.TEXT(), nullable=False),
        sa.Column('email', sa.TEXT(), nullable=False),
        sa.Column('first_name', sa.TEXT(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_id'),
    )
    op.create_index('idx_users_email', 'users', ['email'])

    # bootstrap_user_id unique: at most one provisioned org per user, even under races
    op.create_table(
        'organizations',
        sa.Column('id', sa.TEXT(), nullable=False),
        sa.Column('name', sa.TEXT(), nullable=False),
        sa.Column('bootstrap_user_id', sa.TEXT(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['bootstrap_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('bootstrap_user_id'),
    )

    op.create_table(
        'memberships',
        sa.Column('id', sa.TEXT(), nullable=False),
        sa.Column('user_id', sa.TEXT(), nullable=False),
        sa.Column('org_id', sa.TEXT(), nullable=False),
        sa.Column('role', sa.TEXT(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'org_id', name='uq_memberships_user_org'),
        sa.CheckConstraint("role IN ('OWNER', 'ADMIN', 'MEMBER')", name='ck_memberships_role'),
    )
    op.create_index('idx_memberships_user_created', 'memberships', ['user_id', 'created_at'])
    op.create_index('idx_memberships_org', 'memberships', ['org_id'])

    op.create_table(
        'subscriptions',
        sa.Column('id', sa.TEXT(), nullable=False),
        sa.Column('org_id', sa.TEXT(), nullable=False),
        sa.Column('plan', sa.TEXT(), nullable=False),
        sa.Column('stripe_customer_id', sa.TEXT(), nullable=True),
        sa.Column('stripe_subscription_id', sa.TEXT(), nullable=True),
        sa.Column('current_period_end', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id'),
        sa.CheckConstraint("plan IN ('FREE', 'PRO')", name='ck_subscriptions_plan'),
    )

    op.create_table(
        'usage_records',
        sa.Column('id', sa.TEXT(), nullable=False),
        sa.Column('org_id', sa.TEXT(), nullable=False),
        sa.Column('month', sa.TEXT(), nullable=False),
        sa.Column('generations', sa.BIGINT(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'month', name='uq_usage_records_org_month'),
        sa.CheckConstraint('generations >= 0', name='ck_usage_records_non_negative'),
    )

    op.create_table(
        'projects',
        sa.Column('id', sa.TEXT(), nullable=False),
        sa.Column('org_id', sa.TEXT(), nullable=False),
        sa.Column('owner_id', sa.TEXT(), nullable=False),
        sa.Column('title', sa.TEXT(), nullable=False),
        sa.Column('client_name', sa.TEXT(), nullable=True),
        sa.Column('status', sa.TEXT(), nullable=False),
        sa.Column('estimated_value', sa.FLOAT(), nullable=True),
        sa.Column('last_activity_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['owner_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_projects_org_activity', 'projects', ['org_id', 'last_activity_at'])

    op.create_table(
        'proposals',
        sa.Column('id', sa.TEXT(), nullable=False),
        sa.Column('org_id', sa.TEXT(), nullable=False),
        sa.Column('project_id', sa.TEXT(), nullable=False),
        sa.Column('version', sa.BIGINT(), nullable=False),
        sa.Column('status', sa.TEXT(), nullable=False),
        sa.Column('sections', sa.JSON(), nullable=False),
        sa.Column('public_token', sa.TEXT(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('public_token'),
        sa.UniqueConstraint('project_id', 'version', name='uq_proposals_project_version'),
    )
    op.create_index('idx_proposals_org', 'proposals', ['org_id'])

    op.create_table(
        'webhook_dedup_events',
        sa.Column('id', sa.TEXT(), nullable=False),
        sa.Column('provider', sa.TEXT(), nullable=False),
        sa.Column('dedup_key', sa.TEXT(), nullable=False),
        sa.Column('status', sa.TEXT(), nullable=False),
        sa.Column('request_hash', sa.TEXT(), nullable=True),
        sa.Column('first_seen_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('last_seen_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider', 'dedup_key', name='uq_webhook_dedup_events'),
    )
    op.create_index('idx_webhook_dedup_status', 'webhook_dedup_events', ['status'])


def downgrade() -> None:
    op.drop_index('idx_webhook_dedup_status', table_name='webhook_dedup_events')
    op.drop_table('webhook_dedup_events')
    op.drop_index('idx_proposals_org', table_name='proposals')
    op.drop_table('proposals')
    op.drop_index('idx_projects_org_activity', table_name='projects')
    op.drop_table('projects')
    op.drop_table('usage_records')
    op.drop_table('subscriptions')
    op.drop_index('idx_memberships_org', table_name='memberships')
    op.drop_index('idx_memberships_user_created', table_name='memberships')
    op.drop_table('memberships')
    op.drop_table('organizations')
    op.drop_index('idx_users_email', table_name='users')
    op.drop_table('users')
