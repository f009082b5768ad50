"""Create profiles table

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'profiles',
        sa.Column('id', sa.Text(), primary_key=True),
        sa.Column('email', sa.Text(), nullable=False),
        sa.Column('subscription_status', sa.Text(), nullable=False, server_default='inactive'),
        sa.Column('current_period_end', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('primary_external_profile_id', sa.Text(), nullable=True),
        sa.Column(
            'accessible_external_profile_ids',
            postgresql.ARRAY(sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::text[]"),
        ),
        sa.Column('api_key_hash', sa.Text(), nullable=True),
        sa.Column('api_key_created_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "subscription_status IN ('active', 'past_due', 'canceled', 'inactive')",
            name='profiles_subscription_status_check',
        ),
    )
    op.create_index('profiles_email_key', 'profiles', [sa.text('lower(email)')], unique=True)
    # One live key per tenant, and hash lookups for the API-key path
    op.create_index('profiles_api_key_hash_key', 'profiles', ['api_key_hash'], unique=True)


def downgrade() -> None:
    op.drop_index('profiles_api_key_hash_key', table_name='profiles')
    op.drop_index('profiles_email_key', table_name='profiles')
    op.drop_table('profiles')
