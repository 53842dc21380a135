"""Baseline migration - schools, alumni, projects, donations, engagement

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-19

Creates every table of the platform. Types are portable (PostgreSQL and
SQLite): UUIDs, JSON tag lists, NUMERIC(12,2) money.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def _updated_at() -> sa.Column:
    return sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    """Create all tables."""

    # ==========================================================================
    # Principals
    # ==========================================================================
    op.create_table(
        'schools',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('admin_user_id', sa.Uuid(), nullable=False, unique=True),
        sa.Column('school_name', sa.String(255), nullable=False),
        sa.Column('location', sa.String(255), nullable=False, server_default=''),
        sa.Column('logo_url', sa.String(500), nullable=True),
        _created_at(),
    )

    op.create_table(
        'alumni_users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False, unique=True),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('niches', sa.JSON(), nullable=False),
        sa.Column('school_id', sa.Uuid(), sa.ForeignKey('schools.id', ondelete='SET NULL'), nullable=True),
        sa.Column('school_name', sa.String(255), nullable=True),
        _created_at(),
    )

    # ==========================================================================
    # Projects
    # ==========================================================================
    op.create_table(
        'projects',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('school_id', sa.Uuid(), sa.ForeignKey('schools.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('overview', sa.Text(), nullable=True),
        sa.Column('motivation', sa.Text(), nullable=True),
        sa.Column('objectives', sa.Text(), nullable=True),
        sa.Column('scope', sa.Text(), nullable=True),
        sa.Column('category', sa.JSON(), nullable=False),
        sa.Column('target_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('current_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('reserved_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('backers_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(20), nullable=False, server_default='draft'),
        sa.Column('days_remaining', sa.Integer(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint('target_amount IS NULL OR target_amount > 0', name='ck_projects_target_positive'),
        sa.CheckConstraint('reserved_amount >= 0', name='ck_projects_reserved_non_negative'),
    )
    op.create_index('idx_projects_status_created', 'projects', ['status', 'created_at'])
    op.create_index('idx_projects_school', 'projects', ['school_id'])

    op.create_table(
        'project_updates',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('project_id', sa.Uuid(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('school_id', sa.Uuid(), sa.ForeignKey('schools.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        _created_at(),
    )

    # ==========================================================================
    # Donations
    # ==========================================================================
    op.create_table(
        'alumni_donations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('donor_id', sa.Uuid(), sa.ForeignKey('alumni_users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('project_id', sa.Uuid(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(8), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('is_anonymous', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('payment_provider', sa.String(50), nullable=True),
        sa.Column('payment_reference', sa.String(100), nullable=False),
        sa.Column('receipt_number', sa.String(50), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint('amount > 0', name='ck_alumni_donations_amount_positive'),
        sa.UniqueConstraint('payment_reference', name='uq_alumni_donations_payment_reference'),
    )
    op.create_index('idx_alumni_donations_project_status', 'alumni_donations', ['project_id', 'status'])
    op.create_index('idx_alumni_donations_donor', 'alumni_donations', ['donor_id', 'created_at'])

    op.create_table(
        'donation_history',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('project_id', sa.Uuid(), sa.ForeignKey('projects.id', ondelete='SET NULL'), nullable=True),
        sa.Column('donor_id', sa.Uuid(), sa.ForeignKey('alumni_users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('donor_name', sa.String(255), nullable=True),
        sa.Column('donor_email', sa.String(255), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('payment_status', sa.String(32), nullable=True),
        sa.Column('message', sa.Text(), nullable=True),
        _created_at(),
        sa.CheckConstraint('amount > 0', name='ck_donation_history_amount_positive'),
    )
    op.create_index('idx_donation_history_project', 'donation_history', ['project_id'])

    op.create_table(
        'donation_reconciliations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('payment_reference', sa.String(100), nullable=False),
        sa.Column('donor_id', sa.Uuid(), nullable=False),
        sa.Column('project_id', sa.Uuid(), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(8), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('resolved', sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
    )

    # ==========================================================================
    # Engagement
    # ==========================================================================
    op.create_table(
        'alumni_followed_schools',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('donor_id', sa.Uuid(), sa.ForeignKey('alumni_users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('school_id', sa.Uuid(), sa.ForeignKey('schools.id', ondelete='CASCADE'), nullable=False),
        sa.Column('notify_new_projects', sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.UniqueConstraint('donor_id', 'school_id', name='uq_followed_school'),
    )
    op.create_index('idx_followed_school_school', 'alumni_followed_schools', ['school_id'])

    op.create_table(
        'alumni_bookmarks',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('donor_id', sa.Uuid(), sa.ForeignKey('alumni_users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('project_id', sa.Uuid(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        _created_at(),
        sa.UniqueConstraint('donor_id', 'project_id', name='uq_bookmark'),
    )

    op.create_table(
        'alumni_notifications',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('recipient_id', sa.Uuid(), sa.ForeignKey('alumni_users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('project_id', sa.Uuid(), sa.ForeignKey('projects.id', ondelete='SET NULL'), nullable=True),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('metadata', sa.JSON(), nullable=False),
        _created_at(),
    )
    op.create_index('idx_notif_recipient_unread', 'alumni_notifications', ['recipient_id', 'is_read', 'created_at'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('alumni_notifications')
    op.drop_table('alumni_bookmarks')
    op.drop_table('alumni_followed_schools')
    op.drop_table('donation_reconciliations')
    op.drop_table('donation_history')
    op.drop_table('alumni_donations')
    op.drop_table('project_updates')
    op.drop_table('projects')
    op.drop_table('alumni_users')
    op.drop_table('schools')
