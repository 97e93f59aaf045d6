"""
Initial migration - Create all tables

Revision ID: 001_initial
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

# Revision identifiers
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create all tables."""

    # Create reports table
    op.create_table(
        'reports',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column('type', sa.String(40), nullable=False),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('creator_id', sa.String(128), nullable=False),
        sa.Column(
            'status',
            sa.Enum('PENDING', 'CONFIRMED', 'PERMANENT', 'REMOVED', name='reportstatus'),
            nullable=False,
        ),
        sa.Column('is_permanent', sa.Boolean(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
    )

    op.create_index('idx_report_type_lat', 'reports', ['type', 'latitude'])
    op.create_index('idx_report_lat_lon', 'reports', ['latitude', 'longitude'])
    op.create_index('idx_report_status', 'reports', ['status'])
    op.create_index('idx_report_expires_at', 'reports', ['expires_at'])
    op.create_index('idx_report_updated_at', 'reports', ['updated_at'])

    # Create report_photos table
    op.create_table(
        'report_photos',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'report_id', sa.String(32),
            sa.ForeignKey('reports.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('url', sa.String(500), nullable=False),
        sa.Column('reporter_id', sa.String(128), nullable=False),
        sa.Column('is_hidden', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_index('ix_report_photos_report_id', 'report_photos', ['report_id'])

    # Create photo_flags table
    op.create_table(
        'photo_flags',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'photo_id', sa.Integer(),
            sa.ForeignKey('report_photos.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('reporter_id', sa.String(128), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('photo_id', 'reporter_id', name='uq_photo_flag_reporter'),
    )

    op.create_index('ix_photo_flags_photo_id', 'photo_flags', ['photo_id'])

    # Create report_confirmations and report_removals tables
    for table, constraint in (
        ('report_confirmations', 'uq_confirmation_user'),
        ('report_removals', 'uq_removal_user'),
    ):
        op.create_table(
            table,
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column(
                'report_id', sa.String(32),
                sa.ForeignKey('reports.id', ondelete='CASCADE'), nullable=False,
            ),
            sa.Column('user_id', sa.String(128), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.UniqueConstraint('report_id', 'user_id', name=constraint),
        )
        op.create_index(f'ix_{table}_report_id', table, ['report_id'])

    # Create users table (points ledger)
    op.create_table(
        'users',
        sa.Column('id', sa.String(128), primary_key=True),
        sa.Column('points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('level', sa.String(20), nullable=False, server_default='Explorer'),
        sa.Column('reports_created_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('confirmations_given_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('confirmations_received_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('photos_added_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_reports', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_confirmations', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_photos', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('last_active', sa.DateTime(), nullable=False),
    )

    op.create_index('idx_user_points', 'users', ['points'])

    # Create submit_cells table (cross-process submission claims)
    op.create_table(
        'submit_cells',
        sa.Column('feature_type', sa.String(50), nullable=False),
        sa.Column('band', sa.Integer(), nullable=False),
        sa.Column('col', sa.Integer(), nullable=False),
        sa.Column('claimed_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('feature_type', 'band', 'col'),
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('submit_cells')
    op.drop_table('users')
    op.drop_table('report_removals')
    op.drop_table('report_confirmations')
    op.drop_table('photo_flags')
    op.drop_table('report_photos')
    op.drop_table('reports')
    sa.Enum(name='reportstatus').drop(op.get_bind(), checkfirst=True)
