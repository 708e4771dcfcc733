"""initial schema setup

Revision ID: 0001
Revises: 
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False, server_default='user'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('email_verified', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('failed_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('locked_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_login', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('email', name='uq_users_email'),
        sa.PrimaryKeyConstraint('id')
    )
    for table, token_column in (('email_verifications', 'verification_token'), ('password_reset_requests', 'reset_token')):
        columns = [
            sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
            sa.Column('email', sa.String(length=255), nullable=False),
            sa.Column('code_hash', sa.String(), nullable=False),
            sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('verified', sa.Boolean(), nullable=False, server_default='false'),
            sa.Column(token_column, sa.String(length=64), nullable=True),
            sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        ]
        if table == 'password_reset_requests':
            columns.append(sa.Column('used', sa.Boolean(), nullable=False, server_default='false'))
        op.create_table(table, *columns, sa.UniqueConstraint(token_column), sa.PrimaryKeyConstraint('id'))
        op.create_index(f'ix_{table}_email', table, ['email'])
    op.create_table(
        'security_logs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('role', sa.String(length=16), nullable=True),
        sa.Column('ip', sa.String(length=64), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table(
        'axes',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('departure', sa.String(length=255), nullable=True),
        sa.Column('arrival', sa.String(length=255), nullable=True),
        sa.Column('distance_km', sa.Float(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_axes_name', 'axes', ['name'])
    op.create_table(
        'stops',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('axis_id', sa.Integer(), sa.ForeignKey('axes.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table(
        'personnels',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('matricule', sa.String(length=32), nullable=False),
        sa.Column('last_name', sa.String(length=120), nullable=False),
        sa.Column('first_name', sa.String(length=120), nullable=False),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('planned', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('gender', sa.String(length=8), nullable=True),
        sa.Column('birth_date', sa.Date(), nullable=True),
        sa.Column('status', sa.String(length=64), nullable=True),
        sa.Column('job_title', sa.String(length=120), nullable=True),
        sa.Column('campaign', sa.String(length=120), nullable=True),
        sa.Column('stop_id', sa.Integer(), sa.ForeignKey('stops.id', ondelete='SET NULL'), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('matricule', name='uq_personnels_matricule'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table(
        'vehicles',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('available', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('depot_lat', sa.Float(), nullable=True),
        sa.Column('depot_lng', sa.Float(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table(
        'assignments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('vehicle_id', sa.Integer(), sa.ForeignKey('vehicles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('stop_id', sa.Integer(), sa.ForeignKey('stops.id', ondelete='CASCADE'), nullable=False),
        sa.Column('personnel_id', sa.Integer(), sa.ForeignKey('personnels.id', ondelete='CASCADE'), nullable=False),
        sa.Column('assignment_date', sa.Date(), nullable=False),
        sa.Column('assigned_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('vehicle_id', 'personnel_id', 'assignment_date', name='uq_assignment_vehicle_personnel_day'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table(
        'planning',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('personnel_id', sa.Integer(), sa.ForeignKey('personnels.id', ondelete='CASCADE'), nullable=False),
        sa.Column('day', sa.Date(), nullable=False),
        sa.Column('departure_time', sa.Time(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('personnel_id', 'day', name='uq_planning_personnel_day'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table(
        'trips',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('personnel_id', sa.Integer(), sa.ForeignKey('personnels.id', ondelete='SET NULL'), nullable=True),
        sa.Column('origin_label', sa.String(length=255), nullable=True),
        sa.Column('origin_lat', sa.Float(), nullable=False),
        sa.Column('origin_lng', sa.Float(), nullable=False),
        sa.Column('destination_label', sa.String(length=255), nullable=True),
        sa.Column('destination_lat', sa.Float(), nullable=False),
        sa.Column('destination_lng', sa.Float(), nullable=False),
        sa.Column('distance_km', sa.Float(), nullable=True),
        sa.Column('duration_min', sa.Float(), nullable=True),
        sa.Column('path_geojson', sa.Text(), nullable=True),
        sa.Column('is_fallback', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )


def downgrade() -> None:
    op.drop_table('trips')
    op.drop_table('planning')
    op.drop_table('assignments')
    op.drop_table('vehicles')
    op.drop_table('personnels')
    op.drop_table('stops')
    op.drop_index('ix_axes_name', table_name='axes')
    op.drop_table('axes')
    op.drop_table('security_logs')
    for table in ('password_reset_requests', 'email_verifications'):
        op.drop_index(f'ix_{table}_email', table_name=table)
        op.drop_table(table)
    op.drop_table('users')
