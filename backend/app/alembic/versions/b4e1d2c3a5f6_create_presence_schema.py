"""create_presence_schema

Revision ID: b4e1d2c3a5f6
Revises:
Create Date: 2026-10-18 12:00:00.000000

Networks, devices, device status history and alarms.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = 'b4e1d2c3a5f6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


operation_mode = sa.Enum('UNAUTHORIZED', 'ALLOWED', 'ALWAYS_ON', name='deviceoperationmode')
alarm_type = sa.Enum('NETWORK_DOWN', 'DEVICE_DOWN', 'UNAUTHORIZED_DEVICE', name='alarmtype')


def upgrade() -> None:
    # --- networks ---
    op.create_table(
        'networks',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('first_seen_at', sa.DateTime(), nullable=False),
        sa.Column('last_seen_at', sa.DateTime(), nullable=False),
        sa.Column('alerting_delay', sa.Integer(), nullable=False),
        sa.Column('notify_destination', sa.String(255), nullable=True),
        sa.Column('active_alarm_id', sa.Integer(), nullable=True),
        sa.UniqueConstraint('name', name='uq_networks_name'),
    )

    # --- devices ---
    op.create_table(
        'devices',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('network_id', sa.Integer(), sa.ForeignKey('networks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('mac_address', sa.String(17), nullable=False),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('name', sa.String(100), nullable=True),
        sa.Column('operation_mode', operation_mode, nullable=False),
        sa.Column('online', sa.Boolean(), nullable=False),
        sa.Column('first_seen_at', sa.DateTime(), nullable=False),
        sa.Column('last_seen_at', sa.DateTime(), nullable=False),
        sa.Column('active_alarm_id', sa.Integer(), nullable=True),
        sa.UniqueConstraint('network_id', 'mac_address', name='uq_devices_network_mac'),
    )
    op.create_index('ix_devices_network_id', 'devices', ['network_id'])

    # --- device_status_records (append-only, transitions only) ---
    op.create_table(
        'device_status_records',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('network_id', sa.Integer(), sa.ForeignKey('networks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('mac_address', sa.String(17), nullable=False),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('online', sa.Boolean(), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
    )
    op.create_index(
        'ix_device_status_records_network_mac', 'device_status_records',
        ['network_id', 'mac_address', 'id'],
    )

    # --- alarms ---
    op.create_table(
        'alarms',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('network_id', sa.Integer(), sa.ForeignKey('networks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('device_id', sa.Integer(), sa.ForeignKey('devices.id', ondelete='CASCADE'), nullable=True),
        sa.Column('alarm_type', alarm_type, nullable=False),
        sa.Column('message', sa.String(500), nullable=True),
        sa.Column('opened_at', sa.DateTime(), nullable=False),
        sa.Column('closed_at', sa.DateTime(), nullable=True),
    )
    op.create_index(
        'ix_alarms_network_device_opened', 'alarms',
        ['network_id', 'device_id', 'opened_at'],
    )
    op.create_index(
        'uq_alarms_open_per_device', 'alarms', ['network_id', 'device_id'],
        unique=True,
        postgresql_where=sa.text('closed_at IS NULL'),
        sqlite_where=sa.text('closed_at IS NULL'),
    )
    # NULL device_id never collides above; network-level alarms need their own index
    op.create_index(
        'uq_alarms_open_per_network', 'alarms', ['network_id'],
        unique=True,
        postgresql_where=sa.text('device_id IS NULL AND closed_at IS NULL'),
        sqlite_where=sa.text('device_id IS NULL AND closed_at IS NULL'),
    )


def downgrade() -> None:
    op.drop_index('uq_alarms_open_per_network', 'alarms')
    op.drop_index('uq_alarms_open_per_device', 'alarms')
    op.drop_index('ix_alarms_network_device_opened', 'alarms')
    op.drop_table('alarms')
    op.drop_index('ix_device_status_records_network_mac', 'device_status_records')
    op.drop_table('device_status_records')
    op.drop_index('ix_devices_network_id', 'devices')
    op.drop_table('devices')
    op.drop_table('networks')
    alarm_type.drop(op.get_bind(), checkfirst=True)
    operation_mode.drop(op.get_bind(), checkfirst=True)
