"""Create vehicle connection, vehicle state, trip and history tables

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'sense_profiles',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('trip_movement_threshold_meters', sa.Float(), nullable=True),
        sa.Column('trip_stationary_timeout_minutes', sa.Float(), nullable=True),
        sa.Column('trip_minimum_distance_meters', sa.Float(), nullable=True),
        sa.Column('trip_max_duration_hours', sa.Float(), nullable=True),
        sa.Column('trip_sensitivity_level', sa.String(32), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_table(
        'vehicle_connections',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), nullable=False, index=True),
        sa.Column('vehicle_id', sa.String(190), nullable=False, index=True),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('refresh_token', sa.Text(), nullable=False),
        sa.Column('make', sa.String(190), nullable=True),
        sa.Column('model', sa.String(190), nullable=True),
        sa.Column('year', sa.Integer(), nullable=True),
        sa.Column('vin', sa.String(32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('connected_at', sa.DateTime(), nullable=False),
        sa.Column('last_sync_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_table(
        'vehicle_states',
        sa.Column('id', sa.String(36), primary_key=True),
        # one state row per connection
        sa.Column('connection_id', sa.String(36), sa.ForeignKey('vehicle_connections.id'),
                  nullable=False, unique=True, index=True),
        sa.Column('last_odometer', sa.Float(), nullable=True),
        sa.Column('anchor_odometer', sa.Float(), nullable=True),
        sa.Column('last_location', sa.JSON(), nullable=True),
        sa.Column('last_poll_time', sa.DateTime(), nullable=True),
        sa.Column('current_trip_id', sa.String(36), nullable=True),
        sa.Column('polling_frequency', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_table(
        'sense_trips',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), nullable=False, index=True),
        sa.Column('vehicle_connection_id', sa.String(36), sa.ForeignKey('vehicle_connections.id'),
                  nullable=True, index=True),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=True),
        sa.Column('start_location', sa.JSON(), nullable=False),
        sa.Column('end_location', sa.JSON(), nullable=True),
        sa.Column('distance_km', sa.Float(), nullable=True),
        sa.Column('duration_minutes', sa.Integer(), nullable=True),
        sa.Column('odometer_km', sa.Float(), nullable=True),
        sa.Column('route_data', sa.JSON(), nullable=True),
        sa.Column('trip_status', sa.String(16), nullable=False, server_default='active'),
        sa.Column('trip_type', sa.String(16), nullable=False, server_default='unknown'),
        sa.Column('is_automatic', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('last_movement_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_sense_trips_connection_status', 'sense_trips', ['vehicle_connection_id', 'trip_status'])
    op.create_table(
        'vehicle_data_history',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('connection_id', sa.String(36), sa.ForeignKey('vehicle_connections.id'),
                  nullable=False, index=True),
        sa.Column('odometer_km', sa.Float(), nullable=False),
        sa.Column('location', sa.JSON(), nullable=True),
        sa.Column('poll_time', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table('vehicle_data_history')
    op.drop_index('ix_sense_trips_connection_status', table_name='sense_trips')
    op.drop_table('sense_trips')
    op.drop_table('vehicle_states')
    op.drop_table('vehicle_connections')
    op.drop_table('sense_profiles')
