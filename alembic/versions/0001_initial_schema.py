"""initial schema: nodes, jobs, port pools, port blocks

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00

"""
from alembic import op
import sqlalchemy as sa


revision = '0001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'nodes',
        sa.Column('node_id', sa.String(32), primary_key=True),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('roles', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column('secret_hash', sa.String(64), nullable=False),
        sa.Column('last_heartbeat_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_seen_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_heartbeat_ip', sa.String(64), nullable=True),
        sa.Column('last_heartbeat_version', sa.String(64), nullable=True),
        sa.Column('last_heartbeat_stats', sa.JSON(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('disk_scan_interval_seconds', sa.Integer(), nullable=False),
        sa.Column('disk_warning_percent', sa.Integer(), nullable=False),
        sa.Column('disk_hard_block_percent', sa.Integer(), nullable=False),
        sa.Column('disk_protect_threshold_percent', sa.Integer(), nullable=False),
        sa.Column('disk_protect_override_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_nodes_status', 'nodes', ['status'])
    op.create_index('ix_nodes_last_heartbeat_at', 'nodes', ['last_heartbeat_at'])

    op.create_table(
        'jobs',
        sa.Column('seq', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('job_id', sa.String(32), nullable=False),
        sa.Column('job_type', sa.String(100), nullable=False),
        sa.Column('agent_id', sa.String(64), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column(
            'status',
            sa.Enum('QUEUED', 'RUNNING', 'SUCCEEDED', 'FAILED', name='job_status'),
            nullable=False,
        ),
        sa.Column('locked_by', sa.String(64), nullable=True),
        sa.Column('result_status', sa.String(20), nullable=True),
        sa.Column('result_output', sa.JSON(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_jobs_job_id', 'jobs', ['job_id'], unique=True)
    op.create_index('ix_jobs_agent_status_created', 'jobs', ['agent_id', 'status', 'created_at'])
    op.create_index('ix_jobs_type_created', 'jobs', ['job_type', 'created_at'])

    op.create_table(
        'port_pools',
        sa.Column('pool_id', sa.String(32), primary_key=True),
        sa.Column('node_id', sa.String(32), sa.ForeignKey('nodes.node_id'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('start_port', sa.Integer(), nullable=False),
        sa.Column('end_port', sa.Integer(), nullable=False),
        sa.Column('protocol', sa.Enum('TCP', 'UDP', 'BOTH', name='port_protocol'), nullable=False),
        sa.Column('lease_version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_port_pools_node_id', 'port_pools', ['node_id'])

    op.create_table(
        'port_blocks',
        sa.Column('block_id', sa.String(32), primary_key=True),
        sa.Column('pool_id', sa.String(32), sa.ForeignKey('port_pools.pool_id'), nullable=False),
        sa.Column('customer_id', sa.String(64), nullable=False),
        sa.Column('ports', sa.JSON(), nullable=False),
        sa.Column('start_port', sa.Integer(), nullable=False),
        sa.Column('end_port', sa.Integer(), nullable=False),
        sa.Column('workload_id', sa.String(64), nullable=True, unique=True),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('released_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_port_blocks_pool_id', 'port_blocks', ['pool_id'])
    op.create_index('ix_port_blocks_customer_id', 'port_blocks', ['customer_id'])
    op.create_index('ix_port_blocks_pool_start', 'port_blocks', ['pool_id', 'start_port'])


def downgrade() -> None:
    op.drop_table('port_blocks')
    op.drop_table('port_pools')
    op.drop_table('jobs')
    op.drop_table('nodes')
    sa.Enum(name='port_protocol').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='job_status').drop(op.get_bind(), checkfirst=True)
