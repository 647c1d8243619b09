"""Create agent graph and run tables

Revision ID: 001
Revises:
Create Date: 2026-10-18

Creates the tables read and written by the graph runtime:
- models: LLM model references (provider + name)
- tools: MCP tools with input/output JSON schemas
- agent_graphs: Graph definitions with entry node and state schema
- agent_graph_nodes: Worker / tool / supervisor nodes
- agent_graph_node_tools: Tool assignments per node
- agent_graph_edges: Directed edges between node keys (to_node may be END)
- agent_graph_runs: One record per execution
- agent_graph_run_steps: One record per node invocation

Target Database: PostgreSQL 16
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    ]


def upgrade() -> None:
    # ========================================================================
    # TABLE: models
    # ========================================================================
    op.create_table(
        'models',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('provider', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider', 'name', name='models_provider_name_unique')
    )

    # ========================================================================
    # TABLE: tools
    # ========================================================================
    op.create_table(
        'tools',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('input_schema', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('output_schema', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', name='tools_name_key')
    )

    # ========================================================================
    # TABLE: agent_graphs
    # ========================================================================
    op.create_table(
        'agent_graphs',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('entry_node', sa.Text(), nullable=False),
        sa.Column('state_schema', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )

    # ========================================================================
    # TABLE: agent_graph_nodes
    # ========================================================================
    op.create_table(
        'agent_graph_nodes',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('node_key', sa.Text(), nullable=False),
        sa.Column('node_type', sa.Text(), nullable=False),
        sa.Column('input_key', sa.Text(), nullable=True),
        sa.Column('output_key', sa.Text(), nullable=True),
        sa.Column('config', postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.Column('agent_graph_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('model_id', postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['agent_graph_id'], ['agent_graphs.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['model_id'], ['models.id']),
        sa.UniqueConstraint('agent_graph_id', 'node_key', name='agent_graph_nodes_agent_graph_id_node_key_key'),
        sa.CheckConstraint("node_type IN ('worker', 'supervisor', 'tool')", name='agent_graph_nodes_node_type_known')
    )
    op.create_index('ix_agent_graph_nodes_model_id', 'agent_graph_nodes', ['model_id'], unique=False)

    # ========================================================================
    # TABLE: agent_graph_node_tools
    # ========================================================================
    op.create_table(
        'agent_graph_node_tools',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('agent_graph_node_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('tool_id', postgresql.UUID(as_uuid=True), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['agent_graph_node_id'], ['agent_graph_nodes.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['tool_id'], ['tools.id']),
        sa.UniqueConstraint('agent_graph_node_id', 'tool_id', name='agent_graph_node_tools_node_tool_unique')
    )
    op.create_index('ix_agent_graph_node_tools_agent_graph_node_id', 'agent_graph_node_tools', ['agent_graph_node_id'], unique=False)
    op.create_index('ix_agent_graph_node_tools_tool_id', 'agent_graph_node_tools', ['tool_id'], unique=False)

    # ========================================================================
    # TABLE: agent_graph_edges
    # ========================================================================
    op.create_table(
        'agent_graph_edges',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('from_node', sa.Text(), nullable=False),
        sa.Column('to_node', sa.Text(), nullable=False),
        sa.Column('agent_graph_id', postgresql.UUID(as_uuid=True), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['agent_graph_id'], ['agent_graphs.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('agent_graph_id', 'from_node', 'to_node', name='agent_graph_edges_graph_from_to_uidx'),
        sa.CheckConstraint("from_node <> 'END'", name='agent_graph_edges_from_not_end'),
        sa.CheckConstraint('from_node <> to_node', name='agent_graph_edges_no_self_ref')
    )
    op.create_index('ix_agent_graph_edges_agent_graph_id', 'agent_graph_edges', ['agent_graph_id'], unique=False)

    # ========================================================================
    # TABLE: agent_graph_runs
    # ========================================================================
    op.create_table(
        'agent_graph_runs',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('agent_graph_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('status', sa.Text(), server_default=sa.text("'running'"), nullable=False),
        sa.Column('initial_state', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('final_state', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('started_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('finished_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['agent_graph_id'], ['agent_graphs.id'], ondelete='CASCADE'),
        sa.CheckConstraint("status IN ('running', 'completed', 'failed')", name='agent_graph_runs_status_known'),
        sa.CheckConstraint('finished_at IS NULL OR finished_at >= started_at', name='agent_graph_runs_finished_after_started')
    )
    op.create_index('ix_agent_graph_runs_agent_graph_id', 'agent_graph_runs', ['agent_graph_id'], unique=False)
    op.create_index('agent_graph_runs_status_idx', 'agent_graph_runs', ['status'], unique=False)

    # ========================================================================
    # TABLE: agent_graph_run_steps
    # ========================================================================
    op.create_table(
        'agent_graph_run_steps',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('run_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('node_key', sa.Text(), nullable=False),
        sa.Column('step_order', sa.Integer(), nullable=False),
        sa.Column('state_delta', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('started_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('finished_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['run_id'], ['agent_graph_runs.id'], ondelete='CASCADE'),
        sa.CheckConstraint('step_order > 0', name='agent_graph_run_steps_step_order_positive'),
        sa.CheckConstraint('finished_at IS NULL OR finished_at >= started_at', name='agent_graph_run_steps_finished_after_started')
    )
    op.create_index('ix_agent_graph_run_steps_run_id', 'agent_graph_run_steps', ['run_id'], unique=False)
    op.create_index('agent_graph_run_steps_run_id_step_order_uidx', 'agent_graph_run_steps', ['run_id', 'step_order'], unique=True)


def downgrade() -> None:
    # ========================================================================
    # DROP TABLES (in reverse dependency order)
    # ========================================================================
    op.drop_table('agent_graph_run_steps')
    op.drop_table('agent_graph_runs')
    op.drop_table('agent_graph_edges')
    op.drop_table('agent_graph_node_tools')
    op.drop_table('agent_graph_nodes')
    op.drop_table('agent_graphs')
    op.drop_table('tools')
    op.drop_table('models')
