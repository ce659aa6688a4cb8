"""add editor snapshots

Revision ID: add_editor_snapshots_001
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'add_editor_snapshots_001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'editor_snapshots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(length=100), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),

        # Owner and flow
        sa.Column('user_id', sa.String(length=100), nullable=False, server_default=''),
        sa.Column('flow_key', sa.String(length=100), nullable=False),
        sa.Column('flow_id', sa.String(length=100), nullable=True),

        # Editor state
        sa.Column('view_state', sa.JSON(), nullable=False),
        sa.Column('draft', sa.JSON(), nullable=True),
        sa.Column('is_dirty', sa.Boolean(), nullable=False, server_default=sa.false()),

        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'user_id', 'flow_key', name='uq_editor_snapshots_owner_flow')
    )

    op.create_index('ix_editor_snapshots_id', 'editor_snapshots', ['id'])
    op.create_index('ix_editor_snapshots_tenant_id', 'editor_snapshots', ['tenant_id'])
    op.create_index('ix_editor_snapshots_user_id', 'editor_snapshots', ['user_id'])
    op.create_index('ix_editor_snapshots_flow_key', 'editor_snapshots', ['flow_key'])


def downgrade():
    op.drop_index('ix_editor_snapshots_flow_key', table_name='editor_snapshots')
    op.drop_index('ix_editor_snapshots_user_id', table_name='editor_snapshots')
    op.drop_index('ix_editor_snapshots_tenant_id', table_name='editor_snapshots')
    op.drop_index('ix_editor_snapshots_id', table_name='editor_snapshots')
    op.drop_table('editor_snapshots')
