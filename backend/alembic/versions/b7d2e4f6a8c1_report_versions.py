"""Report version history

Revision ID: b7d2e4f6a8c1
Revises: a1f3c5e7b9d2
Create Date: 2026-10-19 00:00:00.000000

Creates 1 table:
- report_versions (numbered snapshots of a report and its sections)
"""
from alembic import op
import sqlalchemy as sa

revision = 'b7d2e4f6a8c1'
down_revision = 'a1f3c5e7b9d2'
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ---- report_versions ----
    op.create_table(
        'report_versions',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('report_id', sa.String(), sa.ForeignKey('reports.id', ondelete='CASCADE'), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('change_type', sa.String(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('changes', sa.JSON(), nullable=True),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('content_hash', sa.String(), nullable=False),
        sa.Column('created_by', sa.String(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('report_id', 'version', name='uq_version_report_version'),
    )
    op.create_index('ix_report_versions_report_id', 'report_versions', ['report_id'])
    op.create_index('ix_report_versions_created_at', 'report_versions', ['created_at'])


def downgrade() -> None:
    op.drop_table('report_versions')
