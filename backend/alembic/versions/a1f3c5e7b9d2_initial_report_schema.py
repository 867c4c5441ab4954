"""Initial report schema

Revision ID: a1f3c5e7b9d2
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates 7 tables:
- organisations, users (tenancy and principals)
- reports, report_sections (ordered typed content)
- report_assessments (read-only here, written by the sectoral modules)
- report_exports (one row per export attempt)
- audit_logs (append-only)
"""
from alembic import op
import sqlalchemy as sa

revision = 'a1f3c5e7b9d2'
down_revision = None
branch_labels = None
depends_on = None

USER_ROLES = ('SUPER_ADMIN', 'ORG_ADMIN', 'MANAGER', 'COORDINATOR', 'FIELD_WORKER', 'VIEWER')
REPORT_STATUSES = ('DRAFT', 'IN_REVIEW', 'APPROVED', 'PUBLISHED', 'ARCHIVED')
EXPORT_FORMATS = ('EXCEL', 'WORD', 'HTML', 'PDF')
EXPORT_STATUSES = ('PROCESSING', 'COMPLETED', 'FAILED')
ASSESSMENT_TYPES = ('RAPID', 'DETAILED', 'SECTORAL', 'MULTI_SECTORAL', 'MONITORING')


def upgrade() -> None:
    # ---- organisations ----
    op.create_table(
        'organisations',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('logo_url', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), default=True),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_organisations_name', 'organisations', ['name'])
    op.create_index('ix_organisations_slug', 'organisations', ['slug'], unique=True)
    op.create_index('ix_organisations_is_active', 'organisations', ['is_active'])

    # ---- users ----
    op.create_table(
        'users',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('first_name', sa.String(), nullable=False, server_default=''),
        sa.Column('last_name', sa.String(), nullable=False, server_default=''),
        sa.Column('role', sa.Enum(*USER_ROLES, name='userrole'), nullable=False),
        sa.Column('organisation_id', sa.String(), sa.ForeignKey('organisations.id'), nullable=False),
        sa.Column('is_active', sa.Boolean(), default=True),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_organisation_id', 'users', ['organisation_id'])
    op.create_index('ix_users_is_active', 'users', ['is_active'])
    op.create_index('ix_users_created_at', 'users', ['created_at'])
    op.create_index('idx_user_org_active', 'users', ['organisation_id', 'is_active'])

    # ---- reports ----
    op.create_table(
        'reports',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('organisation_id', sa.String(), sa.ForeignKey('organisations.id'), nullable=False),
        sa.Column('author_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.Enum(*REPORT_STATUSES, name='reportstatus'), nullable=False),
        sa.Column('is_public', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('share_token', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organisation_id', 'slug', name='uq_report_org_slug'),
    )
    op.create_index('ix_reports_organisation_id', 'reports', ['organisation_id'])
    op.create_index('ix_reports_author_id', 'reports', ['author_id'])
    op.create_index('ix_reports_status', 'reports', ['status'])
    op.create_index('ix_reports_share_token', 'reports', ['share_token'], unique=True)
    op.create_index('ix_reports_created_at', 'reports', ['created_at'])
    op.create_index('idx_report_org_status', 'reports', ['organisation_id', 'status'])

    # ---- report_sections ----
    op.create_table(
        'report_sections',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('report_id', sa.String(), sa.ForeignKey('reports.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('content', sa.JSON(), nullable=False),
        sa.Column('order', sa.Integer(), nullable=False),
        sa.Column('is_visible', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('report_id', 'order', name='uq_section_report_order'),
    )
    op.create_index('ix_report_sections_report_id', 'report_sections', ['report_id'])

    # ---- report_assessments ----
    op.create_table(
        'report_assessments',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('report_id', sa.String(), sa.ForeignKey('reports.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.Enum(*ASSESSMENT_TYPES, name='assessmenttype'), nullable=False),
        sa.Column('location', sa.String(), nullable=False),
        sa.Column('affected_people', sa.Integer(), nullable=True),
        sa.Column('households', sa.Integer(), nullable=True),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_report_assessments_report_id', 'report_assessments', ['report_id'])

    # ---- report_exports ----
    op.create_table(
        'report_exports',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('report_id', sa.String(), sa.ForeignKey('reports.id', ondelete='CASCADE'), nullable=False),
        sa.Column('requested_by', sa.String(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('format', sa.Enum(*EXPORT_FORMATS, name='exportformat'), nullable=False),
        sa.Column('status', sa.Enum(*EXPORT_STATUSES, name='exportstatus'), nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_report_exports_report_id', 'report_exports', ['report_id'])
    op.create_index('ix_report_exports_status', 'report_exports', ['status'])
    op.create_index('ix_report_exports_created_at', 'report_exports', ['created_at'])
    op.create_index('idx_export_report_created', 'report_exports', ['report_id', 'created_at'])

    # ---- audit_logs ----
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True)),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('organisation_id', sa.String(), nullable=False),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('entity', sa.String(), nullable=False),
        sa.Column('entity_id', sa.String(), nullable=False),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(), nullable=True),
        sa.Column('user_agent', sa.String(), nullable=True),
        sa.Column('request_id', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_logs_timestamp', 'audit_logs', ['timestamp'])
    op.create_index('ix_audit_logs_user_id', 'audit_logs', ['user_id'])
    op.create_index('ix_audit_logs_organisation_id', 'audit_logs', ['organisation_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_request_id', 'audit_logs', ['request_id'], unique=True)
    op.create_index('idx_audit_org_timestamp', 'audit_logs', ['organisation_id', 'timestamp'])
    op.create_index('idx_audit_entity', 'audit_logs', ['entity', 'entity_id'])


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('report_exports')
    op.drop_table('report_assessments')
    op.drop_table('report_sections')
    op.drop_table('reports')
    op.drop_table('users')
    op.drop_table('organisations')
    for enum_name in ('exportstatus', 'exportformat', 'assessmenttype', 'reportstatus', 'userrole'):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
