# models.py - Database models for the Humanitarian Report System
# - UUID string primary keys everywhere
# - Organisation-scoped reports with an ordered, owned section list
# - Export attempts tracked one row per call (PROCESSING -> COMPLETED|FAILED)
# - Numbered version snapshots per report
# - Append-only audit log

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, Integer,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, PyEnum):
    SUPER_ADMIN = "super_admin"
    ORG_ADMIN = "org_admin"
    MANAGER = "manager"
    COORDINATOR = "coordinator"
    FIELD_WORKER = "field_worker"
    VIEWER = "viewer"


class ReportStatus(str, PyEnum):
    DRAFT = "DRAFT"
    IN_REVIEW = "IN_REVIEW"
    APPROVED = "APPROVED"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"


class ExportFormat(str, PyEnum):
    EXCEL = "EXCEL"
    WORD = "WORD"
    HTML = "HTML"
    PDF = "PDF"


class ExportStatus(str, PyEnum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class AssessmentType(str, PyEnum):
    RAPID = "RAPID"
    DETAILED = "DETAILED"
    SECTORAL = "SECTORAL"
    MULTI_SECTORAL = "MULTI_SECTORAL"
    MONITORING = "MONITORING"


class AuditAction(str, PyEnum):
    CREATE_REPORT = "CREATE_REPORT"
    UPDATE_REPORT = "UPDATE_REPORT"
    DELETE_REPORT = "DELETE_REPORT"
    CREATE_SECTION = "CREATE_SECTION"
    UPDATE_SECTION = "UPDATE_SECTION"
    DELETE_SECTION = "DELETE_SECTION"
    REORDER_SECTIONS = "REORDER_SECTIONS"
    EXPORT_REPORT = "EXPORT_REPORT"
    SHARE_REPORT = "SHARE_REPORT"
    ROTATE_SHARE_TOKEN = "ROTATE_SHARE_TOKEN"
    CREATE_VERSION = "CREATE_VERSION"
    AUTO_SAVE_VERSION = "AUTO_SAVE_VERSION"
    RESTORE_VERSION = "RESTORE_VERSION"


# ============================================================
# ORGANISATIONS
# ============================================================

class Organisation(Base):
    __tablename__ = "organisations"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False, index=True)
    slug = Column(String, unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    logo_url = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    users = relationship("User", back_populates="organisation")
    reports = relationship("Report", back_populates="organisation")


# ============================================================
# USERS
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    email = Column(String, unique=True, nullable=False, index=True)
    first_name = Column(String, nullable=False, default="")
    last_name = Column(String, nullable=False, default="")
    role = Column(SQLEnum(UserRole), default=UserRole.VIEWER, nullable=False, index=True)
    organisation_id = Column(String, ForeignKey("organisations.id"), nullable=False, index=True)
    is_active = Column(Boolean, default=True, index=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    organisation = relationship("Organisation", back_populates="users")

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.email

    __table_args__ = (
        Index("idx_user_org_active", "organisation_id", "is_active"),
    )


# ============================================================
# REPORTS
# ============================================================

class Report(Base):
    __tablename__ = "reports"

    id = Column(String, primary_key=True, default=new_uuid)
    organisation_id = Column(String, ForeignKey("organisations.id"), nullable=False, index=True)
    author_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    slug = Column(String, nullable=False)  # derived once at creation, never recomputed
    description = Column(Text, nullable=True)
    status = Column(SQLEnum(ReportStatus), default=ReportStatus.DRAFT, nullable=False, index=True)
    is_public = Column(Boolean, default=False, nullable=False)
    share_token = Column(String, unique=True, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    organisation = relationship("Organisation", back_populates="reports")
    author = relationship("User")
    sections = relationship(
        "ReportSection",
        back_populates="report",
        order_by="ReportSection.order",
        cascade="all, delete-orphan",
    )
    assessments = relationship("Assessment", back_populates="report", cascade="all, delete-orphan")
    exports = relationship("ReportExport", back_populates="report", cascade="all, delete-orphan")
    versions = relationship("ReportVersion", back_populates="report", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("organisation_id", "slug", name="uq_report_org_slug"),
        Index("idx_report_org_status", "organisation_id", "status"),
    )


class ReportSection(Base):
    """One typed content block of a report. `type` holds a SectionType value."""
    __tablename__ = "report_sections"

    id = Column(String, primary_key=True, default=new_uuid)
    report_id = Column(String, ForeignKey("reports.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    type = Column(String, nullable=False)
    content = Column(JSON, nullable=False, default=dict)
    order = Column(Integer, nullable=False)
    is_visible = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    report = relationship("Report", back_populates="sections")

    __table_args__ = (
        UniqueConstraint("report_id", "order", name="uq_section_report_order"),
    )


# ============================================================
# VERSIONS (immutable snapshots of a report and its sections)
# ============================================================

class ReportVersion(Base):
    __tablename__ = "report_versions"

    id = Column(String, primary_key=True, default=new_uuid)
    report_id = Column(String, ForeignKey("reports.id", ondelete="CASCADE"), nullable=False, index=True)
    version = Column(Integer, nullable=False)
    change_type = Column(String, nullable=False)  # version_history.ChangeType value
    data = Column(JSON, nullable=False)
    changes = Column(JSON, nullable=True)
    message = Column(Text, nullable=True)
    content_hash = Column(String, nullable=False)
    created_by = Column(String, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    report = relationship("Report", back_populates="versions")

    __table_args__ = (
        UniqueConstraint("report_id", "version", name="uq_version_report_version"),
    )


# ============================================================
# ASSESSMENTS (owned by the sectoral modules, read-only here)
# ============================================================

class Assessment(Base):
    __tablename__ = "report_assessments"

    id = Column(String, primary_key=True, default=new_uuid)
    report_id = Column(String, ForeignKey("reports.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(SQLEnum(AssessmentType), nullable=False)
    location = Column(String, nullable=False)
    affected_people = Column(Integer, nullable=True)
    households = Column(Integer, nullable=True)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    report = relationship("Report", back_populates="assessments")


# ============================================================
# EXPORT RECORDS
# ============================================================

class ReportExport(Base):
    __tablename__ = "report_exports"

    id = Column(String, primary_key=True, default=new_uuid)
    report_id = Column(String, ForeignKey("reports.id", ondelete="CASCADE"), nullable=False, index=True)
    requested_by = Column(String, ForeignKey("users.id"), nullable=True)
    format = Column(SQLEnum(ExportFormat), nullable=False)
    status = Column(SQLEnum(ExportStatus), default=ExportStatus.PROCESSING, nullable=False, index=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    report = relationship("Report", back_populates="exports")

    __table_args__ = (
        Index("idx_export_report_created", "report_id", "created_at"),
    )


# ============================================================
# AUDIT LOGS (Append-only - never update or delete)
# ============================================================

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, default=new_uuid)
    timestamp = Column(DateTime(timezone=True), default=utcnow, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)
    organisation_id = Column(String, nullable=False, index=True)
    action = Column(String, nullable=False, index=True)
    entity = Column(String, nullable=False)
    entity_id = Column(String, nullable=False)
    details = Column(JSON, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    request_id = Column(String, index=True, unique=True, default=new_uuid)

    __table_args__ = (
        Index("idx_audit_org_timestamp", "organisation_id", "timestamp"),
        Index("idx_audit_entity", "entity", "entity_id"),
    )
