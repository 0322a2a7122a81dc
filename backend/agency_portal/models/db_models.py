"""
Agency Portal - SQLAlchemy ORM Models
PostgreSQL database models for persistent storage
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, Integer, DateTime, Text, JSON, ForeignKey, Enum as SQLEnum, Date
from sqlalchemy.orm import relationship
from ..database import Base


# =============================================================================
# ENUMS FOR ENFORCEMENT SYSTEM
# =============================================================================

class CaseType(str, Enum):
    """Enforcement action types. Immutable once a case is created."""
    SUSPENSION = "suspension"
    WARNING = "warning"
    CANCELLATION = "cancellation"


class CaseStatus(str, Enum):
    """Statutory stages of an enforcement case."""
    PENDING = "pending"
    IN_EFFECT = "in_effect"
    REPRESENTATIONS_RECEIVED = "representations_received"
    DECISION_PENDING = "decision_pending"
    LIFTED = "lifted"
    CANCELLED = "cancelled"
    CLOSED = "closed"


TERMINAL_STATUSES = frozenset({CaseStatus.LIFTED, CaseStatus.CANCELLED, CaseStatus.CLOSED})


class RiskLevel(str, Enum):
    """Risk level assigned at case creation."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TimelineEventType(str, Enum):
    """Timeline entry markers."""
    COMPLETED = "completed"
    PENDING = "pending"
    URGENT = "urgent"


class NotificationStatus(str, Enum):
    """Persisted status of an external agency notification."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class WorkflowStage(str, Enum):
    """Stages that produce an input snapshot."""
    SUSPENSION = "suspension"
    WARNING = "warning"
    CANCELLATION = "cancellation"
    REVIEW = "review"
    REPRESENTATIONS = "representations"
    DECISION = "decision"


class UserRole(str, Enum):
    """Back-office roles."""
    ADMIN = "admin"
    SUPERVISOR = "supervisor"
    OPERATOR = "operator"


# Roles whose holders may approve and sign enforcement action
APPROVER_ROLES = (UserRole.SUPERVISOR.value,)


# =============================================================================
# PEOPLE
# =============================================================================

class UserDB(Base):
    """
    Back-office account.
    Supervisors approve enforcement actions; operators run the workflows.
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)  # UUID
    email = Column(String(255), unique=True, nullable=False, index=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=True)
    job_title = Column(String(255), nullable=True)  # e.g. "Head of Safeguarding"
    role = Column(String(20), nullable=False, default=UserRole.OPERATOR.value)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def display_name(self) -> str:
        name = self.full_name or self.username
        if self.job_title:
            return f"{name} ({self.job_title})"
        return name

    @property
    def can_approve(self) -> bool:
        return self.role in APPROVER_ROLES


class EmployeeDB(Base):
    """
    Registered childminder (the "provider" in enforcement terms).
    Owned by the registration side of the portal; read-only here.
    """
    __tablename__ = "employees"

    id = Column(String(36), primary_key=True)  # UUID
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True)
    local_authority = Column(String(255), nullable=True)
    service_type = Column(String(100), nullable=True)
    employment_status = Column(String(50), default="active")
    registration_ref = Column(String(100), nullable=True)

    # Address
    address_line1 = Column(String(255), nullable=True)
    address_line2 = Column(String(255), nullable=True)
    town_city = Column(String(100), nullable=True)
    county = Column(String(100), nullable=True)
    postcode = Column(String(20), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    cases = relationship("EnforcementCaseDB", back_populates="employee")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def address_dict(self) -> dict:
        return {
            "addressLine1": self.address_line1,
            "addressLine2": self.address_line2,
            "townCity": self.town_city,
            "county": self.county,
            "postcode": self.postcode,
        }


# =============================================================================
# ENFORCEMENT MODELS
# =============================================================================

class EnforcementCaseDB(Base):
    """
    One enforcement action (suspension, warning or cancellation) against a provider.
    Status only moves forward; date_closed is set exactly once on a terminal status.
    """
    __tablename__ = "enforcement_cases"

    id = Column(String(36), primary_key=True)  # UUID
    employee_id = Column(String(36), ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)

    type = Column(SQLEnum(CaseType), nullable=False)
    status = Column(SQLEnum(CaseStatus), nullable=False, default=CaseStatus.IN_EFFECT)
    risk_level = Column(SQLEnum(RiskLevel), nullable=False, default=RiskLevel.MEDIUM)

    # Justification captured at creation
    concern = Column(Text, nullable=True)
    risk_detail = Column(Text, nullable=True)
    risk_categories = Column(JSON, nullable=True, default=list)

    # Lifecycle dates
    deadline = Column(Date, nullable=True)  # Review / compliance / representations deadline
    date_created = Column(Date, nullable=False)
    date_closed = Column(Date, nullable=True)

    # Approving authority (name is derived from the supervisor record at commit)
    supervisor_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    supervisor_name = Column(String(255), nullable=True)

    reference_number = Column(String(100), nullable=True)  # Reference of the latest notice

    # Merged view of workflow input; per-stage snapshots live in enforcement_stages
    form_data = Column(JSON, nullable=True)

    # Optimistic concurrency
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    employee = relationship("EmployeeDB", back_populates="cases")
    timeline = relationship(
        "EnforcementTimelineDB", back_populates="case", cascade="all, delete-orphan",
        order_by="EnforcementTimelineDB.date",
    )
    notifications = relationship("EnforcementNotificationDB", back_populates="case", cascade="all, delete-orphan")
    stages = relationship("EnforcementStageDB", back_populates="case", cascade="all, delete-orphan")
    notices = relationship("EnforcementNoticeDB", back_populates="case", cascade="all, delete-orphan")


class EnforcementTimelineDB(Base):
    """
    Audit trail for a case.
    Append-only - rows are never updated or deleted.
    """
    __tablename__ = "enforcement_timeline"

    id = Column(String(36), primary_key=True)  # UUID
    case_id = Column(String(36), ForeignKey("enforcement_cases.id", ondelete="CASCADE"), nullable=False, index=True)

    event = Column(String(255), nullable=False)
    date = Column(Date, nullable=False)
    type = Column(SQLEnum(TimelineEventType), nullable=False)
    created_by = Column(String(255), nullable=True)  # NULL for system-scheduled entries

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    case = relationship("EnforcementCaseDB", back_populates="timeline")


class EnforcementNotificationDB(Base):
    """
    One row per (case, agency) pair.
    Custom recipients use agency codes of the form "custom-N".
    """
    __tablename__ = "enforcement_notifications"

    id = Column(String(36), primary_key=True)  # UUID
    case_id = Column(String(36), ForeignKey("enforcement_cases.id", ondelete="CASCADE"), nullable=False, index=True)

    agency = Column(String(50), nullable=False)  # LA, HMRC, DWP, Ofsted, custom-N
    agency_name = Column(String(255), nullable=False)
    agency_detail = Column(String(255), nullable=True)
    agency_email = Column(String(255), nullable=False)

    status = Column(SQLEnum(NotificationStatus), nullable=False, default=NotificationStatus.PENDING)
    error_message = Column(Text, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    sent_by = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    case = relationship("EnforcementCaseDB", back_populates="notifications")


class EnforcementStageDB(Base):
    """
    Immutable snapshot of the input captured by one workflow stage.
    """
    __tablename__ = "enforcement_stages"

    id = Column(String(36), primary_key=True)  # UUID
    case_id = Column(String(36), ForeignKey("enforcement_cases.id", ondelete="CASCADE"), nullable=False, index=True)

    stage = Column(SQLEnum(WorkflowStage), nullable=False)
    input = Column(JSON, nullable=False)
    created_by = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    case = relationship("EnforcementCaseDB", back_populates="stages")


class EnforcementNoticeDB(Base):
    """
    Notice issued to the provider (rendered text, not a PDF).
    """
    __tablename__ = "enforcement_notices"

    id = Column(String(36), primary_key=True)  # UUID
    case_id = Column(String(36), ForeignKey("enforcement_cases.id", ondelete="CASCADE"), nullable=False, index=True)

    notice_type = Column(String(50), nullable=False)  # SUS, WRN, CANC-INT, DEC-CANC, SUS-LIFT, SUS-EXT
    reference_number = Column(String(100), nullable=False)
    content = Column(Text, nullable=False)

    generated_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    case = relationship("EnforcementCaseDB", back_populates="notices")
