"""
SQLAlchemy Models for CivicPulse

Tables:
- users, admins: citizens and municipal staff
- reports: geo-tagged civic issues with priority and resolution trail
- social_posts / social_votes / social_comments / social_views: the
  public feed spawned from reports
- work_logs: field-admin activity on assigned reports

Portable between PostgreSQL (production) and SQLite (local, tests):
ids are UUID strings and list columns are JSON.
"""

import enum
from uuid import uuid4

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, DateTime, Text,
    ForeignKey, Enum, Index, UniqueConstraint, JSON,
)
from sqlalchemy.orm import declarative_base, relationship

from civicpulse.utils.clock import utcnow

Base = declarative_base()


def new_id() -> str:
    return str(uuid4())


def _enum(enum_cls, name: str):
    """Store enum values (not member names) so raw SQL sees 'in_progress'."""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


# =============================================================================
# ENUMS
# =============================================================================

class PriorityTier(enum.Enum):
    """Urgency tier. Strictly ordered: low < medium < high < critical."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, PriorityTier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, PriorityTier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, PriorityTier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, PriorityTier):
            return NotImplemented
        return self.rank >= other.rank


_PRIORITY_ORDER = [PriorityTier.LOW, PriorityTier.MEDIUM, PriorityTier.HIGH, PriorityTier.CRITICAL]

# Request-only sentinel asking the scorer to pick the tier
AUTO_PRIORITY = "auto"


class ReportStatus(enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"


class AdminRole(enum.Enum):
    """Admin roles, lowest privilege first."""
    VIEWER = "viewer"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class VoteType(enum.Enum):
    UPVOTE = "upvote"
    DOWNVOTE = "downvote"


# =============================================================================
# PEOPLE
# =============================================================================

class User(Base):
    """Citizens who file reports"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    full_name = Column(String(255))
    email = Column(String(255))
    phone_number = Column(String(32), unique=True)
    profile_image_url = Column(Text)

    # Denormalized counters
    total_reports = Column(Integer, nullable=False, default=0)
    resolved_reports = Column(Integer, nullable=False, default=0)
    last_login = Column(DateTime)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    reports = relationship("Report", back_populates="user", foreign_keys="Report.user_id")


class Admin(Base):
    """Municipal staff. Soft-deleted via is_active."""
    __tablename__ = "admins"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), unique=True, nullable=False)
    full_name = Column(String(255))
    department = Column(String(255))
    role = Column(_enum(AdminRole, "admin_role"), nullable=False, default=AdminRole.VIEWER)
    is_active = Column(Boolean, nullable=False, default=True)
    last_login = Column(DateTime)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_admins_role_active", "role", "is_active"),
    )


# =============================================================================
# REPORTS
# =============================================================================

class Report(Base):
    """A geo-tagged civic issue"""
    __tablename__ = "reports"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    title = Column(String(500), nullable=False)
    description = Column(Text)
    category = Column(String(255))
    priority = Column(_enum(PriorityTier, "priority_tier"), nullable=False, default=PriorityTier.MEDIUM)
    status = Column(_enum(ReportStatus, "report_status"), nullable=False, default=ReportStatus.PENDING)

    media_urls = Column(JSON, default=list)
    audio_url = Column(Text)

    latitude = Column(Float)
    longitude = Column(Float)
    address = Column(Text)
    department = Column(String(255))

    # Assignment / field work
    assigned_admin_id = Column(String(36), ForeignKey("admins.id", ondelete="SET NULL"))
    work_started_at = Column(DateTime)
    work_completed_at = Column(DateTime)
    in_progress_photos = Column(JSON, default=list)
    time_spent_minutes = Column(Integer)
    materials_used = Column(JSON, default=list)

    # Resolution trail
    is_resolved = Column(Boolean, nullable=False, default=False)
    resolved_at = Column(DateTime)
    resolved_media_urls = Column(JSON, default=list)
    resolution_note = Column(Text)
    resolved_by_admin_id = Column(String(36), ForeignKey("admins.id", ondelete="SET NULL"))
    time_taken_to_resolve = Column(Integer)  # seconds

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="reports", foreign_keys=[user_id])
    assigned_admin = relationship("Admin", foreign_keys=[assigned_admin_id])
    resolved_by = relationship("Admin", foreign_keys=[resolved_by_admin_id])
    social_post = relationship(
        "SocialPost",
        back_populates="report",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    work_logs = relationship("WorkLog", cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (
        Index("idx_reports_unresolved_created", "is_resolved", "created_at"),
        Index("idx_reports_location", "latitude", "longitude"),
        Index("idx_reports_user", "user_id", "created_at"),
        Index("idx_reports_assigned", "assigned_admin_id"),
    )


class WorkLog(Base):
    """Field-admin activity entries on a report"""
    __tablename__ = "work_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    report_id = Column(String(36), ForeignKey("reports.id", ondelete="CASCADE"), nullable=False)
    admin_id = Column(String(36), ForeignKey("admins.id", ondelete="SET NULL"))
    action = Column(String(50), nullable=False)
    notes = Column(Text)
    photos = Column(JSON, default=list)
    location_lat = Column(Float)
    location_lng = Column(Float)
    created_at = Column(DateTime, default=utcnow)


# =============================================================================
# SOCIAL LAYER
# =============================================================================

class SocialPost(Base):
    """Public feed entry. Exactly one per report."""
    __tablename__ = "social_posts"

    id = Column(String(36), primary_key=True, default=new_id)
    report_id = Column(String(36), ForeignKey("reports.id", ondelete="CASCADE"), nullable=False, unique=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    is_public = Column(Boolean, nullable=False, default=True)
    is_anonymous = Column(Boolean, nullable=False, default=False)

    # Derived from social_votes / social_comments / social_views
    upvotes = Column(Integer, nullable=False, default=0)
    downvotes = Column(Integer, nullable=False, default=0)
    total_score = Column(Integer, nullable=False, default=0)
    comment_count = Column(Integer, nullable=False, default=0)
    share_count = Column(Integer, nullable=False, default=0)
    view_count = Column(Integer, nullable=False, default=0)

    is_trending = Column(Boolean, nullable=False, default=False)
    is_featured = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    report = relationship("Report", back_populates="social_post")
    user = relationship("User")
    votes = relationship("SocialVote", cascade="all, delete-orphan", passive_deletes=True)
    comments = relationship("SocialComment", cascade="all, delete-orphan", passive_deletes=True)
    views = relationship("SocialView", cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (
        Index("idx_social_posts_public_created", "is_public", "created_at"),
    )


class SocialVote(Base):
    __tablename__ = "social_votes"

    id = Column(String(36), primary_key=True, default=new_id)
    post_id = Column(String(36), ForeignKey("social_posts.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    vote_type = Column(_enum(VoteType, "vote_type"), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("post_id", "user_id", name="uq_social_votes_post_user"),
    )


class SocialComment(Base):
    __tablename__ = "social_comments"

    id = Column(String(36), primary_key=True, default=new_id)
    post_id = Column(String(36), ForeignKey("social_posts.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    parent_comment_id = Column(String(36), ForeignKey("social_comments.id", ondelete="CASCADE"))
    content = Column(Text, nullable=False)
    is_anonymous = Column(Boolean, nullable=False, default=False)
    upvotes = Column(Integer, nullable=False, default=0)
    downvotes = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User")

    __table_args__ = (
        Index("idx_social_comments_post", "post_id", "created_at"),
    )


class SocialView(Base):
    """One row per (post, user); anonymous views are not deduplicated."""
    __tablename__ = "social_views"

    id = Column(String(36), primary_key=True, default=new_id)
    post_id = Column(String(36), ForeignKey("social_posts.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"))
    ip_address = Column(String(64))
    user_agent = Column(Text)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("post_id", "user_id", name="uq_social_views_post_user"),
    )
