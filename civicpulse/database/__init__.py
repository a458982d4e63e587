"""
Database Module for CivicPulse

Provides:
- SQLAlchemy models for users, admins, reports and the social feed
- Session management with connection pooling
- Transaction helpers that map connectivity failures to StoreUnavailableError
- Typed filters compiled into queries and cache keys

Usage:
    from civicpulse.database import get_db_context, Report

    with get_db_context() as db:
        report = db.get(Report, report_id)
"""

from .models import (
    Base,
    AUTO_PRIORITY,
    # Enums
    PriorityTier,
    ReportStatus,
    AdminRole,
    VoteType,
    # Tables
    User,
    Admin,
    Report,
    WorkLog,
    SocialPost,
    SocialVote,
    SocialComment,
    SocialView,
)

from .session import (
    STORE_UNAVAILABLE_ERRORS,
    get_database_url,
    create_db_engine,
    get_engine,
    configure_engine,
    get_session_factory,
    make_session_factory,
    get_db,
    get_db_context,
    init_db,
    check_db_connection,
    get_db_stats,
    store_errors,
    transaction,
    run_in_transaction,
)

from .filters import (
    ReportFilter,
    AdminReportScope,
    SocialPostFilter,
    parse_bool,
    parse_enum,
    parse_text,
)

__all__ = [
    # Models
    "Base",
    "AUTO_PRIORITY",
    "PriorityTier",
    "ReportStatus",
    "AdminRole",
    "VoteType",
    "User",
    "Admin",
    "Report",
    "WorkLog",
    "SocialPost",
    "SocialVote",
    "SocialComment",
    "SocialView",
    # Session
    "STORE_UNAVAILABLE_ERRORS",
    "get_database_url",
    "create_db_engine",
    "get_engine",
    "configure_engine",
    "get_session_factory",
    "make_session_factory",
    "get_db",
    "get_db_context",
    "init_db",
    "check_db_connection",
    "get_db_stats",
    "store_errors",
    "transaction",
    "run_in_transaction",
    # Filters
    "ReportFilter",
    "AdminReportScope",
    "SocialPostFilter",
    "parse_bool",
    "parse_enum",
    "parse_text",
]
