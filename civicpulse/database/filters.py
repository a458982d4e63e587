"""
Typed Query Filters

Each list endpoint takes a filter dataclass with independently optional
fields. The same object:
- compiles to WHERE clauses on a SQLAlchemy select (bound parameters only)
- yields the cache key components, so the key and the query can never
  disagree about which filters are active

"all", "" and None mean "no filter" everywhere.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Type, TypeVar

from sqlalchemy import Select, func

from civicpulse.errors import ValidationError
from .models import PriorityTier, Report, ReportStatus, AdminRole

E = TypeVar("E")


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip().lower() in ("", "all"))


def parse_bool(value: Any, field_name: str) -> Optional[bool]:
    """Parse a query-string boolean; "all" or missing means no filter."""
    if _blank(value):
        return None
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "1", "yes"):
        return True
    if text in ("false", "0", "no"):
        return False
    raise ValidationError(f"Invalid value for {field_name}: {value}")


def parse_enum(enum_cls: Type[E], value: Any, field_name: str) -> Optional[E]:
    if _blank(value):
        return None
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {field_name} '{value}'. Allowed: {allowed}")


def parse_text(value: Any) -> Optional[str]:
    if _blank(value):
        return None
    return str(value).strip()


@dataclass(frozen=True)
class ReportFilter:
    """Filters shared by the report list endpoints."""
    is_resolved: Optional[bool] = None
    category: Optional[str] = None
    priority: Optional[PriorityTier] = None
    department: Optional[str] = None
    status: Optional[ReportStatus] = None

    @classmethod
    def parse(
        cls,
        is_resolved: Any = None,
        category: Any = None,
        priority: Any = None,
        department: Any = None,
        status: Any = None,
    ) -> "ReportFilter":
        return cls(
            is_resolved=parse_bool(is_resolved, "isResolved"),
            category=parse_text(category),
            priority=parse_enum(PriorityTier, priority, "priority"),
            department=parse_text(department),
            status=parse_enum(ReportStatus, status, "status"),
        )

    def apply(self, stmt: Select) -> Select:
        if self.is_resolved is not None:
            stmt = stmt.where(Report.is_resolved.is_(self.is_resolved))
        if self.category is not None:
            stmt = stmt.where(Report.category == self.category)
        if self.priority is not None:
            stmt = stmt.where(Report.priority == self.priority)
        if self.department is not None:
            stmt = stmt.where(func.lower(Report.department) == self.department.lower())
        if self.status is not None:
            stmt = stmt.where(Report.status == self.status)
        return stmt

    def cache_components(self) -> Dict[str, Any]:
        return {
            "resolved": self.is_resolved,
            "category": self.category,
            "priority": self.priority,
            "department": self.department.lower() if self.department else None,
            "status": self.status,
        }


@dataclass(frozen=True)
class AdminReportScope:
    """Who is asking for the admin report list. Viewers only see their department."""
    admin_id: str
    role: AdminRole
    department: Optional[str]

    def apply(self, stmt: Select) -> Select:
        if self.role == AdminRole.VIEWER:
            stmt = stmt.where(func.lower(Report.department) == (self.department or "").lower())
        return stmt

    def cache_components(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            # Role and department decide visibility; department matches case-insensitively
            "scope_department": (self.department or "none").lower(),
        }


@dataclass(frozen=True)
class SocialPostFilter:
    category: Optional[str] = None
    priority: Optional[PriorityTier] = None

    @classmethod
    def parse(cls, category: Any = None, priority: Any = None) -> "SocialPostFilter":
        return cls(
            category=parse_text(category),
            priority=parse_enum(PriorityTier, priority, "priority"),
        )

    def apply(self, stmt: Select) -> Select:
        if self.category is not None:
            stmt = stmt.where(Report.category == self.category)
        if self.priority is not None:
            stmt = stmt.where(Report.priority == self.priority)
        return stmt

    def cache_components(self) -> Dict[str, Any]:
        return {"category": self.category, "priority": self.priority}
