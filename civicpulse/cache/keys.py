"""
Cache Key Construction

Deterministic keys for every cached read path:

    <namespace>:<scope...>:f=<filters>:p=<limit>.<offset>:u=<identity>

Rules:
- Namespaces are a closed set; a key always starts with "<namespace>:"
  so no namespace is a prefix of another key's namespace segment
- Filter values are normalized: None, "" and "all" are the same (omitted);
  booleans become true/false; collections are sorted
- Filter components are sorted by name, independent of input order
- Every variable component is percent-encoded, so ":" "*" "?" "[" "]"
  coming from user input can never forge a segment or a glob
- Identity is the caller only for personalized reads, otherwise "guest"
"""

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Mapping, Optional, Tuple, Union
from urllib.parse import quote


class CacheNamespace(str, Enum):
    """Top-level key namespaces. Values must stay pairwise distinct."""

    REPORTS = "reports"
    ADMIN_REPORTS = "admin_reports"
    ASSIGNED_REPORTS = "assigned_reports"
    SOCIAL_POSTS = "social_posts"
    SOCIAL_COMMENTS = "social_comments"
    SOCIAL_STATS = "social_stats"
    COMMUNITY_STATS = "community_stats"
    ADMINS = "admins"
    ADMIN_PROFILE = "admin_profile"
    CACHE_BYPASS = "cache_bypass"


# Sub-scopes under the reports namespace
REPORT_DETAIL = "detail"
REPORT_USER = "user"
REPORT_NEARBY = "nearby"

GUEST = "guest"
ALL = "all"


@dataclass(frozen=True)
class Pagination:
    limit: int
    offset: int = 0

    @classmethod
    def from_page(cls, page: int, limit: int) -> "Pagination":
        return cls(limit=limit, offset=max(page - 1, 0) * limit)

    def component(self) -> str:
        return f"{self.limit}.{self.offset}"


FilterInput = Union[None, Mapping[str, Any], Any]


def normalize_value(value: Any) -> Optional[str]:
    """Canonical string for a filter value, or None when it means "no filter"."""
    if value is None:
        return None
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(v for v in (normalize_value(item) for item in value) if v is not None)
        return ",".join(items) if items else None
    text = str(value).strip()
    if not text or text.lower() == ALL:
        return None
    return text


def _escape(text: str) -> str:
    return quote(text, safe="")


def _scope_component(value: Any) -> str:
    normalized = normalize_value(value)
    return _escape(normalized) if normalized is not None else ALL


def _filter_pairs(filters: FilterInput) -> List[Tuple[str, str]]:
    if filters is None:
        return []
    if hasattr(filters, "cache_components"):
        items = filters.cache_components().items()
    elif dataclasses.is_dataclass(filters):
        items = ((f.name, getattr(filters, f.name)) for f in dataclasses.fields(filters))
    else:
        items = filters.items()

    pairs = []
    for name, value in items:
        normalized = normalize_value(value)
        if normalized is not None:
            pairs.append((str(name), normalized))
    pairs.sort()
    return pairs


class CacheKeyBuilder:
    """Pure key and pattern construction. Holds no state."""

    @staticmethod
    def build(
        namespace: CacheNamespace,
        *scope: Any,
        filters: FilterInput = None,
        pagination: Optional[Pagination] = None,
        identity: Optional[Any] = None,
        personalized: bool = False,
    ) -> str:
        parts = [CacheNamespace(namespace).value]
        parts.extend(_scope_component(value) for value in scope)

        encoded_filters = ",".join(
            f"{_escape(name)}={_escape(value)}" for name, value in _filter_pairs(filters)
        )
        parts.append(f"f={encoded_filters}")
        parts.append(f"p={pagination.component() if pagination else ALL}")

        who = normalize_value(identity) if personalized else None
        parts.append(f"u={_escape(who) if who is not None else GUEST}")
        return ":".join(parts)

    @staticmethod
    def pattern(namespace: CacheNamespace, *scope: Any) -> str:
        """Glob matching every key under namespace (and optional scope prefix)."""
        parts = [CacheNamespace(namespace).value]
        parts.extend(_scope_component(value) for value in scope)
        parts.append("*")
        return ":".join(parts)

    @staticmethod
    def flag(namespace: CacheNamespace) -> str:
        """Key of the bypass flag guarding a namespace."""
        return f"{CacheNamespace.CACHE_BYPASS.value}:{CacheNamespace(namespace).value}"

    @staticmethod
    def coordinate(value: float) -> str:
        """Coordinates are bucketed to 3 decimals (about 110 m)."""
        return f"{round(float(value), 3):.3f}"
