"""
Cache Invalidation Service

Event-driven cache invalidation, applied strictly after the mutating
transaction commits.

Principle: prefer correctness over cache efficiency. A pattern must
cover every key that could hold data the mutation made stale; purging
a little too much only costs a refill.

Events map to invalidation scope:
- REPORT_CREATED: owner's report lists, nearby lists, community stats, social feed
- REPORT_UPDATED: that report's detail, owner's lists, nearby and admin-side lists
- REPORT_RESOLVED / REPORT_DELETED: every report read path plus aggregates
- REPORT_ASSIGNED / REPORT_WORK_STARTED: detail, the assignees' lists, admin lists
- REPORT_PROGRESS_UPDATED: detail and the working admin's queue only
- POST_VOTED / COMMENT_ADDED / VIEW_TRACKED: social feed (and that post's comments)
- ADMIN_*: admin directory, the admin's profile, plus a short bypass window
- USER_UPDATED: every view that embeds a reporter's name
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, List, Optional, Tuple

from civicpulse.cache.base import KeyedCache
from civicpulse.cache.memory_cache import compile_glob
from civicpulse.cache.keys import (
    CacheKeyBuilder,
    CacheNamespace,
    REPORT_DETAIL,
    REPORT_NEARBY,
    REPORT_USER,
)


logger = logging.getLogger(__name__)

K = CacheKeyBuilder
NS = CacheNamespace


class CacheEvent(Enum):
    """Mutations that trigger cache invalidation."""

    # Report lifecycle
    REPORT_CREATED = "report_created"
    REPORT_UPDATED = "report_updated"
    REPORT_RESOLVED = "report_resolved"
    REPORT_DELETED = "report_deleted"
    REPORT_ASSIGNED = "report_assigned"
    REPORT_WORK_STARTED = "report_work_started"
    REPORT_PROGRESS_UPDATED = "report_progress_updated"

    # Social layer
    SOCIAL_POST_CREATED = "social_post_created"
    POST_VOTED = "post_voted"
    COMMENT_ADDED = "comment_added"
    VIEW_TRACKED = "view_tracked"

    # Admin directory
    ADMIN_CREATED = "admin_created"
    ADMIN_UPDATED = "admin_updated"
    ADMIN_DELETED = "admin_deleted"
    ADMIN_RESTORED = "admin_restored"

    # Users
    USER_UPDATED = "user_updated"


ADMIN_EVENTS = (
    CacheEvent.ADMIN_CREATED,
    CacheEvent.ADMIN_UPDATED,
    CacheEvent.ADMIN_DELETED,
    CacheEvent.ADMIN_RESTORED,
)


@dataclass(frozen=True)
class InvalidationPlan:
    """What one event purges: glob patterns plus bypass flags to arm."""
    event: CacheEvent
    patterns: Tuple[str, ...] = ()
    arm_bypass: Tuple[CacheNamespace, ...] = ()

    def covers(self, key: str) -> bool:
        """True when applying this plan would remove key."""
        return any(compile_glob(pattern).match(key) for pattern in self.patterns)


@dataclass
class InvalidationResult:
    """Result of a cache invalidation operation."""
    event: CacheEvent
    success: bool
    keys_invalidated: int
    bypass_armed: List[str] = field(default_factory=list)
    duration_ms: float = 0.0
    errors: List[str] = field(default_factory=list)


def _unique(items: List[str]) -> Tuple[str, ...]:
    return tuple(dict.fromkeys(item for item in items if item))


class InvalidationRouter:
    """
    Pure mapping from a mutation event (plus context) to an InvalidationPlan.

    Context keys used: report_id, owner_id, admin_id, assignee_id,
    previous_assignee_id, post_id, has_location.
    """

    def plan(self, event: CacheEvent, **context: Any) -> InvalidationPlan:
        report_id = context.get("report_id")
        owner_id = context.get("owner_id")
        admin_id = context.get("admin_id")
        post_id = context.get("post_id")

        patterns: List[str] = []
        arm: List[CacheNamespace] = []

        def owner_lists():
            # Unknown owner: fall back to every user's lists
            if owner_id is not None:
                patterns.append(K.pattern(NS.REPORTS, REPORT_USER, owner_id))
            else:
                patterns.append(K.pattern(NS.REPORTS, REPORT_USER))

        def report_detail():
            if report_id is not None:
                patterns.append(K.pattern(NS.REPORTS, REPORT_DETAIL, report_id))

        def social_counts_on_detail():
            # Report detail embeds vote, view and share counts
            if report_id is not None:
                report_detail()
            else:
                patterns.append(K.pattern(NS.REPORTS, REPORT_DETAIL))

        if event == CacheEvent.REPORT_CREATED:
            owner_lists()
            if context.get("has_location", True):
                patterns.append(K.pattern(NS.REPORTS, REPORT_NEARBY))
            # A new report also spawns a social post
            patterns.extend([
                K.pattern(NS.COMMUNITY_STATS),
                K.pattern(NS.SOCIAL_POSTS),
                K.pattern(NS.SOCIAL_STATS),
                K.pattern(NS.ADMIN_REPORTS),
            ])

        elif event == CacheEvent.REPORT_UPDATED:
            report_detail()
            owner_lists()
            patterns.extend([
                K.pattern(NS.REPORTS, REPORT_NEARBY),
                K.pattern(NS.ADMIN_REPORTS),
                K.pattern(NS.ASSIGNED_REPORTS),
                K.pattern(NS.SOCIAL_POSTS),
                K.pattern(NS.SOCIAL_STATS),
            ])

        elif event in (CacheEvent.REPORT_RESOLVED, CacheEvent.REPORT_DELETED):
            patterns.extend([
                K.pattern(NS.REPORTS),
                K.pattern(NS.ADMIN_REPORTS),
                K.pattern(NS.ASSIGNED_REPORTS),
                K.pattern(NS.SOCIAL_POSTS),
                K.pattern(NS.SOCIAL_STATS),
                K.pattern(NS.COMMUNITY_STATS),
            ])
            if event == CacheEvent.REPORT_DELETED:
                patterns.append(K.pattern(NS.SOCIAL_COMMENTS))

        elif event in (CacheEvent.REPORT_ASSIGNED, CacheEvent.REPORT_WORK_STARTED):
            report_detail()
            for assignee in (
                context.get("assignee_id"),
                context.get("previous_assignee_id"),
                admin_id,
            ):
                if assignee is not None:
                    patterns.append(K.pattern(NS.ASSIGNED_REPORTS, assignee))
            patterns.extend([
                K.pattern(NS.ADMIN_REPORTS),
                # Status shows on nearby lists and feed entries
                K.pattern(NS.REPORTS, REPORT_NEARBY),
                K.pattern(NS.SOCIAL_POSTS),
            ])
            owner_lists()

        elif event == CacheEvent.REPORT_PROGRESS_UPDATED:
            # Status is unchanged; only the work trail and photos move
            report_detail()
            if admin_id is not None:
                patterns.append(K.pattern(NS.ASSIGNED_REPORTS, admin_id))

        elif event in (CacheEvent.SOCIAL_POST_CREATED, CacheEvent.POST_VOTED, CacheEvent.VIEW_TRACKED):
            patterns.extend([
                K.pattern(NS.SOCIAL_POSTS),
                K.pattern(NS.SOCIAL_STATS),
            ])
            social_counts_on_detail()

        elif event == CacheEvent.COMMENT_ADDED:
            patterns.extend([
                K.pattern(NS.SOCIAL_POSTS),
                K.pattern(NS.SOCIAL_STATS),
            ])
            social_counts_on_detail()
            if post_id is not None:
                patterns.append(K.pattern(NS.SOCIAL_COMMENTS, post_id))
            else:
                patterns.append(K.pattern(NS.SOCIAL_COMMENTS))

        elif event in ADMIN_EVENTS:
            # Report details and admin lists embed assigned and resolving admin names
            patterns.extend([
                K.pattern(NS.ADMINS),
                K.pattern(NS.REPORTS, REPORT_DETAIL),
                K.pattern(NS.ADMIN_REPORTS),
            ])
            if admin_id is not None:
                patterns.extend([
                    K.pattern(NS.ADMIN_PROFILE, admin_id),
                    K.pattern(NS.ASSIGNED_REPORTS, admin_id),
                ])
            else:
                patterns.append(K.pattern(NS.ADMIN_PROFILE))
            # Role changes gate authorization; close the in-flight refill race
            arm.append(NS.ADMINS)

        elif event == CacheEvent.USER_UPDATED:
            # User names appear in most report views and in the feed
            owner_lists()
            patterns.extend([
                K.pattern(NS.REPORTS, REPORT_DETAIL),
                K.pattern(NS.REPORTS, REPORT_NEARBY),
                K.pattern(NS.ADMIN_REPORTS),
                K.pattern(NS.ASSIGNED_REPORTS),
                K.pattern(NS.SOCIAL_POSTS),
                K.pattern(NS.SOCIAL_COMMENTS),
            ])

        return InvalidationPlan(
            event=event,
            patterns=_unique(patterns),
            arm_bypass=tuple(dict.fromkeys(arm)),
        )


class CacheInvalidator:
    """
    Applies invalidation plans to a KeyedCache.

    Never raises: an invalidation failure is logged and reported in the
    result, and the already-committed data stays committed.
    """

    def __init__(
        self,
        cache: KeyedCache,
        router: Optional[InvalidationRouter] = None,
        bypass_window: timedelta = timedelta(seconds=30),
    ):
        self._cache = cache
        self._router = router or InvalidationRouter()
        self._bypass_window = bypass_window

    @property
    def router(self) -> InvalidationRouter:
        return self._router

    async def arm_bypass(self, namespace: CacheNamespace) -> str:
        """Set the bypass flag for namespace. Its value is the arming time."""
        flag = K.flag(namespace)
        await self._cache.set(flag, time.time(), self._bypass_window)
        return flag

    async def handle_event(self, event: CacheEvent, **context: Any) -> InvalidationResult:
        start_time = time.perf_counter()
        errors: List[str] = []
        keys_invalidated = 0
        armed: List[str] = []

        logger.info(f"Cache invalidation event: {event.value}, context={context}")

        try:
            plan = self._router.plan(event, **context)

            # Flag first, so reads racing the purge already skip the cache
            for namespace in plan.arm_bypass:
                armed.append(await self.arm_bypass(namespace))

            for pattern in plan.patterns:
                keys_invalidated += await self._cache.delete_pattern(pattern)

        except Exception as e:
            errors.append(str(e))
            logger.error(f"Cache invalidation error for {event.value}: {e}")

        duration = (time.perf_counter() - start_time) * 1000

        logger.info(
            f"Invalidation complete: {event.value}, {keys_invalidated} keys, "
            f"duration: {duration:.2f}ms"
        )

        return InvalidationResult(
            event=event,
            success=not errors,
            keys_invalidated=keys_invalidated,
            bypass_armed=armed,
            duration_ms=duration,
            errors=errors,
        )
