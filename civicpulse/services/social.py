"""
Social Feed Handlers

Posts, votes, comments and views on top of reports.

Counters on social_posts are derived data. Each write locks the post row
and recomputes the affected counter from its source rows in the same
transaction, so concurrent votes cannot drift the totals.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from civicpulse.cache import (
    CacheEvent,
    CacheKeyBuilder,
    CacheNamespace,
    CachePolicy,
    CacheTTL,
    Pagination,
)
from civicpulse.database import (
    Report,
    SocialComment,
    SocialPost,
    SocialPostFilter,
    SocialView,
    SocialVote,
    User,
    VoteType,
    transaction,
)
from civicpulse.errors import (
    AuthenticationRequiredError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from civicpulse.scoring import bounding_box, haversine_meters, validate_coordinates
from civicpulse.utils.clock import utcnow

from .base import BaseService
from .serializers import comment_dict, feed_item, iso, post_dict

logger = logging.getLogger(__name__)

K = CacheKeyBuilder
NS = CacheNamespace

FEED_TABS = ("all", "trending", "nearby", "my_activity")
DEFAULT_FEED_RADIUS_KM = 10.0

# A post trends once any of these is exceeded
TRENDING_MIN_SCORE = 5
TRENDING_MIN_COMMENTS = 3
TRENDING_MIN_VIEWS = 50

COMMENT_SORT_FIELDS = {
    "created_at": SocialComment.created_at,
    "upvotes": SocialComment.upvotes,
    "downvotes": SocialComment.downvotes,
}
COMMENT_SORT_ORDERS = ("asc", "desc")


def _require_user(user_id: Optional[str]):
    if not user_id:
        raise AuthenticationRequiredError("User authentication required")


def _trending(post: SocialPost) -> bool:
    return (
        (post.total_score or 0) > TRENDING_MIN_SCORE
        or (post.comment_count or 0) > TRENDING_MIN_COMMENTS
        or (post.view_count or 0) > TRENDING_MIN_VIEWS
    )


class SocialService(BaseService):

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _locked_post(self, db: Session, post_id: str) -> SocialPost:
        post = db.scalar(select(SocialPost).where(SocialPost.id == post_id).with_for_update())
        if post is None:
            raise NotFoundError("Post not found")
        return post

    def _existing_user(self, db: Session, user_id: str) -> User:
        user = db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    @staticmethod
    def _recount_votes(db: Session, post: SocialPost):
        db.flush()
        counts = dict(
            db.execute(
                select(SocialVote.vote_type, func.count(SocialVote.id))
                .where(SocialVote.post_id == post.id)
                .group_by(SocialVote.vote_type)
            ).all()
        )
        post.upvotes = counts.get(VoteType.UPVOTE, 0)
        post.downvotes = counts.get(VoteType.DOWNVOTE, 0)
        post.total_score = post.upvotes - post.downvotes
        post.is_trending = _trending(post)

    # =========================================================================
    # WRITES
    # =========================================================================

    async def create_post(
        self,
        db: Session,
        report_id: Optional[str],
        user_id: Optional[str],
        is_public: bool = True,
        is_anonymous: bool = False,
    ) -> Dict[str, Any]:
        if not report_id:
            raise ValidationError("Report ID is required")
        _require_user(user_id)

        with transaction(db):
            report = db.scalar(select(Report).where(Report.id == report_id, Report.user_id == user_id))
            if report is None:
                raise NotFoundError("Report not found or access denied")
            if db.scalar(select(SocialPost.id).where(SocialPost.report_id == report_id)) is not None:
                raise ConflictError("Social post already exists for this report")

            post = SocialPost(
                report_id=report.id,
                user_id=user_id,
                is_public=is_public,
                is_anonymous=is_anonymous,
            )
            db.add(post)

        await self.after_commit(CacheEvent.SOCIAL_POST_CREATED, report_id=post.report_id, post_id=post.id)
        return {"message": "Social post created successfully", "post": post_dict(post)}

    async def vote(
        self,
        db: Session,
        post_id: str,
        user_id: Optional[str],
        vote_type: Optional[str],
    ) -> Dict[str, Any]:
        """
        Toggle-style vote: same type again removes it, the other type
        switches it.
        """
        _require_user(user_id)
        try:
            wanted = VoteType(str(vote_type).strip().lower())
        except ValueError:
            raise ValidationError("Vote type must be 'upvote' or 'downvote'")

        with transaction(db):
            post = self._locked_post(db, post_id)
            self._existing_user(db, user_id)

            existing = db.scalar(
                select(SocialVote).where(SocialVote.post_id == post.id, SocialVote.user_id == user_id)
            )
            if existing is None:
                db.add(SocialVote(post_id=post.id, user_id=user_id, vote_type=wanted))
                action, user_vote = f"added_{wanted.value}", wanted.value
            elif existing.vote_type == wanted:
                db.delete(existing)
                action, user_vote = f"removed_{wanted.value}", None
            else:
                existing.vote_type = wanted
                existing.created_at = utcnow()
                action, user_vote = f"changed_to_{wanted.value}", wanted.value

            self._recount_votes(db, post)

        await self.after_commit(CacheEvent.POST_VOTED, post_id=post.id, report_id=post.report_id)
        return {
            "message": f"Vote {action.replace('_', ' ', 1)} successfully",
            "upvoteCount": post.upvotes,
            "downvoteCount": post.downvotes,
            "userVote": user_vote,
            "post": {
                "id": post.id,
                "upvotes": post.upvotes,
                "downvotes": post.downvotes,
                "totalScore": post.total_score,
            },
            "action": action,
        }

    async def add_comment(
        self,
        db: Session,
        post_id: str,
        user_id: Optional[str],
        content: Optional[str],
        parent_comment_id: Optional[str] = None,
        is_anonymous: bool = False,
    ) -> Dict[str, Any]:
        _require_user(user_id)
        if not content or not content.strip():
            raise ValidationError("Comment content is required")

        with transaction(db):
            post = self._locked_post(db, post_id)
            self._existing_user(db, user_id)

            if parent_comment_id:
                parent = db.scalar(
                    select(SocialComment.id)
                    .where(SocialComment.id == parent_comment_id, SocialComment.post_id == post.id)
                )
                if parent is None:
                    raise NotFoundError("Parent comment not found")

            comment = SocialComment(
                post_id=post.id,
                user_id=user_id,
                parent_comment_id=parent_comment_id or None,
                content=content.strip(),
                is_anonymous=is_anonymous,
            )
            db.add(comment)
            db.flush()

            post.comment_count = db.scalar(
                select(func.count(SocialComment.id)).where(SocialComment.post_id == post.id)
            )
            post.is_trending = _trending(post)

        await self.after_commit(CacheEvent.COMMENT_ADDED, post_id=post.id, report_id=post.report_id)
        return {"message": "Comment added successfully", "comment": comment_dict(comment)}

    async def track_view(
        self,
        db: Session,
        post_id: str,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Record a view. A known user counts once per post; anonymous views always count."""
        counted = False
        with transaction(db):
            post = self._locked_post(db, post_id)

            already_seen = user_id is not None and db.scalar(
                select(SocialView.id).where(SocialView.post_id == post.id, SocialView.user_id == user_id)
            ) is not None

            if not already_seen:
                if user_id is not None:
                    self._existing_user(db, user_id)
                db.add(SocialView(
                    post_id=post.id,
                    user_id=user_id,
                    ip_address=ip_address,
                    user_agent=user_agent,
                ))
                db.flush()
                post.view_count = db.scalar(
                    select(func.count(SocialView.id)).where(SocialView.post_id == post.id)
                )
                post.is_trending = _trending(post)
                counted = True

        if counted:
            await self.after_commit(CacheEvent.VIEW_TRACKED, post_id=post.id, report_id=post.report_id)
        return {"message": "View tracked successfully", "counted": counted}

    # =========================================================================
    # READS
    # =========================================================================

    async def list_posts(
        self,
        db: Session,
        tab: str = "all",
        filters: Optional[SocialPostFilter] = None,
        pagination: Pagination = Pagination(limit=20),
        user_id: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        radius_km: float = DEFAULT_FEED_RADIUS_KM,
        policy: Optional[CachePolicy] = None,
    ) -> Dict[str, Any]:
        """
        Public feed.

        Tabs: all (newest), trending (score, then newest), nearby (within
        radius_km of a point) and my_activity (the caller's own posts).
        Responses carry the caller's vote, so a known caller gets a
        personalized key.
        """
        tab = (tab or "all").strip().lower()
        if tab not in FEED_TABS:
            raise ValidationError(f"Invalid tab '{tab}'. Allowed: {', '.join(FEED_TABS)}")
        filters = filters or SocialPostFilter()

        location: Dict[str, Any] = {}
        if tab == "nearby":
            if latitude is None or longitude is None:
                raise ValidationError("Latitude and longitude are required for the nearby tab")
            try:
                latitude, longitude = validate_coordinates(latitude, longitude)
            except (TypeError, ValueError) as e:
                raise ValidationError(f"Invalid coordinates: {e}")
            if radius_km is None or radius_km <= 0:
                raise ValidationError("Radius must be positive")
            location = {
                "lat": K.coordinate(latitude),
                "lng": K.coordinate(longitude),
                "radius_km": float(radius_km),
            }
        if tab == "my_activity":
            _require_user(user_id)

        key = K.build(
            NS.SOCIAL_POSTS, tab,
            filters={**filters.cache_components(), **location},
            pagination=pagination,
            identity=user_id,
            personalized=user_id is not None,
        )

        def load():
            stmt = (
                filters.apply(
                    select(SocialPost)
                    .join(Report, SocialPost.report_id == Report.id)
                    .where(SocialPost.is_public.is_(True))
                )
                .options(selectinload(SocialPost.report), selectinload(SocialPost.user))
            )

            if tab == "trending":
                stmt = stmt.where(or_(
                    SocialPost.total_score > TRENDING_MIN_SCORE,
                    SocialPost.comment_count > TRENDING_MIN_COMMENTS,
                    SocialPost.view_count > TRENDING_MIN_VIEWS,
                )).order_by(SocialPost.total_score.desc(), SocialPost.created_at.desc())
            else:
                stmt = stmt.order_by(SocialPost.created_at.desc())

            if tab == "my_activity":
                stmt = stmt.where(SocialPost.user_id == user_id)

            if tab == "nearby":
                centre_lat, centre_lng = float(location["lat"]), float(location["lng"])
                radius_m = location["radius_km"] * 1000
                min_lat, max_lat, min_lng, max_lng = bounding_box(centre_lat, centre_lng, radius_m)
                stmt = stmt.where(Report.latitude.between(min_lat, max_lat))
                if min_lng is not None:
                    stmt = stmt.where(Report.longitude.between(min_lng, max_lng))
                posts = [
                    post for post in db.scalars(stmt).all()
                    if haversine_meters(centre_lat, centre_lng, post.report.latitude, post.report.longitude) <= radius_m
                ]
                posts = posts[pagination.offset:pagination.offset + pagination.limit]
            else:
                posts = db.scalars(stmt.limit(pagination.limit).offset(pagination.offset)).all()

            votes: Dict[str, str] = {}
            if user_id and posts:
                votes = {
                    post_id: vote.value
                    for post_id, vote in db.execute(
                        select(SocialVote.post_id, SocialVote.vote_type)
                        .where(SocialVote.user_id == user_id)
                        .where(SocialVote.post_id.in_([p.id for p in posts]))
                    ).all()
                }

            return {
                "posts": [feed_item(p, votes.get(p.id)) for p in posts],
                "pagination": {
                    "limit": pagination.limit,
                    "offset": pagination.offset,
                    "hasMore": len(posts) == pagination.limit,
                    "total": len(posts),
                },
            }

        data, cached = await self.read_through(key, load, CacheTTL.SOCIAL_POSTS, policy)
        return {**data, "cached": cached}

    async def list_comments(
        self,
        db: Session,
        post_id: str,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        policy: Optional[CachePolicy] = None,
    ) -> Dict[str, Any]:
        if page < 1 or limit < 1:
            raise ValidationError("Page and limit must be positive")
        # Unknown sort options fall back to newest first
        sort_by = sort_by if sort_by in COMMENT_SORT_FIELDS else "created_at"
        sort_order = sort_order if sort_order in COMMENT_SORT_ORDERS else "desc"

        pagination = Pagination.from_page(page, limit)
        key = K.build(
            NS.SOCIAL_COMMENTS, post_id,
            filters={"sort": sort_by, "order": sort_order},
            pagination=pagination,
        )

        def load():
            total = db.scalar(
                select(func.count(SocialComment.id)).where(SocialComment.post_id == post_id)
            ) or 0
            column = COMMENT_SORT_FIELDS[sort_by]
            ordering = column.asc() if sort_order == "asc" else column.desc()
            comments = db.scalars(
                select(SocialComment)
                .where(SocialComment.post_id == post_id)
                .options(selectinload(SocialComment.user))
                .order_by(ordering)
                .limit(pagination.limit)
                .offset(pagination.offset)
            ).all()
            total_pages = -(-total // limit)
            return {
                "comments": [comment_dict(c) for c in comments],
                "totalCount": total,
                "currentPage": page,
                "totalPages": total_pages,
                "hasMore": page < total_pages,
            }

        data, cached = await self.read_through(key, load, CacheTTL.SOCIAL_COMMENTS, policy)
        return {**data, "cached": cached}

    async def feed_stats(self, db: Session, policy: Optional[CachePolicy] = None) -> Dict[str, Any]:
        """Aggregates over public posts."""
        key = K.build(NS.SOCIAL_STATS, "feed")

        def load():
            now = utcnow()
            public = select(SocialPost).where(SocialPost.is_public.is_(True)).subquery()
            row = db.execute(
                select(
                    func.count(public.c.id),
                    func.coalesce(func.sum(public.c.upvotes), 0),
                    func.coalesce(func.sum(public.c.downvotes), 0),
                    func.coalesce(func.sum(public.c.comment_count), 0),
                    func.coalesce(func.sum(public.c.share_count), 0),
                    func.coalesce(func.sum(public.c.view_count), 0),
                    func.count(func.distinct(public.c.user_id)),
                    func.avg(public.c.total_score),
                )
            ).one()
            total, upvotes, downvotes, comments, shares, views, active_users, avg_score = row

            def count(*conditions) -> int:
                return db.scalar(
                    select(func.count(SocialPost.id))
                    .join(Report, SocialPost.report_id == Report.id)
                    .where(SocialPost.is_public.is_(True), *conditions)
                ) or 0

            engagement = round((upvotes + comments) / total * 100, 2) if total else 0
            return {
                "totalPosts": total,
                "postsToday": count(SocialPost.created_at >= now - timedelta(hours=24)),
                "postsThisWeek": count(SocialPost.created_at >= now - timedelta(days=7)),
                "totalUpvotes": int(upvotes),
                "totalDownvotes": int(downvotes),
                "totalComments": int(comments),
                "totalShares": int(shares),
                "totalViews": int(views),
                "positivePosts": count(SocialPost.total_score > 0),
                "trendingPosts": count(SocialPost.is_trending.is_(True)),
                "activeUsers": active_users,
                "resolvedIssues": count(Report.is_resolved.is_(True)),
                "avgScore": float(avg_score) if avg_score is not None else 0,
                "engagementRate": engagement,
            }

        data, cached = await self.read_through(key, load, CacheTTL.SOCIAL_STATS, policy)
        return {"stats": data, "cached": cached}

    async def report_social_stats(
        self,
        db: Session,
        report_id: str,
        policy: Optional[CachePolicy] = None,
    ) -> Dict[str, Any]:
        """Counters for one report's public post; defaults when it has none."""
        key = K.build(NS.SOCIAL_STATS, "report", report_id)

        def load():
            post = db.scalar(
                select(SocialPost)
                .where(SocialPost.report_id == report_id, SocialPost.is_public.is_(True))
                .options(selectinload(SocialPost.report))
            )
            if post is None:
                # Not cached: a post may be created at any moment
                return None
            report = post.report
            return {
                "reportId": post.report_id,
                "socialPostId": post.id,
                "hasSocialPost": True,
                "upvotes": post.upvotes or 0,
                "downvotes": post.downvotes or 0,
                "totalScore": post.total_score or 0,
                "commentCount": post.comment_count or 0,
                "shareCount": post.share_count or 0,
                "viewCount": post.view_count or 0,
                "isTrending": bool(post.is_trending),
                "isFeatured": bool(post.is_featured),
                "socialPostCreatedAt": iso(post.created_at),
                "reportTitle": report.title if report else None,
                "reportCategory": report.category if report else None,
                "reportIsResolved": report.is_resolved if report else None,
            }

        data, cached = await self.read_through(key, load, CacheTTL.REPORT_SOCIAL_STATS, policy)
        if data is None:
            data = {
                "reportId": report_id,
                "hasSocialPost": False,
                "upvotes": 0,
                "downvotes": 0,
                "totalScore": 0,
                "commentCount": 0,
                "shareCount": 0,
                "viewCount": 0,
                "isTrending": False,
                "isFeatured": False,
                "socialPostCreatedAt": None,
            }
        return {"stats": data, "cached": cached}
