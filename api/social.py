"""
Social Feed API

Endpoints:
- POST /social/posts - Publish a report to the feed
- GET /social/posts - Feed (tabs: all, trending, nearby, my_activity)
- POST /social/posts/{post_id}/vote - Toggle an upvote/downvote
- POST /social/posts/{post_id}/comments - Comment (optionally threaded)
- GET /social/posts/{post_id}/comments - Paged comments
- POST /social/posts/{post_id}/view - Track a view
- GET /social/stats - Feed-wide engagement stats
- GET /social/reports/{report_id}/stats - One report's social counters
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from civicpulse.cache import CachePolicy, Pagination
from civicpulse.database import SocialPostFilter, get_db
from civicpulse.services import SocialService

from .dependencies import cache_policy, envelope, feed_pagination, get_social_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/social", tags=["Social"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class CreatePostRequest(BaseModel):
    report_id: Optional[str] = Field(None, alias="reportId")
    user_id: Optional[str] = Field(None, alias="userId")
    is_public: bool = Field(True, alias="isPublic")
    is_anonymous: bool = Field(False, alias="isAnonymous")

    class Config:
        populate_by_name = True


class VoteRequest(BaseModel):
    user_id: Optional[str] = Field(None, alias="userId")
    vote_type: Optional[str] = Field(None, alias="voteType")

    class Config:
        populate_by_name = True


class CommentRequest(BaseModel):
    user_id: Optional[str] = Field(None, alias="userId")
    content: Optional[str] = None
    parent_comment_id: Optional[str] = Field(None, alias="parentCommentId")
    is_anonymous: bool = Field(False, alias="isAnonymous")

    class Config:
        populate_by_name = True


class ViewRequest(BaseModel):
    user_id: Optional[str] = Field(None, alias="userId")

    class Config:
        populate_by_name = True


# =============================================================================
# POSTS
# =============================================================================

@router.post("/posts", status_code=status.HTTP_201_CREATED)
async def create_post(
    request: CreatePostRequest,
    db: Session = Depends(get_db),
    service: SocialService = Depends(get_social_service),
) -> Dict[str, Any]:
    result = await service.create_post(
        db,
        report_id=request.report_id,
        user_id=request.user_id,
        is_public=request.is_public,
        is_anonymous=request.is_anonymous,
    )
    return envelope(result)


@router.get("/posts")
async def list_posts(
    tab: str = "all",
    category: Optional[str] = None,
    priority: Optional[str] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    radius: float = Query(10.0, gt=0, description="Nearby radius in km"),
    user_id: Optional[str] = Query(None, alias="userId"),
    pagination: Pagination = Depends(feed_pagination),
    policy: CachePolicy = Depends(cache_policy),
    db: Session = Depends(get_db),
    service: SocialService = Depends(get_social_service),
) -> Dict[str, Any]:
    result = await service.list_posts(
        db,
        tab=tab,
        filters=SocialPostFilter.parse(category=category, priority=priority),
        pagination=pagination,
        user_id=user_id,
        latitude=latitude,
        longitude=longitude,
        radius_km=radius,
        policy=policy,
    )
    return envelope(result)


@router.post("/posts/{post_id}/vote")
async def vote(
    post_id: str,
    request: VoteRequest,
    db: Session = Depends(get_db),
    service: SocialService = Depends(get_social_service),
) -> Dict[str, Any]:
    return envelope(await service.vote(db, post_id, request.user_id, request.vote_type))


@router.post("/posts/{post_id}/view")
async def track_view(
    post_id: str,
    http_request: Request,
    request: Optional[ViewRequest] = None,
    db: Session = Depends(get_db),
    service: SocialService = Depends(get_social_service),
) -> Dict[str, Any]:
    result = await service.track_view(
        db,
        post_id,
        user_id=request.user_id if request else None,
        ip_address=http_request.client.host if http_request.client else None,
        user_agent=http_request.headers.get("user-agent"),
    )
    return envelope(result)


# =============================================================================
# COMMENTS
# =============================================================================

@router.post("/posts/{post_id}/comments", status_code=status.HTTP_201_CREATED)
async def add_comment(
    post_id: str,
    request: CommentRequest,
    db: Session = Depends(get_db),
    service: SocialService = Depends(get_social_service),
) -> Dict[str, Any]:
    result = await service.add_comment(
        db,
        post_id,
        user_id=request.user_id,
        content=request.content,
        parent_comment_id=request.parent_comment_id,
        is_anonymous=request.is_anonymous,
    )
    return envelope(result)


@router.get("/posts/{post_id}/comments")
async def list_comments(
    post_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = Query("created_at", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    policy: CachePolicy = Depends(cache_policy),
    db: Session = Depends(get_db),
    service: SocialService = Depends(get_social_service),
) -> Dict[str, Any]:
    result = await service.list_comments(
        db,
        post_id,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        policy=policy,
    )
    return envelope(result)


# =============================================================================
# STATS
# =============================================================================

@router.get("/stats")
async def feed_stats(
    policy: CachePolicy = Depends(cache_policy),
    db: Session = Depends(get_db),
    service: SocialService = Depends(get_social_service),
) -> Dict[str, Any]:
    return envelope(await service.feed_stats(db, policy))


@router.get("/reports/{report_id}/stats")
async def report_social_stats(
    report_id: str,
    policy: CachePolicy = Depends(cache_policy),
    db: Session = Depends(get_db),
    service: SocialService = Depends(get_social_service),
) -> Dict[str, Any]:
    return envelope(await service.report_social_stats(db, report_id, policy))
