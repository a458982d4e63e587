"""
Response Shaping

ORM rows -> camelCase JSON dicts. Every shape here is cached as-is, so
each one only embeds data whose mutations purge the namespace it is
cached under:

- report_summary: report columns only (owner lists)
- report_detail: adds owner, assigned/resolving admin and social counts
- admin_report_item / nearby_report_item / assigned_report_item: summary
  plus the joined names those lists show
- field_report_detail: detail plus the work log, for the assignee
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from civicpulse.database.models import (
    Admin,
    Report,
    SocialComment,
    SocialPost,
    User,
    WorkLog,
)

ANONYMOUS_NAME = "Anonymous"
DEFAULT_USER_NAME = "User"


def iso(value: Optional[datetime]) -> Optional[str]:
    """Naive UTC datetime -> ISO-8601 with offset, None-safe."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


# =============================================================================
# PEOPLE
# =============================================================================

def user_dict(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "phoneNumber": user.phone_number,
        "email": user.email,
        "fullName": user.full_name,
        "profileImageUrl": user.profile_image_url,
        "totalReports": user.total_reports,
        "resolvedReports": user.resolved_reports,
        "createdAt": iso(user.created_at),
        "updatedAt": iso(user.updated_at),
        "lastLogin": iso(user.last_login),
    }


def admin_dict(admin: Admin) -> Dict[str, Any]:
    return {
        "id": admin.id,
        "email": admin.email,
        "fullName": admin.full_name,
        "department": admin.department,
        "role": enum_value(admin.role),
        "isActive": admin.is_active,
        "lastLogin": iso(admin.last_login),
        "createdAt": iso(admin.created_at),
        "updatedAt": iso(admin.updated_at),
    }


def _user_brief(user: Optional[User]) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {
        "id": user.id,
        "fullName": user.full_name,
        "phoneNumber": user.phone_number,
        "email": user.email,
    }


# =============================================================================
# REPORTS
# =============================================================================

def report_summary(report: Report) -> Dict[str, Any]:
    return {
        "id": report.id,
        "userId": report.user_id,
        "title": report.title,
        "description": report.description,
        "category": report.category,
        "priority": enum_value(report.priority),
        "status": enum_value(report.status),
        "mediaUrls": list(report.media_urls or []),
        "audioUrl": report.audio_url,
        "latitude": report.latitude,
        "longitude": report.longitude,
        "address": report.address,
        "department": report.department,
        "isResolved": report.is_resolved,
        "assignedAdminId": report.assigned_admin_id,
        "workStartedAt": iso(report.work_started_at),
        "workCompletedAt": iso(report.work_completed_at),
        "inProgressPhotos": list(report.in_progress_photos or []),
        "timeSpentMinutes": report.time_spent_minutes,
        "materialsUsed": list(report.materials_used or []),
        "createdAt": iso(report.created_at),
        "updatedAt": iso(report.updated_at),
        "resolvedAt": iso(report.resolved_at),
        "resolvedMediaUrls": list(report.resolved_media_urls or []),
        "resolutionNotes": report.resolution_note,
        "resolvedByAdminId": report.resolved_by_admin_id,
        "timeTakenToResolve": report.time_taken_to_resolve,
    }


def report_detail(report: Report) -> Dict[str, Any]:
    data = report_summary(report)
    user = report.user
    assigned = report.assigned_admin
    resolver = report.resolved_by
    post = report.social_post

    data.update({
        "userName": user.full_name if user else None,
        "userEmail": user.email if user else None,
        "userPhone": user.phone_number if user else None,
        "assignedAdminName": assigned.full_name if assigned else None,
        "assignedAdminEmail": assigned.email if assigned else None,
        "assignedAdminRole": enum_value(assigned.role) if assigned else None,
        "resolvedBy": resolver.full_name if resolver else None,
        "resolvedByRole": enum_value(resolver.role) if resolver else None,
        "upvotes": post.upvotes if post else 0,
        "downvotes": post.downvotes if post else 0,
        "viewCount": post.view_count if post else 0,
        "shareCount": post.share_count if post else 0,
        "user": _user_brief(user),
    })
    return data


def admin_report_item(report: Report) -> Dict[str, Any]:
    data = report_summary(report)
    user = report.user
    assigned = report.assigned_admin
    data.update({
        "userName": user.full_name if user else None,
        "userPhone": user.phone_number if user else None,
        "assignedAdminName": assigned.full_name if assigned else None,
        "assignedAdminEmail": assigned.email if assigned else None,
    })
    return data


def nearby_report_item(report: Report, distance_km: float) -> Dict[str, Any]:
    data = report_summary(report)
    data["userName"] = report.user.full_name if report.user else None
    data["distance"] = round(distance_km, 2)
    return data


def assigned_report_item(report: Report) -> Dict[str, Any]:
    data = report_summary(report)
    data["user"] = _user_brief(report.user)
    return data


def work_log_dict(log: WorkLog) -> Dict[str, Any]:
    return {
        "id": log.id,
        "adminId": log.admin_id,
        "action": log.action,
        "notes": log.notes,
        "photos": list(log.photos or []),
        "locationLat": log.location_lat,
        "locationLng": log.location_lng,
        "createdAt": iso(log.created_at),
    }


def field_report_detail(report: Report) -> Dict[str, Any]:
    data = report_detail(report)
    logs = sorted(report.work_logs, key=lambda log: log.created_at, reverse=True)
    data["workLogs"] = [work_log_dict(log) for log in logs]
    return data


# =============================================================================
# SOCIAL
# =============================================================================

def post_dict(post: SocialPost) -> Dict[str, Any]:
    """Bare post row, as returned by create."""
    return {
        "id": post.id,
        "reportId": post.report_id,
        "userId": post.user_id,
        "isPublic": post.is_public,
        "isAnonymous": post.is_anonymous,
        "upvotes": post.upvotes,
        "downvotes": post.downvotes,
        "totalScore": post.total_score,
        "commentCount": post.comment_count,
        "shareCount": post.share_count,
        "viewCount": post.view_count,
        "createdAt": iso(post.created_at),
        "updatedAt": iso(post.updated_at),
    }


def feed_item(post: SocialPost, user_vote: Optional[str] = None) -> Dict[str, Any]:
    report = post.report
    user = post.user
    return {
        "id": post.id,
        "reportId": post.report_id,
        "userId": post.user_id,
        "title": (report.title if report else None) or "Untitled Post",
        "content": (report.description if report else None) or "",
        "createdAt": iso(post.created_at),
        "updatedAt": iso(post.updated_at),
        "upvoteCount": post.upvotes or 0,
        "downvoteCount": post.downvotes or 0,
        "totalScore": post.total_score or 0,
        "commentCount": post.comment_count or 0,
        "viewCount": post.view_count or 0,
        "isTrending": post.is_trending,
        "userVote": user_vote,
        "report": {
            "category": report.category if report else None,
            "priority": enum_value(report.priority) if report else None,
            "status": enum_value(report.status) if report else None,
            "isResolved": report.is_resolved if report else False,
            "latitude": report.latitude if report else None,
            "longitude": report.longitude if report else None,
            "address": report.address if report else None,
            "department": report.department if report else None,
            "mediaUrls": list(report.media_urls or []) if report else [],
        },
        "user": {
            "id": post.user_id,
            "fullName": ANONYMOUS_NAME if post.is_anonymous else ((user.full_name if user else None) or DEFAULT_USER_NAME),
            "profileImageUrl": None if post.is_anonymous or user is None else user.profile_image_url,
        },
    }


def comment_dict(comment: SocialComment) -> Dict[str, Any]:
    user = comment.user
    return {
        "id": comment.id,
        "postId": comment.post_id,
        "userId": comment.user_id,
        "user": None if comment.is_anonymous else {
            "id": comment.user_id,
            "fullName": (user.full_name if user else None) or DEFAULT_USER_NAME,
            "profileImageUrl": user.profile_image_url if user else None,
        },
        "parentCommentId": comment.parent_comment_id,
        "content": comment.content,
        "isAnonymous": comment.is_anonymous,
        "upvotes": comment.upvotes,
        "downvotes": comment.downvotes,
        "createdAt": iso(comment.created_at),
        "updatedAt": iso(comment.updated_at),
    }
