"""
Reports API

Endpoints:
- POST /reports/create - File a report (auto priority when none given)
- GET /reports/user/{user_id} - A citizen's reports
- GET /reports/user/{user_id}/stats - A citizen's report statistics
- GET /reports/admin/{admin_id} - Admin list, scoped by role/department
- GET /reports/nearby - Reports around a point
- GET /reports/community-stats - Platform-wide resolution stats
- GET/PUT/DELETE /reports/{report_id}
- POST /reports/{report_id}/resolve - Multipart, resolvedPhotos
- POST /reports/{report_id}/assign
- GET /reports/assigned/{admin_id} - A field admin's queue
- POST /reports/{report_id}/start
- POST /reports/{report_id}/progress - Multipart, photos
- POST /reports/{report_id}/complete - Multipart, resolvedPhotos
- GET /reports/{report_id}/details - Detail with work log
- GET /reports/assigned/{admin_id}/today
- GET /reports/assigned/{admin_id}/dashboard
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from civicpulse.cache import CachePolicy, Pagination
from civicpulse.database import ReportFilter, get_db
from civicpulse.services import ReportService, UploadedFile

from .dependencies import (
    cache_policy,
    envelope,
    feed_pagination,
    get_report_service,
    report_pagination,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/reports", tags=["Reports"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class CamelModel(BaseModel):
    class Config:
        populate_by_name = True


class CreateReportRequest(CamelModel):
    """New report. priority may be a tier, "auto" or omitted."""
    user_id: Optional[str] = Field(None, alias="userId")
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[str] = None
    media_urls: Optional[List[str]] = Field(None, alias="mediaUrls")
    audio_url: Optional[str] = Field(None, alias="audioUrl")
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    department: Optional[str] = None


class UpdateReportRequest(CamelModel):
    user_id: Optional[str] = Field(None, alias="userId")
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[str] = None
    media_urls: Optional[List[str]] = Field(None, alias="mediaUrls")
    audio_url: Optional[str] = Field(None, alias="audioUrl")
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    department: Optional[str] = None


class AssignReportRequest(CamelModel):
    assigned_admin_id: Optional[str] = Field(None, alias="assignedAdminId")


class StartWorkRequest(CamelModel):
    admin_id: Optional[str] = Field(None, alias="adminId")
    notes: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


def report_filters(
    is_resolved: Optional[str] = Query(None, alias="isResolved"),
    category: Optional[str] = None,
    priority: Optional[str] = None,
    department: Optional[str] = None,
    status: Optional[str] = None,
) -> ReportFilter:
    return ReportFilter.parse(
        is_resolved=is_resolved,
        category=category,
        priority=priority,
        department=department,
        status=status,
    )



async def read_uploads(files: Optional[List[UploadFile]]) -> List[UploadedFile]:
    photos = []
    for upload in files or []:
        photos.append(UploadedFile(
            filename=upload.filename or "photo",
            data=await upload.read(),
            content_type=upload.content_type,
        ))
    return photos

# =============================================================================
# CITIZEN ENDPOINTS
# =============================================================================

@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_report(
    request: CreateReportRequest,
    db: Session = Depends(get_db),
    service: ReportService = Depends(get_report_service),
) -> Dict[str, Any]:
    result = await service.create_report(
        db,
        user_id=request.user_id,
        title=request.title,
        description=request.description,
        category=request.category,
        priority=request.priority,
        media_urls=request.media_urls,
        audio_url=request.audio_url,
        latitude=request.latitude,
        longitude=request.longitude,
        address=request.address,
        department=request.department,
    )
    return envelope(result)


@router.get("/user/{user_id}")
async def list_user_reports(
    user_id: str,
    filters: ReportFilter = Depends(report_filters),
    pagination: Pagination = Depends(report_pagination),
    policy: CachePolicy = Depends(cache_policy),
    db: Session = Depends(get_db),
    service: ReportService = Depends(get_report_service),
) -> Dict[str, Any]:
    return envelope(await service.list_user_reports(db, user_id, filters, pagination, policy))


@router.get("/user/{user_id}/stats")
async def user_report_stats(
    user_id: str,
    policy: CachePolicy = Depends(cache_policy),
    db: Session = Depends(get_db),
    service: ReportService = Depends(get_report_service),
) -> Dict[str, Any]:
    return envelope(await service.user_report_stats(db, user_id, policy))


@router.get("/nearby")
async def nearby_reports(
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    radius: float = Query(10.0, gt=0, description="Search radius in km"),
    user_id: Optional[str] = Query(None, alias="userId"),
    pagination: Pagination = Depends(feed_pagination),
    policy: CachePolicy = Depends(cache_policy),
    db: Session = Depends(get_db),
    service: ReportService = Depends(get_report_service),
) -> Dict[str, Any]:
    result = await service.nearby_reports(
        db,
        latitude,
        longitude,
        radius_km=radius,
        pagination=pagination,
        user_id=user_id,
        policy=policy,
    )
    return envelope(result)


@router.get("/community-stats")
async def community_stats(
    policy: CachePolicy = Depends(cache_policy),
    db: Session = Depends(get_db),
    service: ReportService = Depends(get_report_service),
) -> Dict[str, Any]:
    return envelope(await service.community_stats(db, policy))


# =============================================================================
# ADMIN ENDPOINTS
# =============================================================================

@router.get("/admin/{admin_id}")
async def admin_reports(
    admin_id: str,
    filters: ReportFilter = Depends(report_filters),
    pagination: Pagination = Depends(report_pagination),
    policy: CachePolicy = Depends(cache_policy),
    db: Session = Depends(get_db),
    service: ReportService = Depends(get_report_service),
) -> Dict[str, Any]:
    return envelope(await service.admin_reports(db, admin_id, filters, pagination, policy))


@router.get("/assigned/{admin_id}")
async def assigned_reports(
    admin_id: str,
    filters: ReportFilter = Depends(report_filters),
    policy: CachePolicy = Depends(cache_policy),
    db: Session = Depends(get_db),
    service: ReportService = Depends(get_report_service),
) -> Dict[str, Any]:
    return envelope(await service.assigned_reports(db, admin_id, filters, policy))


@router.get("/assigned/{admin_id}/today")
async def today_reports(
    admin_id: str,
    policy: CachePolicy = Depends(cache_policy),
    db: Session = Depends(get_db),
    service: ReportService = Depends(get_report_service),
) -> Dict[str, Any]:
    return envelope(await service.today_reports(db, admin_id, policy))


@router.get("/assigned/{admin_id}/dashboard")
async def dashboard_stats(
    admin_id: str,
    policy: CachePolicy = Depends(cache_policy),
    db: Session = Depends(get_db),
    service: ReportService = Depends(get_report_service),
) -> Dict[str, Any]:
    return envelope(await service.dashboard_stats(db, admin_id, policy))


@router.post("/{report_id}/resolve")
async def resolve_report(
    report_id: str,
    admin_id: Optional[str] = Form(None, alias="adminId"),
    admin_role: Optional[str] = Form(None, alias="adminRole"),
    resolution_notes: Optional[str] = Form(None, alias="resolutionNotes"),
    resolved_photos: Optional[List[UploadFile]] = File(None, alias="resolvedPhotos"),
    db: Session = Depends(get_db),
    service: ReportService = Depends(get_report_service),
) -> Dict[str, Any]:
    """Resolve with up to MAX_RESOLUTION_PHOTOS photos."""
    photos = await read_uploads(resolved_photos)
    result = await service.resolve_report(
        db,
        report_id,
        admin_id=admin_id,
        admin_role=admin_role,
        resolution_notes=resolution_notes,
        photos=photos,
    )
    return envelope(result)


@router.post("/{report_id}/assign")
async def assign_report(
    report_id: str,
    request: AssignReportRequest,
    db: Session = Depends(get_db),
    service: ReportService = Depends(get_report_service),
) -> Dict[str, Any]:
    return envelope(await service.assign_report(db, report_id, request.assigned_admin_id))


@router.post("/{report_id}/start")
async def start_work(
    report_id: str,
    request: StartWorkRequest,
    db: Session = Depends(get_db),
    service: ReportService = Depends(get_report_service),
) -> Dict[str, Any]:
    result = await service.start_work(
        db,
        report_id,
        admin_id=request.admin_id,
        notes=request.notes,
        latitude=request.latitude,
        longitude=request.longitude,
    )
    return envelope(result)


@router.post("/{report_id}/progress")
async def add_progress_update(
    report_id: str,
    admin_id: Optional[str] = Form(None, alias="adminId"),
    notes: Optional[str] = Form(None),
    latitude: Optional[float] = Form(None),
    longitude: Optional[float] = Form(None),
    photos: Optional[List[UploadFile]] = File(None),
    db: Session = Depends(get_db),
    service: ReportService = Depends(get_report_service),
) -> Dict[str, Any]:
    result = await service.add_progress_update(
        db,
        report_id,
        admin_id=admin_id,
        notes=notes,
        photos=await read_uploads(photos),
        latitude=latitude,
        longitude=longitude,
    )
    return envelope(result)


@router.post("/{report_id}/complete")
async def complete_report(
    report_id: str,
    admin_id: Optional[str] = Form(None, alias="adminId"),
    resolved_notes: Optional[str] = Form(None, alias="resolvedNotes"),
    resolved_photo_urls: Optional[List[str]] = Form(None, alias="resolvedPhotoUrls"),
    time_spent_minutes: Optional[int] = Form(None, alias="timeSpentMinutes"),
    materials_used: Optional[List[str]] = Form(None, alias="materialsUsed"),
    resolved_photos: Optional[List[UploadFile]] = File(None, alias="resolvedPhotos"),
    db: Session = Depends(get_db),
    service: ReportService = Depends(get_report_service),
) -> Dict[str, Any]:
    """Field completion. Photos may be pre-uploaded URLs, files, or both."""
    result = await service.complete_report(
        db,
        report_id,
        admin_id=admin_id,
        resolved_notes=resolved_notes,
        photo_urls=resolved_photo_urls or [],
        photos=await read_uploads(resolved_photos),
        time_spent_minutes=time_spent_minutes,
        materials_used=materials_used,
    )
    return envelope(result)


@router.get("/{report_id}/details")
async def field_report_details(
    report_id: str,
    policy: CachePolicy = Depends(cache_policy),
    db: Session = Depends(get_db),
    service: ReportService = Depends(get_report_service),
) -> Dict[str, Any]:
    return envelope(await service.field_report_details(db, report_id, policy))


# =============================================================================
# SINGLE REPORT
# =============================================================================

@router.get("/{report_id}")
async def get_report(
    report_id: str,
    user_id: Optional[str] = Query(None, alias="userId"),
    policy: CachePolicy = Depends(cache_policy),
    db: Session = Depends(get_db),
    service: ReportService = Depends(get_report_service),
) -> Dict[str, Any]:
    return envelope(await service.get_report(db, report_id, user_id=user_id, policy=policy))


@router.put("/{report_id}")
async def update_report(
    report_id: str,
    request: UpdateReportRequest,
    db: Session = Depends(get_db),
    service: ReportService = Depends(get_report_service),
) -> Dict[str, Any]:
    changes = request.model_dump(exclude_unset=True, exclude={"user_id"})
    result = await service.update_report(db, report_id, changes, user_id=request.user_id)
    return envelope(result)


@router.delete("/{report_id}")
async def delete_report(
    report_id: str,
    user_id: Optional[str] = Query(None, alias="userId"),
    db: Session = Depends(get_db),
    service: ReportService = Depends(get_report_service),
) -> Dict[str, Any]:
    return envelope(await service.delete_report(db, report_id, user_id=user_id))
