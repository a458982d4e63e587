"""
Report Handlers

Citizen and admin operations on reports.

Writes run in one transaction and invalidate caches only after commit:
- create: user check, auto-priority (same transaction), insert, social post
- update / delete: owner-scoped when a user id is supplied
- resolve: photos uploaded first, transaction second, orphans removed
  if the transaction fails, notification last
- assign / start work / progress / complete: field-admin workflow

Reads go through the read-through cache with explicit TTLs.
"""

import logging
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session, selectinload

from civicpulse.cache import (
    CacheEvent,
    CacheKeyBuilder,
    CacheNamespace,
    CachePolicy,
    CacheTTL,
    KeyedCache,
    Pagination,
)
from civicpulse.cache.keys import REPORT_DETAIL, REPORT_NEARBY, REPORT_USER
from civicpulse.database import (
    AUTO_PRIORITY,
    Admin,
    AdminReportScope,
    AdminRole,
    PriorityTier,
    Report,
    ReportFilter,
    ReportStatus,
    SocialPost,
    User,
    WorkLog,
    parse_enum,
    run_in_transaction,
    store_errors,
    transaction,
)
from civicpulse.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from civicpulse.integrations import LogNotifier, MediaStorage, Notifier, NullStorage
from civicpulse.scoring import PriorityScorer, bounding_box, haversine_meters, validate_coordinates
from civicpulse.utils.clock import utcnow
from civicpulse.utils.config import Settings

from .base import BaseService
from .serializers import (
    admin_report_item,
    assigned_report_item,
    field_report_detail,
    iso,
    nearby_report_item,
    report_detail,
    report_summary,
)

logger = logging.getLogger(__name__)

K = CacheKeyBuilder
NS = CacheNamespace

DEFAULT_CATEGORY = "other"
DEFAULT_DEPARTMENT = "General"
DEFAULT_NEARBY_RADIUS_KM = 10.0

UPDATABLE_FIELDS = (
    "title",
    "description",
    "category",
    "priority",
    "media_urls",
    "audio_url",
    "latitude",
    "longitude",
    "address",
    "department",
)

# critical first
PRIORITY_RANK = case(
    (Report.priority == PriorityTier.CRITICAL, 1),
    (Report.priority == PriorityTier.HIGH, 2),
    (Report.priority == PriorityTier.MEDIUM, 3),
    (Report.priority == PriorityTier.LOW, 4),
    else_=5,
)


@dataclass
class UploadedFile:
    """A file received with a request, held in memory."""
    filename: str
    data: bytes
    content_type: Optional[str] = None


def _checked_coordinates(latitude, longitude):
    """Both or neither; when given they must be valid."""
    if latitude is None and longitude is None:
        return None, None
    if latitude is None or longitude is None:
        raise ValidationError("Latitude and longitude must be provided together")
    try:
        return validate_coordinates(latitude, longitude)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid coordinates: {e}")


def _parse_priority(value: Any) -> Optional[PriorityTier]:
    """None for the auto sentinel or a missing value."""
    if value is None or (isinstance(value, str) and value.strip().lower() in ("", AUTO_PRIORITY)):
        return None
    return parse_enum(PriorityTier, value, "priority")


def _start_of_day(now):
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _page_info(pagination: Pagination, total: int) -> Dict[str, Any]:
    return {
        "total": total,
        "limit": pagination.limit,
        "offset": pagination.offset,
        "hasMore": pagination.offset + pagination.limit < total,
    }


class ReportService(BaseService):
    """All report read and write paths."""

    def __init__(
        self,
        cache: KeyedCache,
        storage: Optional[MediaStorage] = None,
        notifier: Optional[Notifier] = None,
        scorer: Optional[PriorityScorer] = None,
        settings: Optional[Settings] = None,
    ):
        super().__init__(cache, settings)
        self.storage = storage or NullStorage()
        self.notifier = notifier or LogNotifier()
        self.scorer = scorer or PriorityScorer(
            window_days=self.settings.PRIORITY_WINDOW_DAYS,
            radius_meters=self.settings.PRIORITY_RADIUS_METERS,
        )

    # =========================================================================
    # CITIZEN WRITES
    # =========================================================================

    async def create_report(
        self,
        db: Session,
        user_id: Optional[str],
        title: Optional[str],
        description: Optional[str] = None,
        category: Optional[str] = None,
        priority: Any = None,
        media_urls: Optional[List[str]] = None,
        audio_url: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        address: Optional[str] = None,
        department: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not user_id or not title or not title.strip():
            raise ValidationError("User ID and title are required")
        explicit_priority = _parse_priority(priority)
        latitude, longitude = _checked_coordinates(latitude, longitude)

        with transaction(db):
            user = db.get(User, user_id)
            if user is None:
                raise NotFoundError("User not found")

            if explicit_priority is None:
                tier = self.scorer.compute(db, latitude, longitude, category)
            else:
                tier = explicit_priority

            report = Report(
                user_id=user.id,
                title=title.strip(),
                description=description or "",
                category=category or DEFAULT_CATEGORY,
                priority=tier,
                status=ReportStatus.PENDING,
                media_urls=list(media_urls or []),
                audio_url=audio_url,
                latitude=latitude,
                longitude=longitude,
                address=address or "",
                department=department or DEFAULT_DEPARTMENT,
            )
            db.add(report)
            db.flush()

            # Every report is published to the feed, public and attributed
            db.add(SocialPost(report_id=report.id, user_id=user.id, is_public=True, is_anonymous=False))
            user.total_reports = (user.total_reports or 0) + 1

        logger.info(f"Report {report.id} created by {user_id} with priority {tier.value}")

        await self.after_commit(
            CacheEvent.REPORT_CREATED,
            report_id=report.id,
            owner_id=report.user_id,
            has_location=report.latitude is not None,
        )
        return {"message": "Report created successfully", "report": report_summary(report)}

    async def update_report(
        self,
        db: Session,
        report_id: str,
        changes: Dict[str, Any],
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        changes = {name: value for name, value in changes.items() if name in UPDATABLE_FIELDS}
        if not changes:
            raise ValidationError("No fields to update")
        if "priority" in changes:
            changes["priority"] = parse_enum(PriorityTier, changes["priority"], "priority")
            if changes["priority"] is None:
                raise ValidationError("Priority cannot be cleared")
        if "title" in changes and not (changes["title"] or "").strip():
            raise ValidationError("Title cannot be empty")

        with transaction(db):
            stmt = select(Report).where(Report.id == report_id).with_for_update()
            if user_id:
                stmt = stmt.where(Report.user_id == user_id)
            report = db.scalar(stmt)
            if report is None:
                raise NotFoundError("Report not found or access denied")
            if report.is_resolved:
                raise ConflictError("Cannot update a resolved report")

            latitude = changes.get("latitude", report.latitude)
            longitude = changes.get("longitude", report.longitude)
            if "latitude" in changes or "longitude" in changes:
                _checked_coordinates(latitude, longitude)

            for name, value in changes.items():
                setattr(report, name, value)

        await self.after_commit(
            CacheEvent.REPORT_UPDATED,
            report_id=report.id,
            owner_id=report.user_id,
        )
        return {"message": "Report updated successfully", "report": report_summary(report)}

    async def delete_report(
        self,
        db: Session,
        report_id: str,
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        with transaction(db):
            report = db.get(Report, report_id)
            if report is None:
                raise NotFoundError("Report not found")
            if user_id and report.user_id != user_id:
                raise PermissionDeniedError("Access denied: You can only delete your own reports")

            owner_id = report.user_id
            owner = db.get(User, owner_id)
            if owner is not None:
                owner.total_reports = max((owner.total_reports or 0) - 1, 0)
                if report.is_resolved:
                    owner.resolved_reports = max((owner.resolved_reports or 0) - 1, 0)
            db.delete(report)

        logger.info(f"Report {report_id} deleted")

        await self.after_commit(CacheEvent.REPORT_DELETED, report_id=report_id, owner_id=owner_id)
        return {"message": "Report deleted successfully", "deletedReportId": report_id}

    # =========================================================================
    # RESOLUTION
    # =========================================================================

    def _active_resolver(self, db: Session, admin_id: str, role: AdminRole) -> Admin:
        admin = db.scalar(select(Admin).where(Admin.id == admin_id, Admin.is_active.is_(True)))
        if admin is None:
            raise PermissionDeniedError("Admin not found or inactive")
        if admin.role != role:
            raise PermissionDeniedError("Admin role mismatch")
        return admin

    def _unresolved_report(self, db: Session, report_id: str, lock: bool = False) -> Report:
        stmt = select(Report).where(Report.id == report_id)
        if lock:
            stmt = stmt.with_for_update()
        report = db.scalar(stmt)
        if report is None:
            raise NotFoundError("Report not found")
        if report.is_resolved:
            raise ConflictError("Report is already resolved")
        return report

    async def _upload_photos(
        self,
        photos: Sequence[UploadedFile],
        folder: str = "civicpulse/resolutions",
    ) -> List[str]:
        urls = []
        for photo in photos:
            url = await self.storage.upload(
                photo.data,
                photo.filename,
                content_type=photo.content_type,
                folder=folder,
            )
            if url:
                urls.append(url)
            else:
                logger.warning(f"Photo {photo.filename} was not stored in {folder}")
        return urls

    async def _discard_uploads(self, urls: Sequence[str]):
        for url in urls:
            try:
                await self.storage.delete(url)
            except Exception as e:
                logger.error(f"Failed to remove orphaned upload {url}: {e}")

    async def resolve_report(
        self,
        db: Session,
        report_id: str,
        admin_id: Optional[str],
        admin_role: Optional[str],
        resolution_notes: Optional[str] = None,
        photos: Sequence[UploadedFile] = (),
    ) -> Dict[str, Any]:
        """
        Mark a report resolved by an active admin.

        Photos are uploaded before the transaction opens so no row lock is
        held across network calls. If the transaction then fails, the
        uploaded photos are deleted again.
        """
        if not admin_id or not admin_role:
            raise ValidationError("Admin ID and role are required")
        try:
            role = AdminRole(str(admin_role).strip().lower())
        except ValueError:
            raise PermissionDeniedError("Invalid admin role")
        photos = list(photos or [])
        max_photos = self.settings.MAX_RESOLUTION_PHOTOS
        if len(photos) > max_photos:
            raise ValidationError(f"Maximum {max_photos} photos allowed for resolution")

        # Fail fast before spending uploads on a request that cannot succeed
        run_in_transaction(db, lambda s: (
            self._active_resolver(s, admin_id, role),
            self._unresolved_report(s, report_id),
        ))

        urls = await self._upload_photos(photos)

        try:
            with transaction(db):
                admin = self._active_resolver(db, admin_id, role)
                report = self._unresolved_report(db, report_id, lock=True)

                now = utcnow()
                report.is_resolved = True
                report.status = ReportStatus.RESOLVED
                report.resolved_at = now
                report.resolved_media_urls = urls
                report.resolution_note = resolution_notes or None
                report.resolved_by_admin_id = admin.id
                report.time_taken_to_resolve = max(int((now - report.created_at).total_seconds()), 0)

                owner = db.get(User, report.user_id)
                if owner is not None:
                    owner.resolved_reports = (owner.resolved_reports or 0) + 1
        except Exception:
            await self._discard_uploads(urls)
            raise

        logger.info(f"Report {report_id} resolved by admin {admin_id} with {len(urls)} photos")

        await self.after_commit(
            CacheEvent.REPORT_RESOLVED,
            report_id=report.id,
            owner_id=report.user_id,
            admin_id=admin.id,
        )

        try:
            await self.notifier.notify_resolved(report.user_id, report.id, report.title or "Your Report")
        except Exception as e:
            logger.error(f"Resolution notification failed for report {report.id}: {e}")

        return {
            "message": "Report marked as resolved",
            "report": report_summary(report),
            "uploadedPhotos": len(urls),
        }

    # =========================================================================
    # FIELD ADMIN WORKFLOW
    # =========================================================================

    def _assigned_report(self, db: Session, report_id: str, admin_id: str, lock: bool = False) -> Report:
        stmt = select(Report).where(Report.id == report_id, Report.assigned_admin_id == admin_id)
        if lock:
            stmt = stmt.with_for_update()
        report = db.scalar(stmt)
        if report is None:
            raise NotFoundError("Report not found or not assigned to this admin")
        if report.is_resolved:
            raise ConflictError("Report is already resolved")
        return report

    async def assign_report(
        self,
        db: Session,
        report_id: str,
        assigned_admin_id: Optional[str],
    ) -> Dict[str, Any]:
        if not assigned_admin_id:
            raise ValidationError("Field admin ID is required")

        with transaction(db):
            assignee = db.get(Admin, assigned_admin_id)
            if assignee is None:
                raise NotFoundError("Field admin not found")
            if not assignee.is_active:
                raise ValidationError("Field admin is not active")

            report = db.scalar(select(Report).where(Report.id == report_id).with_for_update())
            if report is None:
                raise NotFoundError("Report not found")
            if report.is_resolved:
                raise ConflictError("Cannot assign an already resolved report")

            previous_assignee_id = report.assigned_admin_id
            report.assigned_admin_id = assignee.id
            report.status = ReportStatus.PENDING

        await self.after_commit(
            CacheEvent.REPORT_ASSIGNED,
            report_id=report.id,
            owner_id=report.user_id,
            assignee_id=assignee.id,
            previous_assignee_id=previous_assignee_id,
        )
        return {
            "message": f"Report assigned to {assignee.full_name}",
            "data": {
                "id": report.id,
                "assignedAdminId": report.assigned_admin_id,
                "status": report.status.value,
                "updatedAt": iso(report.updated_at),
                "assignedTo": {
                    "id": assignee.id,
                    "name": assignee.full_name,
                    "email": assignee.email,
                    "role": assignee.role.value,
                },
            },
        }

    async def start_work(
        self,
        db: Session,
        report_id: str,
        admin_id: Optional[str],
        notes: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> Dict[str, Any]:
        if not admin_id:
            raise ValidationError("Admin ID is required")

        with transaction(db):
            report = self._assigned_report(db, report_id, admin_id, lock=True)
            report.status = ReportStatus.IN_PROGRESS
            report.work_started_at = utcnow()
            db.add(WorkLog(
                report_id=report.id,
                admin_id=admin_id,
                action="started",
                notes=notes or "Work started",
                location_lat=latitude,
                location_lng=longitude,
            ))

        await self.after_commit(
            CacheEvent.REPORT_WORK_STARTED,
            report_id=report.id,
            owner_id=report.user_id,
            admin_id=admin_id,
        )
        return {"message": "Report marked as in progress", "data": report_summary(report)}

    async def add_progress_update(
        self,
        db: Session,
        report_id: str,
        admin_id: Optional[str],
        notes: Optional[str] = None,
        photos: Sequence[UploadedFile] = (),
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Log on-site progress; photos are appended to the report's in-progress set."""
        if not admin_id:
            raise ValidationError("Admin ID is required")
        latitude, longitude = _checked_coordinates(latitude, longitude)
        photos = list(photos or [])
        max_photos = self.settings.MAX_PROGRESS_PHOTOS
        if len(photos) > max_photos:
            raise ValidationError(f"Maximum {max_photos} photos allowed per progress update")

        run_in_transaction(db, lambda s: self._assigned_report(s, report_id, admin_id))

        urls = await self._upload_photos(photos, folder="civicpulse/progress")

        try:
            with transaction(db):
                report = self._assigned_report(db, report_id, admin_id, lock=True)
                if urls:
                    report.in_progress_photos = list(report.in_progress_photos or []) + urls
                db.add(WorkLog(
                    report_id=report.id,
                    admin_id=admin_id,
                    action="in_progress_update",
                    notes=notes or None,
                    photos=urls,
                    location_lat=latitude,
                    location_lng=longitude,
                ))
        except Exception:
            await self._discard_uploads(urls)
            raise

        logger.info(f"Progress update on report {report_id} by admin {admin_id} with {len(urls)} photos")

        await self.after_commit(
            CacheEvent.REPORT_PROGRESS_UPDATED,
            report_id=report.id,
            owner_id=report.user_id,
            admin_id=admin_id,
        )
        return {"message": "Progress update added", "data": {"photoUrls": urls}}

    async def complete_report(
        self,
        db: Session,
        report_id: str,
        admin_id: Optional[str],
        resolved_notes: Optional[str] = None,
        photo_urls: Sequence[str] = (),
        photos: Sequence[UploadedFile] = (),
        time_spent_minutes: Optional[int] = None,
        materials_used: Optional[Sequence[str]] = None,
    ) -> Dict[str, Any]:
        """
        Close out an assigned report from the field.

        Photos may arrive as URLs already stored by the client, as files,
        or both. Time spent defaults to the minutes since work started.
        time_taken_to_resolve is measured from creation, in seconds, the
        same as admin resolution.
        """
        if not admin_id:
            raise ValidationError("Admin ID is required")
        if time_spent_minutes is not None and time_spent_minutes < 0:
            raise ValidationError("Time spent cannot be negative")
        photo_urls = [url for url in (photo_urls or []) if url]
        photos = list(photos or [])
        max_photos = self.settings.MAX_PROGRESS_PHOTOS
        if len(photo_urls) + len(photos) > max_photos:
            raise ValidationError(f"Maximum {max_photos} photos allowed for completion")

        run_in_transaction(db, lambda s: self._assigned_report(s, report_id, admin_id))

        uploaded = await self._upload_photos(photos)

        try:
            with transaction(db):
                report = self._assigned_report(db, report_id, admin_id, lock=True)

                now = utcnow()
                spent = time_spent_minutes
                if spent is None and report.work_started_at is not None:
                    spent = round((now - report.work_started_at).total_seconds() / 60)

                media = photo_urls + uploaded
                report.is_resolved = True
                report.status = ReportStatus.RESOLVED
                report.resolved_at = now
                report.resolved_by_admin_id = admin_id
                report.resolution_note = resolved_notes or None
                report.resolved_media_urls = media
                report.work_completed_at = now
                report.time_spent_minutes = spent
                report.time_taken_to_resolve = max(int((now - report.created_at).total_seconds()), 0)
                report.materials_used = list(materials_used or [])

                owner = db.get(User, report.user_id)
                if owner is not None:
                    owner.resolved_reports = (owner.resolved_reports or 0) + 1

                db.add(WorkLog(
                    report_id=report.id,
                    admin_id=admin_id,
                    action="completed",
                    notes=resolved_notes or None,
                    photos=media,
                ))
        except Exception:
            await self._discard_uploads(uploaded)
            raise

        logger.info(f"Report {report_id} completed by field admin {admin_id} ({spent} min on site)")

        await self.after_commit(
            CacheEvent.REPORT_RESOLVED,
            report_id=report.id,
            owner_id=report.user_id,
            admin_id=admin_id,
        )

        try:
            await self.notifier.notify_resolved(report.user_id, report.id, report.title or "Your Report")
        except Exception as e:
            logger.error(f"Resolution notification failed for report {report.id}: {e}")

        return {"message": "Report marked as resolved", "data": report_summary(report)}

    # =========================================================================
    # READS
    # =========================================================================

    async def get_report(
        self,
        db: Session,
        report_id: str,
        user_id: Optional[str] = None,
        policy: Optional[CachePolicy] = None,
    ) -> Dict[str, Any]:
        key = K.build(NS.REPORTS, REPORT_DETAIL, report_id, filters={"owner": user_id})

        def load():
            stmt = (
                select(Report)
                .where(Report.id == report_id)
                .options(
                    selectinload(Report.user),
                    selectinload(Report.assigned_admin),
                    selectinload(Report.resolved_by),
                    selectinload(Report.social_post),
                )
            )
            if user_id:
                stmt = stmt.where(Report.user_id == user_id)
            report = db.scalar(stmt)
            return report_detail(report) if report is not None else None

        data, cached = await self.read_through(key, load, CacheTTL.REPORT_DETAIL, policy)
        if data is None:
            raise NotFoundError("Report not found")
        return {"report": data, "cached": cached}

    async def list_user_reports(
        self,
        db: Session,
        user_id: str,
        filters: ReportFilter,
        pagination: Pagination,
        policy: Optional[CachePolicy] = None,
    ) -> Dict[str, Any]:
        if not user_id:
            raise ValidationError("User ID is required")
        key = K.build(NS.REPORTS, REPORT_USER, user_id, "list", filters=filters, pagination=pagination)

        def load():
            base = filters.apply(select(Report).where(Report.user_id == user_id))
            total = db.scalar(select(func.count()).select_from(base.subquery()))
            rows = db.scalars(
                base.order_by(Report.created_at.desc())
                .limit(pagination.limit)
                .offset(pagination.offset)
            ).all()
            return {
                "reports": [report_summary(r) for r in rows],
                "pagination": _page_info(pagination, total or 0),
            }

        data, cached = await self.read_through(key, load, CacheTTL.USER_REPORTS, policy)
        return {**data, "cached": cached}

    async def user_report_stats(
        self,
        db: Session,
        user_id: str,
        policy: Optional[CachePolicy] = None,
    ) -> Dict[str, Any]:
        if not user_id:
            raise ValidationError("User ID is required")
        key = K.build(NS.REPORTS, REPORT_USER, user_id, "stats")

        def load():
            cutoff = utcnow() - timedelta(days=30)
            row = db.execute(
                select(
                    func.count(Report.id),
                    func.sum(case((Report.is_resolved.is_(True), 1), else_=0)),
                    func.sum(case((Report.is_resolved.is_(False), 1), else_=0)),
                    func.sum(case((Report.priority == PriorityTier.CRITICAL, 1), else_=0)),
                    func.sum(case((Report.priority == PriorityTier.HIGH, 1), else_=0)),
                    func.sum(case((Report.created_at >= cutoff, 1), else_=0)),
                    func.avg(case((Report.is_resolved.is_(True), Report.time_taken_to_resolve), else_=None)),
                ).where(Report.user_id == user_id)
            ).one()
            total, resolved, pending, critical, high, recent, avg_seconds = row
            return {
                "totalReports": total or 0,
                "resolvedReports": int(resolved or 0),
                "pendingReports": int(pending or 0),
                "criticalReports": int(critical or 0),
                "highPriorityReports": int(high or 0),
                "reportsLast30Days": int(recent or 0),
                "avgResolutionTimeHours": (
                    f"{float(avg_seconds) / 3600:.2f}" if avg_seconds is not None else None
                ),
            }

        data, cached = await self.read_through(key, load, CacheTTL.USER_STATS, policy)
        return {"stats": data, "cached": cached}

    async def nearby_reports(
        self,
        db: Session,
        latitude: Optional[float],
        longitude: Optional[float],
        radius_km: float = DEFAULT_NEARBY_RADIUS_KM,
        pagination: Pagination = Pagination(limit=20),
        user_id: Optional[str] = None,
        policy: Optional[CachePolicy] = None,
    ) -> Dict[str, Any]:
        """
        Reports within radius_km of a point, nearest first.

        The point is bucketed to 3 decimals and the query runs on the
        bucketed point, so every caller sharing a key gets the same rows.
        A known caller does not see their own reports.
        """
        if latitude is None or longitude is None:
            raise ValidationError("Latitude and longitude are required")
        try:
            latitude, longitude = validate_coordinates(latitude, longitude)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid coordinates: {e}")
        if radius_km is None or radius_km <= 0:
            raise ValidationError("Radius must be positive")

        lat_key, lng_key = K.coordinate(latitude), K.coordinate(longitude)
        centre_lat, centre_lng = float(lat_key), float(lng_key)
        key = K.build(
            NS.REPORTS, REPORT_NEARBY, lat_key, lng_key,
            filters={"radius_km": float(radius_km)},
            pagination=pagination,
            identity=user_id,
            personalized=user_id is not None,
        )

        def load():
            radius_m = float(radius_km) * 1000
            min_lat, max_lat, min_lng, max_lng = bounding_box(centre_lat, centre_lng, radius_m)
            stmt = (
                select(Report)
                .where(Report.latitude.is_not(None), Report.longitude.is_not(None))
                .where(Report.latitude.between(min_lat, max_lat))
                .options(selectinload(Report.user))
                .order_by(Report.created_at.desc())
            )
            if min_lng is not None:
                stmt = stmt.where(Report.longitude.between(min_lng, max_lng))
            if user_id:
                stmt = stmt.where(Report.user_id != user_id)

            matches = []
            for report in db.scalars(stmt).all():
                distance = haversine_meters(centre_lat, centre_lng, report.latitude, report.longitude)
                if distance <= radius_m:
                    matches.append((distance, report))
            # Stable sort keeps newest-first among equal distances
            matches.sort(key=lambda pair: pair[0])
            page = matches[pagination.offset:pagination.offset + pagination.limit]

            return {
                "reports": [nearby_report_item(r, d / 1000) for d, r in page],
                "pagination": _page_info(pagination, len(matches)),
                "location": {
                    "latitude": centre_lat,
                    "longitude": centre_lng,
                    "radius": float(radius_km),
                },
            }

        data, cached = await self.read_through(key, load, CacheTTL.NEARBY_REPORTS, policy)
        return {**data, "cached": cached}

    async def community_stats(self, db: Session, policy: Optional[CachePolicy] = None) -> Dict[str, Any]:
        key = K.build(NS.COMMUNITY_STATS)

        def load():
            total, resolved, avg_seconds = db.execute(
                select(
                    func.count(Report.id),
                    func.sum(case((Report.is_resolved.is_(True), 1), else_=0)),
                    func.avg(case((Report.is_resolved.is_(True), Report.time_taken_to_resolve), else_=None)),
                )
            ).one()
            total = total or 0
            resolved = int(resolved or 0)
            return {
                "totalReports": total,
                "resolvedReports": resolved,
                "resolutionRate": round(resolved / total * 100, 1) if total else 0,
                "avgResponseTime": (
                    f"{float(avg_seconds) / 86400:.1f}" if avg_seconds is not None else "0.0"
                ),
            }

        data, cached = await self.read_through(key, load, CacheTTL.COMMUNITY_STATS, policy)
        return {"stats": data, "cached": cached}

    async def admin_reports(
        self,
        db: Session,
        admin_id: str,
        filters: ReportFilter,
        pagination: Pagination,
        policy: Optional[CachePolicy] = None,
    ) -> Dict[str, Any]:
        """Report list scoped by the requesting admin's role and department."""
        with store_errors():
            admin = db.scalar(select(Admin).where(Admin.id == admin_id, Admin.is_active.is_(True)))
        if admin is None:
            raise NotFoundError("Admin not found or inactive")
        if admin.role == AdminRole.VIEWER:
            if not admin.department:
                raise PermissionDeniedError("Viewer admin must have a department assigned")
            # Viewers are pinned to their own department
            filters = replace(filters, department=None)

        scope = AdminReportScope(admin_id=admin.id, role=admin.role, department=admin.department)
        key = K.build(
            NS.ADMIN_REPORTS, admin.id,
            filters={**scope.cache_components(), **filters.cache_components()},
            pagination=pagination,
        )

        def load():
            base = filters.apply(scope.apply(select(Report)))
            total = db.scalar(select(func.count()).select_from(base.subquery()))
            rows = db.scalars(
                base.options(selectinload(Report.user), selectinload(Report.assigned_admin))
                .order_by(Report.created_at.desc())
                .limit(pagination.limit)
                .offset(pagination.offset)
            ).all()
            role = admin.role.value
            return {
                "reports": [admin_report_item(r) for r in rows],
                "pagination": _page_info(pagination, total or 0),
                "adminInfo": {
                    "role": role,
                    "department": admin.department,
                    "canViewAllDepartments": admin.role != AdminRole.VIEWER,
                },
                "message": f"Reports fetched successfully for {role}",
            }

        data, cached = await self.read_through(key, load, CacheTTL.ADMIN_REPORTS, policy)
        return {**data, "cached": cached}

    async def assigned_reports(
        self,
        db: Session,
        admin_id: str,
        filters: ReportFilter,
        policy: Optional[CachePolicy] = None,
    ) -> Dict[str, Any]:
        """A field admin's queue: most urgent first, then newest."""
        key = K.build(NS.ASSIGNED_REPORTS, admin_id, filters=filters)

        def load():
            rows = db.scalars(
                filters.apply(select(Report).where(Report.assigned_admin_id == admin_id))
                .options(selectinload(Report.user))
                .order_by(PRIORITY_RANK, Report.created_at.desc())
            ).all()
            return {"data": [assigned_report_item(r) for r in rows]}

        data, cached = await self.read_through(key, load, CacheTTL.ASSIGNED_REPORTS, policy)
        return {**data, "cached": cached}

    async def field_report_details(
        self,
        db: Session,
        report_id: str,
        policy: Optional[CachePolicy] = None,
    ) -> Dict[str, Any]:
        """Report detail for the assignee, with the work log newest first."""
        key = K.build(NS.REPORTS, REPORT_DETAIL, report_id, "field")

        def load():
            report = db.scalar(
                select(Report)
                .where(Report.id == report_id)
                .options(
                    selectinload(Report.user),
                    selectinload(Report.assigned_admin),
                    selectinload(Report.resolved_by),
                    selectinload(Report.social_post),
                    selectinload(Report.work_logs),
                )
            )
            return field_report_detail(report) if report is not None else None

        data, cached = await self.read_through(key, load, CacheTTL.REPORT_DETAIL, policy)
        if data is None:
            raise NotFoundError("Report not found")
        return {"data": data, "cached": cached}

    async def today_reports(
        self,
        db: Session,
        admin_id: str,
        policy: Optional[CachePolicy] = None,
    ) -> Dict[str, Any]:
        """Reports assigned to admin_id that were filed today (UTC)."""
        key = K.build(NS.ASSIGNED_REPORTS, admin_id, "today")

        def load():
            rows = db.scalars(
                select(Report)
                .where(Report.assigned_admin_id == admin_id, Report.created_at >= _start_of_day(utcnow()))
                .options(selectinload(Report.user))
                .order_by(PRIORITY_RANK, Report.created_at.desc())
            ).all()
            return {"data": [assigned_report_item(r) for r in rows]}

        data, cached = await self.read_through(key, load, CacheTTL.ASSIGNED_REPORTS, policy)
        return {**data, "cached": cached}

    async def dashboard_stats(
        self,
        db: Session,
        admin_id: str,
        policy: Optional[CachePolicy] = None,
    ) -> Dict[str, Any]:
        key = K.build(NS.ASSIGNED_REPORTS, admin_id, "dashboard")

        def load():
            today = _start_of_day(utcnow())
            resolved = Report.is_resolved.is_(True)
            row = db.execute(
                select(
                    func.count(Report.id),
                    func.sum(case((Report.status == ReportStatus.PENDING, 1), else_=0)),
                    func.sum(case((Report.status == ReportStatus.IN_PROGRESS, 1), else_=0)),
                    func.sum(case((resolved & (Report.resolved_at >= today), 1), else_=0)),
                    func.sum(case((resolved & (Report.resolved_at >= today - timedelta(days=7)), 1), else_=0)),
                    func.sum(case((resolved & (Report.resolved_at >= today - timedelta(days=30)), 1), else_=0)),
                    func.avg(Report.time_spent_minutes),
                ).where(Report.assigned_admin_id == admin_id)
            ).one()
            total, pending, in_progress, day, week, month, avg_spent = row

            count = func.count(Report.id).label("count")
            categories = db.execute(
                select(Report.category, count)
                .where(Report.assigned_admin_id == admin_id, Report.is_resolved.is_(False))
                .group_by(Report.category)
                .order_by(count.desc(), Report.category)
            ).all()
            return {
                "totalAssigned": total or 0,
                "pending": int(pending or 0),
                "inProgress": int(in_progress or 0),
                "completedToday": int(day or 0),
                "completedThisWeek": int(week or 0),
                "completedThisMonth": int(month or 0),
                "avgTimeSpent": round(float(avg_spent), 1) if avg_spent is not None else 0,
                "categoryBreakdown": [
                    {"category": category, "count": n} for category, n in categories
                ],
            }

        data, cached = await self.read_through(key, load, CacheTTL.ASSIGNED_REPORTS, policy)
        return {"data": data, "cached": cached}
