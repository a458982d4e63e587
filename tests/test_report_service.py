"""
Report Service Tests

Covers the write paths (create, update, delete, resolve and the field
workflow), their post-commit cache purges and the cached read paths.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from civicpulse.cache import CachePolicy, Pagination
from civicpulse.database import (
    AdminRole,
    PriorityTier,
    Report,
    ReportFilter,
    SocialPost,
    WorkLog,
)
from civicpulse.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    StoreUnavailableError,
    ValidationError,
)
from civicpulse.services import ReportService, UploadedFile
from civicpulse.utils.clock import utcnow

from conftest import add_admin, add_report, add_user

LAT, LNG = 12.9716, 77.5946
PAGE = Pagination(limit=50, offset=0)


@pytest.fixture
def service(cache, storage, notifier, settings):
    return ReportService(cache, storage=storage, notifier=notifier, settings=settings)


def photo(name="after.jpg"):
    return UploadedFile(filename=name, data=b"\xff\xd8jpeg", content_type="image/jpeg")


# =============================================================================
# CREATE
# =============================================================================

class TestCreateReport:

    async def test_auto_priority_from_nearby_density(self, service, db, user):
        for i in range(5):
            add_report(db, user, title=f"Gas leak {i}")

        result = await service.create_report(
            db, user.id, "Gas leak again",
            category="Public Safety & Emergency",
            latitude=LAT, longitude=LNG,
        )

        assert result["message"] == "Report created successfully"
        assert result["report"]["priority"] == "critical"
        assert result["report"]["status"] == "pending"

    async def test_explicit_priority_wins(self, service, db, user):
        result = await service.create_report(db, user.id, "Broken bench", priority="high")
        assert result["report"]["priority"] == "high"

    async def test_auto_without_location_is_medium(self, service, db, user):
        result = await service.create_report(db, user.id, "Noise", priority="auto")
        assert result["report"]["priority"] == "medium"
        assert result["report"]["department"] == "General"

    async def test_creates_feed_post_and_counts(self, service, db, user):
        result = await service.create_report(db, user.id, "Streetlight out", latitude=LAT, longitude=LNG)

        post = db.query(SocialPost).filter_by(report_id=result["report"]["id"]).one()
        assert post.is_public and not post.is_anonymous
        assert user.total_reports == 1

    @pytest.mark.parametrize("kwargs,message", [
        ({"title": ""}, "User ID and title are required"),
        ({"latitude": LAT}, "Latitude and longitude must be provided together"),
        ({"priority": "urgent"}, "Invalid priority"),
    ])
    async def test_validation(self, service, db, user, kwargs, message):
        args = {"title": "Pothole", **kwargs}
        with pytest.raises(ValidationError, match=message):
            await service.create_report(db, user.id, **args)
        assert db.query(Report).count() == 0

    async def test_unknown_user(self, service, db):
        with pytest.raises(NotFoundError):
            await service.create_report(db, "missing-user", "Pothole")

    async def test_purges_owner_lists(self, service, db, user):
        add_report(db, user, title="First")
        first = await service.list_user_reports(db, user.id, ReportFilter(), PAGE)
        second = await service.list_user_reports(db, user.id, ReportFilter(), PAGE)
        assert (first["cached"], second["cached"]) == (False, True)

        await service.create_report(db, user.id, "Second")

        third = await service.list_user_reports(db, user.id, ReportFilter(), PAGE)
        assert third["cached"] is False
        assert third["pagination"]["total"] == 2

    async def test_invalidation_failure_keeps_commit(self, service, db, user):
        with patch.object(service.invalidator, "handle_event", AsyncMock(side_effect=RuntimeError("cache gone"))):
            result = await service.create_report(db, user.id, "Flooded underpass")

        assert db.get(Report, result["report"]["id"]) is not None


# =============================================================================
# UPDATE / DELETE
# =============================================================================

class TestUpdateAndDelete:

    async def test_owner_update_purges_detail(self, service, db, user):
        report = add_report(db, user)
        await service.get_report(db, report.id)

        await service.update_report(db, report.id, {"title": "Deep pothole"}, user_id=user.id)

        detail = await service.get_report(db, report.id)
        assert detail["cached"] is False
        assert detail["report"]["title"] == "Deep pothole"

    async def test_update_rejections(self, service, db, user):
        report = add_report(db, user)
        other = add_user(db, phone="+910000000002")

        with pytest.raises(ValidationError, match="No fields to update"):
            await service.update_report(db, report.id, {"isResolved": True})
        with pytest.raises(NotFoundError):
            await service.update_report(db, report.id, {"title": "Mine now"}, user_id=other.id)

        resolved = add_report(db, user, title="Done", is_resolved=True)
        with pytest.raises(ConflictError):
            await service.update_report(db, resolved.id, {"title": "Reopen"})

    async def test_delete_by_owner_only(self, service, db, user):
        report = add_report(db, user)
        other = add_user(db, phone="+910000000002")

        with pytest.raises(PermissionDeniedError):
            await service.delete_report(db, report.id, user_id=other.id)

        result = await service.delete_report(db, report.id, user_id=user.id)

        assert result["deletedReportId"] == report.id
        with pytest.raises(NotFoundError):
            await service.get_report(db, report.id)
        with pytest.raises(NotFoundError):
            await service.delete_report(db, report.id)


# =============================================================================
# RESOLVE
# =============================================================================

class TestResolveReport:

    async def test_resolve_uploads_notifies_and_purges(self, service, db, user, admin, storage, notifier):
        report = add_report(db, user)
        await service.get_report(db, report.id)
        assert (await service.get_report(db, report.id))["cached"] is True
        await service.community_stats(db)

        result = await service.resolve_report(
            db, report.id, admin.id, "admin", "Patched", photos=[photo()],
        )

        assert result["message"] == "Report marked as resolved"
        assert result["uploadedPhotos"] == 1
        assert result["report"]["resolvedMediaUrls"] == storage.uploaded
        assert notifier.sent == [(user.id, report.id, "Pothole")]
        assert user.resolved_reports == 1

        detail = await service.get_report(db, report.id)
        assert detail["cached"] is False
        assert detail["report"]["isResolved"] is True
        assert detail["report"]["status"] == "resolved"
        assert detail["report"]["resolutionNotes"] == "Patched"
        assert detail["report"]["resolvedByAdminId"] == admin.id

        stats = await service.community_stats(db)
        assert stats["cached"] is False
        assert stats["stats"]["resolvedReports"] == 1

    async def test_too_many_photos(self, service, db, user, admin, storage):
        report = add_report(db, user)
        with pytest.raises(ValidationError, match="Maximum 2 photos"):
            await service.resolve_report(db, report.id, admin.id, "admin", photos=[photo(), photo(), photo()])
        assert storage.uploaded == []

    @pytest.mark.parametrize("role", ["super_admin", "boss"])
    async def test_role_must_match(self, service, db, user, admin, role):
        report = add_report(db, user)
        with pytest.raises(PermissionDeniedError):
            await service.resolve_report(db, report.id, admin.id, role)

    async def test_inactive_admin(self, service, db, user):
        gone = add_admin(db, email="gone@city.gov", is_active=False)
        report = add_report(db, user)
        with pytest.raises(PermissionDeniedError):
            await service.resolve_report(db, report.id, gone.id, "admin")

    async def test_already_resolved_uploads_nothing(self, service, db, user, admin, storage):
        report = add_report(db, user, is_resolved=True)
        with pytest.raises(ConflictError):
            await service.resolve_report(db, report.id, admin.id, "admin", photos=[photo()])
        assert storage.uploaded == []

    async def test_failed_transaction_discards_uploads(self, service, db, user, admin, storage):
        report = add_report(db, user)
        # Resolved by someone else between the precheck and the locked update
        with patch.object(
            service, "_unresolved_report",
            side_effect=[report, ConflictError("Report is already resolved")],
        ):
            with pytest.raises(ConflictError):
                await service.resolve_report(db, report.id, admin.id, "admin", photos=[photo()])

        assert storage.uploaded
        assert storage.deleted == storage.uploaded
        assert db.get(Report, report.id).is_resolved is False

    async def test_notification_failure_is_not_fatal(self, service, db, user, admin, notifier):
        report = add_report(db, user)
        notifier.notify_resolved = AsyncMock(side_effect=RuntimeError("webhook down"))

        result = await service.resolve_report(db, report.id, admin.id, "admin")

        assert result["report"]["isResolved"] is True


# =============================================================================
# FIELD ADMIN WORKFLOW
# =============================================================================

class TestAssignment:

    async def test_assign_purges_queue_and_orders_by_urgency(self, service, db, user, admin):
        low = add_report(db, user, title="Litter", priority=PriorityTier.LOW)
        critical = add_report(db, user, title="Live wire", priority=PriorityTier.CRITICAL)

        empty = await service.assigned_reports(db, admin.id, ReportFilter())
        assert empty["data"] == []

        await service.assign_report(db, low.id, admin.id)
        result = await service.assign_report(db, critical.id, admin.id)
        assert result["data"]["assignedTo"]["id"] == admin.id

        queue = await service.assigned_reports(db, admin.id, ReportFilter())
        assert queue["cached"] is False
        assert [r["title"] for r in queue["data"]] == ["Live wire", "Litter"]

    async def test_assign_errors(self, service, db, user, admin):
        report = add_report(db, user)
        with pytest.raises(ValidationError):
            await service.assign_report(db, report.id, None)
        with pytest.raises(NotFoundError, match="Field admin not found"):
            await service.assign_report(db, report.id, "nobody")

    async def test_start_work_requires_assignment(self, service, db, user, admin):
        report = add_report(db, user)
        with pytest.raises(NotFoundError):
            await service.start_work(db, report.id, admin.id)

        await service.assign_report(db, report.id, admin.id)
        result = await service.start_work(db, report.id, admin.id, notes="On site", latitude=LAT, longitude=LNG)

        assert result["data"]["status"] == "in_progress"
        assert result["data"]["workStartedAt"] is not None


class TestFieldWork:

    async def assigned(self, service, db, user, admin, **kwargs):
        report = add_report(db, user, **kwargs)
        await service.assign_report(db, report.id, admin.id)
        return report

    async def test_progress_update_logs_and_purges_queue(self, service, db, user, admin, storage):
        report = await self.assigned(service, db, user, admin)
        await service.start_work(db, report.id, admin.id)

        await service.assigned_reports(db, admin.id, ReportFilter())
        await service.field_report_details(db, report.id)
        await service.list_user_reports(db, user.id, ReportFilter(), PAGE)

        result = await service.add_progress_update(
            db, report.id, admin.id, notes="Half done", photos=[photo("mid.jpg")], latitude=LAT, longitude=LNG,
        )

        assert result["message"] == "Progress update added"
        assert result["data"]["photoUrls"] == storage.uploaded == ["https://media.test/civicpulse/progress/mid.jpg"]
        log = db.scalar(select(WorkLog).where(WorkLog.action == "in_progress_update"))
        assert (log.notes, log.photos, log.location_lat) == ("Half done", storage.uploaded, LAT)
        assert db.get(Report, report.id).in_progress_photos == storage.uploaded

        assert (await service.assigned_reports(db, admin.id, ReportFilter()))["cached"] is False
        details = await service.field_report_details(db, report.id)
        assert details["cached"] is False
        assert details["data"]["inProgressPhotos"] == storage.uploaded
        assert {entry["action"] for entry in details["data"]["workLogs"]} == {"started", "in_progress_update"}
        # Status did not change, so the owner's lists stay warm
        assert (await service.list_user_reports(db, user.id, ReportFilter(), PAGE))["cached"] is True

    async def test_progress_update_requires_assignment(self, service, db, user, admin, storage):
        report = add_report(db, user)
        with pytest.raises(NotFoundError, match="not assigned to this admin"):
            await service.add_progress_update(db, report.id, admin.id, photos=[photo()])
        assert storage.uploaded == []

        with pytest.raises(ValidationError):
            await service.add_progress_update(db, report.id, None)

    async def test_complete_report(self, service, db, user, admin, storage, notifier):
        report = await self.assigned(service, db, user, admin, age=timedelta(hours=3))
        await service.start_work(db, report.id, admin.id)
        db.get(Report, report.id).work_started_at = utcnow() - timedelta(minutes=90)
        db.commit()
        await service.dashboard_stats(db, admin.id)

        result = await service.complete_report(
            db, report.id, admin.id,
            resolved_notes="Resurfaced",
            photo_urls=["https://media.test/pre.jpg"],
            photos=[photo()],
            materials_used=["cold mix"],
        )

        data = result["data"]
        assert result["message"] == "Report marked as resolved"
        assert data["isResolved"] is True
        assert data["status"] == "resolved"
        assert data["resolvedByAdminId"] == admin.id
        assert data["resolvedMediaUrls"] == ["https://media.test/pre.jpg"] + storage.uploaded
        assert data["timeSpentMinutes"] == 90
        assert data["timeTakenToResolve"] >= 3 * 3600
        assert data["materialsUsed"] == ["cold mix"]
        assert data["workCompletedAt"] is not None
        assert notifier.sent == [(user.id, report.id, "Pothole")]
        assert user.resolved_reports == 1
        assert db.scalar(select(WorkLog).where(WorkLog.action == "completed")).notes == "Resurfaced"

        dashboard = await service.dashboard_stats(db, admin.id)
        assert dashboard["cached"] is False
        assert dashboard["data"]["completedToday"] == 1

    async def test_complete_checks_assignee(self, service, db, user, admin):
        other = add_admin(db, email="other@city.gov")
        report = await self.assigned(service, db, user, admin)

        with pytest.raises(NotFoundError, match="not assigned to this admin"):
            await service.complete_report(db, report.id, other.id)

        result = await service.complete_report(db, report.id, admin.id, time_spent_minutes=25)
        assert result["data"]["timeSpentMinutes"] == 25

        with pytest.raises(ConflictError):
            await service.complete_report(db, report.id, admin.id)

    async def test_complete_validation(self, service, db, user, admin):
        report = await self.assigned(service, db, user, admin)
        with pytest.raises(ValidationError):
            await service.complete_report(db, report.id, admin.id, time_spent_minutes=-5)
        with pytest.raises(ValidationError, match="Maximum 5 photos"):
            await service.complete_report(
                db, report.id, admin.id, photo_urls=["https://media.test/a.jpg"] * 4, photos=[photo(), photo()],
            )

    async def test_failed_completion_discards_uploads(self, service, db, user, admin, storage):
        report = await self.assigned(service, db, user, admin)
        with patch.object(
            service, "_assigned_report",
            side_effect=[report, ConflictError("Report is already resolved")],
        ):
            with pytest.raises(ConflictError):
                await service.complete_report(db, report.id, admin.id, photos=[photo()])

        assert storage.uploaded
        assert storage.deleted == storage.uploaded
        assert db.get(Report, report.id).is_resolved is False

    async def test_today_reports_by_urgency(self, service, db, user, admin):
        await self.assigned(service, db, user, admin, title="Old", age=timedelta(days=2))
        await self.assigned(service, db, user, admin, title="Litter", priority=PriorityTier.LOW)
        await self.assigned(service, db, user, admin, title="Live wire", priority=PriorityTier.CRITICAL)

        today = await service.today_reports(db, admin.id)

        assert [r["title"] for r in today["data"]] == ["Live wire", "Litter"]
        assert today["data"][0]["user"]["id"] == user.id

    async def test_dashboard_stats(self, service, db, user, admin):
        await self.assigned(service, db, user, admin)
        started = await self.assigned(service, db, user, admin)
        await service.start_work(db, started.id, admin.id)
        await self.assigned(service, db, user, admin, category="Water")
        done = await self.assigned(service, db, user, admin, category="Water")
        await service.complete_report(db, done.id, admin.id, time_spent_minutes=30)
        add_report(db, user)

        stats = await service.dashboard_stats(db, admin.id)

        assert stats["cached"] is False
        assert stats["data"] == {
            "totalAssigned": 4,
            "pending": 2,
            "inProgress": 1,
            "completedToday": 1,
            "completedThisWeek": 1,
            "completedThisMonth": 1,
            "avgTimeSpent": 30.0,
            "categoryBreakdown": [
                {"category": "Roads & Infrastructure", "count": 2},
                {"category": "Water", "count": 1},
            ],
        }
        assert (await service.dashboard_stats(db, admin.id))["cached"] is True

    async def test_field_details_not_found(self, service, db):
        with pytest.raises(NotFoundError):
            await service.field_report_details(db, "missing")


# =============================================================================
# READS
# =============================================================================

class TestReads:

    async def test_user_list_pagination_and_filters(self, service, db, user):
        for i in range(3):
            add_report(db, user, title=f"Report {i}")
        add_report(db, user, title="Closed", is_resolved=True)

        page = await service.list_user_reports(db, user.id, ReportFilter(), Pagination(limit=2, offset=0))
        assert len(page["reports"]) == 2
        assert page["pagination"] == {"total": 4, "limit": 2, "offset": 0, "hasMore": True}

        open_only = await service.list_user_reports(db, user.id, ReportFilter(is_resolved=False), PAGE)
        assert open_only["pagination"]["total"] == 3

    async def test_user_stats(self, service, db, user):
        add_report(db, user, priority=PriorityTier.CRITICAL)
        add_report(db, user, is_resolved=True)

        stats = (await service.user_report_stats(db, user.id))["stats"]

        assert stats["totalReports"] == 2
        assert stats["resolvedReports"] == 1
        assert stats["pendingReports"] == 1
        assert stats["criticalReports"] == 1

    async def test_nearby_sorted_by_distance_excluding_caller(self, service, db, user):
        neighbour = add_user(db, phone="+910000000002", full_name="Ravi")
        add_report(db, neighbour, title="Close", latitude=LAT, longitude=LNG)
        add_report(db, neighbour, title="Further", latitude=LAT + 0.01, longitude=LNG)
        add_report(db, neighbour, title="Other city", latitude=LAT + 1, longitude=LNG)
        add_report(db, user, title="Mine", latitude=LAT, longitude=LNG)

        result = await service.nearby_reports(db, LAT, LNG, radius_km=5, user_id=user.id)

        assert [r["title"] for r in result["reports"]] == ["Close", "Further"]
        assert result["reports"][0]["userName"] == "Ravi"
        assert result["location"] == {"latitude": 12.972, "longitude": 77.595, "radius": 5.0}

    async def test_nearby_requires_coordinates(self, service, db):
        with pytest.raises(ValidationError):
            await service.nearby_reports(db, None, LNG)
        with pytest.raises(ValidationError):
            await service.nearby_reports(db, 95.0, LNG)

    async def test_viewer_pinned_to_department(self, service, db, user):
        viewer = add_admin(db, email="viewer@city.gov", role=AdminRole.VIEWER, department="Water")
        manager = add_admin(db, email="manager@city.gov", role=AdminRole.ADMIN)
        add_report(db, user, title="Leak", department="Water")
        add_report(db, user, title="Pothole", department="Roads")

        own = await service.admin_reports(db, viewer.id, ReportFilter(department="Roads"), PAGE)
        everything = await service.admin_reports(db, manager.id, ReportFilter(), PAGE)

        assert [r["title"] for r in own["reports"]] == ["Leak"]
        assert own["adminInfo"]["canViewAllDepartments"] is False
        assert everything["pagination"]["total"] == 2

    async def test_viewer_without_department(self, service, db):
        viewer = add_admin(db, email="viewer@city.gov", role=AdminRole.VIEWER, department=None)
        with pytest.raises(PermissionDeniedError):
            await service.admin_reports(db, viewer.id, ReportFilter(), PAGE)

    async def test_fresh_policy_reloads(self, service, db, user):
        report = add_report(db, user)
        await service.get_report(db, report.id)

        result = await service.get_report(db, report.id, policy=CachePolicy.fresh())

        assert result["cached"] is False

    async def test_store_outage_is_retryable(self, service):
        broken = MagicMock()
        broken.scalar.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))

        with pytest.raises(StoreUnavailableError) as exc_info:
            await service.get_report(broken, "r1")

        assert exc_info.value.status_code == 503
        assert exc_info.value.retry_after > 0
