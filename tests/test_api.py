"""
HTTP Layer Tests

Drives the FastAPI app end to end against the in-memory database and
cache: status codes, envelopes and the cache flag on reads.
"""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

import civicpulse
from api.app import app
from api.dependencies import provide_cache, provide_notifier, provide_settings, provide_storage
from civicpulse.database import AdminRole, SocialPost, get_db

from conftest import add_admin, add_report

API = "/api/v1"


@pytest.fixture
def client(engine, cache, storage, notifier, settings):
    app.dependency_overrides[provide_cache] = lambda: cache
    app.dependency_overrides[provide_storage] = lambda: storage
    app.dependency_overrides[provide_notifier] = lambda: notifier
    app.dependency_overrides[provide_settings] = lambda: settings
    yield TestClient(app)
    app.dependency_overrides.clear()


# =============================================================================
# ENVELOPES
# =============================================================================

class TestEnvelopes:

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["version"] == civicpulse.__version__ == "1.0.0"

    def test_validation_error_is_400(self, client, user):
        response = client.post(f"{API}/reports/create", json={"userId": user.id, "title": ""})

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "validation_error"
        assert body["message"] == "User ID and title are required"

    def test_bad_query_parameter_is_400(self, client, user):
        response = client.get(f"{API}/reports/user/{user.id}", params={"limit": 0})

        assert response.status_code == 400
        assert response.json()["details"]["errors"]

    def test_not_found_is_404(self, client):
        response = client.get(f"{API}/reports/missing")
        assert response.status_code == 404
        assert response.json() == {"success": False, "message": "Report not found", "error": "not_found"}

    def test_store_outage_is_503_with_retry_after(self, client):
        broken = MagicMock()
        broken.scalar.side_effect = OperationalError("SELECT", {}, Exception("connection refused"))
        app.dependency_overrides[get_db] = lambda: broken

        response = client.get(f"{API}/reports/r1")

        assert response.status_code == 503
        assert int(response.headers["Retry-After"]) > 0
        assert response.json()["error"] == "store_unavailable"


# =============================================================================
# REPORTS
# =============================================================================

class TestReportEndpoints:

    def test_create_then_cached_read(self, client, user):
        created = client.post(f"{API}/reports/create", json={
            "userId": user.id,
            "title": "Overflowing drain",
            "category": "Water Supply & Sewerage",
            "latitude": 12.9716,
            "longitude": 77.5946,
        })
        assert created.status_code == 201
        report_id = created.json()["report"]["id"]

        first = client.get(f"{API}/reports/{report_id}")
        second = client.get(f"{API}/reports/{report_id}")
        fresh = client.get(f"{API}/reports/{report_id}", params={"fresh": "true"})

        assert first.json()["cached"] is False
        assert second.json()["cached"] is True
        assert fresh.json()["cached"] is False
        assert second.json()["report"]["userName"] == "Asha Rao"

    def test_resolve_multipart(self, client, db, user, admin, storage):
        report = add_report(db, user)

        response = client.post(
            f"{API}/reports/{report.id}/resolve",
            data={"adminId": admin.id, "adminRole": "admin", "resolutionNotes": "Filled"},
            files=[("resolvedPhotos", ("after.jpg", b"\xff\xd8jpeg", "image/jpeg"))],
        )

        assert response.status_code == 200
        body = response.json()
        assert body["uploadedPhotos"] == 1
        assert body["report"]["isResolved"] is True
        assert len(storage.uploaded) == 1

    def test_resolve_twice_conflicts(self, client, db, user, admin):
        report = add_report(db, user, is_resolved=True)

        response = client.post(
            f"{API}/reports/{report.id}/resolve",
            data={"adminId": admin.id, "adminRole": "admin"},
        )

        assert response.status_code == 409

    def test_field_workflow(self, client, db, user, admin, storage):
        report = add_report(db, user)
        assert client.post(f"{API}/reports/{report.id}/assign", json={"assignedAdminId": admin.id}).status_code == 200

        progress = client.post(
            f"{API}/reports/{report.id}/progress",
            data={"adminId": admin.id, "notes": "Cones placed", "latitude": "12.9716", "longitude": "77.5946"},
            files=[("photos", ("mid.jpg", b"\xff\xd8jpeg", "image/jpeg"))],
        )
        complete = client.post(
            f"{API}/reports/{report.id}/complete",
            data={
                "adminId": admin.id,
                "resolvedNotes": "Filled",
                "timeSpentMinutes": "45",
                "materialsUsed": ["cold mix", "sand"],
                "resolvedPhotoUrls": ["https://media.test/pre.jpg"],
            },
            files=[("resolvedPhotos", ("after.jpg", b"\xff\xd8jpeg", "image/jpeg"))],
        )
        details = client.get(f"{API}/reports/{report.id}/details")
        dashboard = client.get(f"{API}/reports/assigned/{admin.id}/dashboard")
        today = client.get(f"{API}/reports/assigned/{admin.id}/today")

        assert progress.json()["data"]["photoUrls"] == storage.uploaded[:1]
        assert complete.status_code == 200
        data = complete.json()["data"]
        assert (data["timeSpentMinutes"], data["materialsUsed"]) == (45, ["cold mix", "sand"])
        assert data["resolvedMediaUrls"] == ["https://media.test/pre.jpg", storage.uploaded[1]]
        assert [log["action"] for log in details.json()["data"]["workLogs"]] == ["completed", "in_progress_update"]
        assert dashboard.json()["data"]["completedToday"] == 1
        assert today.json()["data"][0]["id"] == report.id

    def test_complete_by_other_admin_is_404(self, client, db, user, admin):
        report = add_report(db, user)
        other = add_admin(db, email="other@city.gov")
        client.post(f"{API}/reports/{report.id}/assign", json={"assignedAdminId": admin.id})

        response = client.post(f"{API}/reports/{report.id}/complete", data={"adminId": other.id})

        assert response.status_code == 404
        assert response.json()["message"] == "Report not found or not assigned to this admin"

    def test_nearby_and_community_stats(self, client, db, user):
        add_report(db, user)

        nearby = client.get(f"{API}/reports/nearby", params={"latitude": 12.9716, "longitude": 77.5946, "radius": 2})
        stats = client.get(f"{API}/reports/community-stats")

        assert nearby.status_code == 200
        assert len(nearby.json()["reports"]) == 1
        assert stats.json()["stats"]["totalReports"] == 1

    def test_owner_delete(self, client, db, user):
        report = add_report(db, user)

        response = client.delete(f"{API}/reports/{report.id}", params={"userId": user.id})

        assert response.status_code == 200
        assert response.json()["deletedReportId"] == report.id


# =============================================================================
# SOCIAL / ADMINS / USERS
# =============================================================================

class TestOtherEndpoints:

    def test_vote_and_feed(self, client, db, user):
        report = add_report(db, user)
        post_id = db.query(SocialPost.id).filter_by(report_id=report.id).scalar()
        db.commit()

        vote = client.post(f"{API}/social/posts/{post_id}/vote", json={"userId": user.id, "voteType": "upvote"})
        feed = client.get(f"{API}/social/posts", params={"tab": "all", "userId": user.id})

        assert vote.json()["action"] == "added_upvote"
        assert feed.json()["posts"][0]["userVote"] == "upvote"

    def test_comment_created(self, client, db, user):
        report = add_report(db, user)
        post_id = db.query(SocialPost.id).filter_by(report_id=report.id).scalar()
        db.commit()

        response = client.post(f"{API}/social/posts/{post_id}/comments", json={"userId": user.id, "content": "+1"})

        assert response.status_code == 201

    def test_admin_directory_permissions(self, client, db):
        add_admin(db, email="root@city.gov", role=AdminRole.SUPER_ADMIN)

        allowed = client.post(f"{API}/admins/all", json={"requesterRole": "super_admin"})
        denied = client.post(f"{API}/admins/all", json={"requesterRole": "viewer"})

        assert allowed.status_code == 200
        assert allowed.json()["meta"]["totalCount"] == 1
        assert denied.status_code == 403

    def test_create_or_login_status_codes(self, client, engine):
        first = client.post(f"{API}/users/create-or-login", json={"phoneNumber": "+919999999999"})
        second = client.post(f"{API}/users/create-or-login", json={"phoneNumber": "+919999999999"})

        assert first.status_code == 201
        assert first.json()["isNewUser"] is True
        assert "created" not in first.json()
        assert second.status_code == 200
        assert second.json()["message"] == "Login successful"

    def test_health(self, client):
        response = client.get(f"{API}/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
