from datetime import timedelta
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from cityreport.core.config import Settings
from cityreport.core.database import build_services
from cityreport.core.errors import StoreUnavailable
from cityreport.main import create_app
from cityreport.models.report_model import CompressedImage, ReportStatus
from cityreport.services.media_store import MediaStore
from cityreport.services.preference_service import JsonFilePreferenceStore
from cityreport.services.report_store import InMemoryReportStore
from cityreport.utils.helpers import utc_now
from conftest import make_jpeg, make_report


class MemoryMediaStore(MediaStore):
    def __init__(self):
        self.files = {}

    async def store(self, image: CompressedImage, filename: Optional[str] = None) -> str:
        photo_id = f"photo-{len(self.files) + 1}"
        self.files[photo_id] = image
        return photo_id

    async def delete(self, photo_id: str) -> bool:
        return self.files.pop(photo_id, None) is not None


class FailingReportStore(InMemoryReportStore):
    async def fetch_all(self):
        raise StoreUnavailable("fetch all reports")


def _aged(created_ago, updated_ago=None, **fields):
    # The popular endpoint reads the wall clock, so ages are relative to it
    now = utc_now()
    updated_ago = created_ago if updated_ago is None else updated_ago
    return make_report(**fields).model_copy(
        update={"createdAt": now - created_ago, "updatedAt": now - updated_ago}
    )


@pytest.fixture
def reports():
    return [
        _aged(timedelta(days=2), timedelta(days=1), status=ReportStatus.COMPLETED, severity=5, votes=10, userId="alice"),
        _aged(timedelta(hours=5), status=ReportStatus.NEW, severity=2, votes=3, userId="alice"),
        _aged(timedelta(days=30), status=ReportStatus.IN_PROGRESS, severity=4, votes=7, userId="bob"),
    ]


@pytest.fixture
def media_store():
    return MemoryMediaStore()


def _client(tmp_path, report_store, media_store):
    settings = Settings(preferences_path=tmp_path / "prefs.json")
    services = build_services(
        settings,
        report_store=report_store,
        media_store=media_store,
        preferences=JsonFilePreferenceStore(settings.preferences_path),
    )
    return TestClient(create_app(settings, services))


@pytest.fixture
def client(tmp_path, reports, media_store):
    with _client(tmp_path, InMemoryReportStore(reports), media_store) as test_client:
        yield test_client


class TestReportViews:
    def test_list_newest_first(self, client, reports):
        response = client.get("/api/reports")
        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 3
        assert [r["id"] for r in body["reports"]] == [reports[1].id, reports[0].id, reports[2].id]
        assert "X-Process-Time" in response.headers

    def test_list_filters(self, client, reports):
        body = client.get("/api/reports", params={"status": "Selesai"}).json()
        assert [r["id"] for r in body["reports"]] == [reports[0].id]

        body = client.get("/api/reports", params={"min_severity": 4, "newest_first": False}).json()
        assert [r["id"] for r in body["reports"]] == [reports[2].id, reports[0].id]

        body = client.get("/api/reports", params={"user_id": "bob"}).json()
        assert [r["id"] for r in body["reports"]] == [reports[2].id]

    def test_unknown_status_filter_is_bad_request(self, client):
        assert client.get("/api/reports", params={"status": "archived"}).status_code == 400

    def test_popular_this_week(self, client, reports):
        body = client.get("/api/reports/popular").json()
        assert [r["id"] for r in body["reports"]] == [reports[0].id, reports[1].id]

        body = client.get("/api/reports/popular", params={"limit": 1}).json()
        assert body["count"] == 1

    def test_urgent(self, client, reports):
        body = client.get("/api/reports/urgent").json()
        assert [r["id"] for r in body["reports"]] == [reports[0].id, reports[2].id]

    def test_user_stats(self, client):
        body = client.get("/api/reports/users/alice/stats").json()
        assert body["totalReports"] == 2
        assert body["resolvedCount"] == 1
        assert body["resolvedPercentage"] == 50
        assert body["totalVotes"] == 13
        assert body["averageVotes"] == 6

    def test_user_stats_for_unknown_user(self, client):
        body = client.get("/api/reports/users/nobody/stats").json()
        assert body["totalReports"] == 0
        assert body["resolvedPercentage"] == 0
        assert body["lastReportDate"] is None

    def test_analytics(self, client):
        body = client.get("/api/reports/analytics").json()
        assert body["totalReports"] == 3
        assert sum(body["monthly"].values()) == 3
        assert body["categories"] == {"Jalan Rusak": 3}
        assert body["averageResponseDays"] == 1.0

    def test_store_failure_is_service_unavailable(self, tmp_path, media_store):
        with _client(tmp_path, FailingReportStore(), media_store) as failing:
            response = failing.get("/api/reports")
        assert response.status_code == 503
        assert "fetch all reports" in response.json()["detail"]


class TestPhotoUpload:
    def test_upload_compresses_and_stores(self, client, media_store):
        files = {"image": ("big.jpg", make_jpeg((2048, 1024), noise=False), "image/jpeg")}
        response = client.post("/api/reports/photos", files=files)

        assert response.status_code == 200
        body = response.json()
        assert (body["width"], body["height"]) == (1024, 512)
        assert media_store.files[body["photoId"]].byte_length == body["sizeBytes"]

    def test_profile_upload_uses_profile_bounds(self, client):
        files = {"image": ("me.jpg", make_jpeg((1200, 1200), noise=False), "image/jpeg")}
        body = client.post("/api/reports/photos/profile", files=files).json()
        assert (body["width"], body["height"]) == (512, 512)

    def test_non_image_content_type_rejected(self, client, media_store):
        files = {"image": ("notes.txt", b"hello", "text/plain")}
        assert client.post("/api/reports/photos", files=files).status_code == 400
        assert media_store.files == {}

    def test_unreadable_image_rejected(self, client, media_store):
        files = {"image": ("broken.jpg", b"definitely not a jpeg", "image/jpeg")}
        response = client.post("/api/reports/photos", files=files)
        assert response.status_code == 400
        assert media_store.files == {}


class TestPreferencesAndHealth:
    def test_dark_mode_round_trip(self, client):
        assert client.get("/api/preferences/dark-mode").json() == {"darkMode": False}
        assert client.put("/api/preferences/dark-mode", json={"darkMode": True}).json() == {"darkMode": True}
        assert client.get("/api/preferences/dark-mode").json() == {"darkMode": True}

    def test_dark_mode_requires_boolean(self, client):
        assert client.put("/api/preferences/dark-mode", json={}).status_code == 422

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}
