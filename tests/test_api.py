"""
Tests for API endpoints
"""
import pytest
from unittest.mock import patch

from accessmap.api.main import app, run
from accessmap.core.config import settings
from accessmap.core.exceptions import StorageUnavailable


def _submit(client, user="alice", feature_type="ramp", latitude=-23.5614, longitude=-46.6559, **extra):
    payload = {"type": feature_type, "latitude": latitude, "longitude": longitude, **extra}
    return client.post("/api/v1/reports", json=payload, headers={"X-User-Id": user})


class TestSystemEndpoints:
    """Test suite for system endpoints."""

    def test_runner_uses_configured_address(self):
        """Test the server runner binds the configured host and port."""
        with patch("uvicorn.run") as serve:
            run()

        serve.assert_called_once_with(app, host=settings.api_host, port=settings.api_port)

    def test_health(self, client):
        """Test health endpoint reports a reachable database."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] is True
        assert "version" in data


class TestReportEndpoints:
    """Test suite for report endpoints."""

    def test_create_report(self, client):
        """Test a new sighting returns 201 with the report."""
        response = _submit(client)

        assert response.status_code == 201
        data = response.json()
        assert data["created"] is True
        assert data["type"] == "ramp"
        assert data["status"] == "pending"
        assert data["confirmation_count"] == 1
        assert data["is_permanent"] is False
        assert data["expires_at"] is not None
        assert data["location"] == {"longitude": -46.6559, "latitude": -23.5614}
        assert data["points_earned"] == 1

    def test_create_report_with_photo(self, client):
        """Test a photo on creation earns photo points."""
        response = _submit(client, photo_url="/uploads/ramp.jpg")

        assert response.status_code == 201
        assert response.json()["points_earned"] == 3

    def test_merge_returns_200(self, client):
        """Test a nearby same-type sighting reinforces the existing report."""
        first = _submit(client).json()
        response = _submit(client, user="bob", latitude=-23.56145)

        assert response.status_code == 200
        data = response.json()
        assert data["created"] is False
        assert data["id"] == first["id"]
        assert data["confirmation_count"] == 2
        assert data["status"] == "confirmed"
        assert data["points_earned"] == 1

    @pytest.mark.parametrize("payload", [
        {"type": "stairs", "latitude": 0, "longitude": 0},
        {"type": "ramp", "latitude": 95, "longitude": 0},
        {"type": "ramp", "latitude": 0, "longitude": -200},
        {"type": "ramp", "latitude": "north", "longitude": 0},
        {"type": "ramp", "longitude": 0},
        {"type": "ramp", "latitude": 0, "longitude": 0, "photo_url": ""},
    ])
    def test_invalid_submission(self, client, payload):
        """Test malformed submissions are rejected with 400."""
        response = client.post("/api/v1/reports", json=payload, headers={"X-User-Id": "alice"})
        assert response.status_code == 400
        assert "detail" in response.json()

    def test_actor_fallbacks(self, client):
        """Test device id and client address identify anonymous callers."""
        report_id = _submit(client).json()["id"]

        response = client.post(f"/api/v1/reports/{report_id}/confirm", headers={"X-Device-Id": "device-9"})
        assert response.status_code == 200

        response = client.post(f"/api/v1/reports/{report_id}/confirm")
        assert response.status_code == 200

        assert client.get("/api/v1/users/device-9").json()["points"] == 1
        assert client.get("/api/v1/users/testclient").json()["points"] == 1

    def test_list_nearby(self, client):
        """Test nearby listing is ordered by distance and carries thumbnails."""
        far = _submit(client, feature_type="elevator", latitude=-23.5650).json()
        near = _submit(client, feature_type="ramp", photo_url="/uploads/ramp.jpg").json()

        response = client.get("/api/v1/reports", params={"longitude": -46.6559, "latitude": -23.5614})

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        assert data["radius_m"] == 1000
        assert [r["id"] for r in data["reports"]] == [near["id"], far["id"]]
        assert data["reports"][0]["photo"] == "/uploads/ramp.jpg"
        assert data["reports"][0]["distance_m"] == 0.0
        assert data["reports"][1]["photo"] is None

    def test_list_nearby_radius(self, client):
        """Test an explicit radius limits the listing."""
        _submit(client, latitude=-23.5650)

        params = {"longitude": -46.6559, "latitude": -23.5614, "radius": 100}
        assert client.get("/api/v1/reports", params=params).json()["count"] == 0

    def test_list_nearby_invalid(self, client):
        """Test bad query parameters are rejected with 400."""
        assert client.get("/api/v1/reports", params={"longitude": 0, "latitude": 99}).status_code == 400
        assert client.get("/api/v1/reports", params={"longitude": 0}).status_code == 400
        params = {"longitude": 0, "latitude": 0, "radius": -1}
        assert client.get("/api/v1/reports", params=params).status_code == 400

    def test_get_report(self, client):
        """Test report detail lists visible photos with their indexes."""
        report_id = _submit(client, photo_url="/uploads/1.jpg").json()["id"]
        client.post(f"/api/v1/reports/{report_id}/photos", json={"photo_url": "/uploads/2.jpg"},
                    headers={"X-User-Id": "bob"})

        response = client.get(f"/api/v1/reports/{report_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["creator_id"] == "alice"
        assert data["removal_report_count"] == 0
        assert [(p["index"], p["url"]) for p in data["photos"]] == [
            (0, "/uploads/1.jpg"),
            (1, "/uploads/2.jpg"),
        ]

    def test_get_unknown_report(self, client):
        """Test unknown report ids return 404."""
        assert client.get("/api/v1/reports/missing").status_code == 404

    def test_confirm(self, client):
        """Test confirming returns the updated report and earned points."""
        report_id = _submit(client).json()["id"]

        response = client.post(f"/api/v1/reports/{report_id}/confirm", json={"photo_url": "/uploads/3.jpg"},
                               headers={"X-User-Id": "bob"})

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "confirmed"
        assert data["confirmation_count"] == 2
        assert data["points_earned"] == 3
        assert client.get("/api/v1/users/alice").json()["points"] == 11

    def test_confirm_twice(self, client):
        """Test a second confirmation by the same user conflicts."""
        report_id = _submit(client).json()["id"]
        client.post(f"/api/v1/reports/{report_id}/confirm", headers={"X-User-Id": "bob"})

        response = client.post(f"/api/v1/reports/{report_id}/confirm", headers={"X-User-Id": "bob"})
        assert response.status_code == 409

    def test_confirm_unknown(self, client):
        """Test confirming an unknown report returns 404."""
        response = client.post("/api/v1/reports/missing/confirm", headers={"X-User-Id": "bob"})
        assert response.status_code == 404

    def test_removal_flow(self, client):
        """Test ten removal reports remove a report for good."""
        report_id = _submit(client).json()["id"]

        for i in range(10):
            response = client.post(f"/api/v1/reports/{report_id}/remove", headers={"X-User-Id": f"u{i}"})
            assert response.status_code == 200

        data = response.json()
        assert data["status"] == "removed"
        assert data["removal_report_count"] == 10
        assert data["expires_at"] is None

        again = client.post(f"/api/v1/reports/{report_id}/remove", headers={"X-User-Id": "late"})
        assert again.status_code == 404
        confirm = client.post(f"/api/v1/reports/{report_id}/confirm", headers={"X-User-Id": "late"})
        assert confirm.status_code == 404

        params = {"longitude": -46.6559, "latitude": -23.5614}
        assert client.get("/api/v1/reports", params=params).json()["count"] == 0

    def test_duplicate_removal(self, client):
        """Test a user cannot report a removal twice."""
        report_id = _submit(client).json()["id"]
        client.post(f"/api/v1/reports/{report_id}/remove", headers={"X-User-Id": "bob"})

        response = client.post(f"/api/v1/reports/{report_id}/remove", headers={"X-User-Id": "bob"})
        assert response.status_code == 409

    def test_add_photo_requires_url(self, client):
        """Test adding a photo without a reference is rejected."""
        report_id = _submit(client).json()["id"]

        response = client.post(f"/api/v1/reports/{report_id}/photos", json={}, headers={"X-User-Id": "bob"})
        assert response.status_code == 400

    def test_photo_moderation(self, client):
        """Test five flags hide a photo from the detail view."""
        report_id = _submit(client, photo_url="/uploads/bad.jpg").json()["id"]

        for i in range(5):
            response = client.post(f"/api/v1/reports/{report_id}/report-photo", json={"photo_index": 0},
                                   headers={"X-User-Id": f"flagger-{i}"})
            assert response.status_code == 200

        data = response.json()
        assert data == {"report_id": report_id, "photo_index": 0, "report_count": 5, "is_hidden": True}

        detail = client.get(f"/api/v1/reports/{report_id}").json()
        assert detail["photos"] == []
        # Every photo hidden: the first one still serves as thumbnail
        assert detail["photo"] == "/uploads/bad.jpg"

    def test_photo_flag_errors(self, client):
        """Test duplicate flags conflict and unknown photos are missing."""
        report_id = _submit(client, photo_url="/uploads/x.jpg").json()["id"]
        url = f"/api/v1/reports/{report_id}/report-photo"

        assert client.post(url, json={"photo_index": 0, "reason": "blurry"},
                           headers={"X-User-Id": "bob"}).status_code == 200
        assert client.post(url, json={"photo_index": 0}, headers={"X-User-Id": "bob"}).status_code == 409
        assert client.post(url, json={"photo_index": 3}, headers={"X-User-Id": "bob"}).status_code == 404

    def test_storage_unavailable(self, client):
        """Test store failures map to 503."""
        services = app.state.services
        with patch.object(services.engine, "confirm", side_effect=StorageUnavailable()):
            response = client.post("/api/v1/reports/any/confirm", headers={"X-User-Id": "bob"})

        assert response.status_code == 503
        assert response.json()["detail"]

    def test_points_failure_keeps_confirmation(self, client):
        """Test a points ledger outage still reports the stored confirmation."""
        report_id = _submit(client).json()["id"]
        services = app.state.services

        with patch.object(services.points, "apply", side_effect=StorageUnavailable()):
            response = client.post(f"/api/v1/reports/{report_id}/confirm", headers={"X-User-Id": "bob"})

        assert response.status_code == 200
        data = response.json()
        assert data["confirmation_count"] == 2
        assert data["points_earned"] == 0

        retry = client.post(f"/api/v1/reports/{report_id}/confirm", headers={"X-User-Id": "bob"})
        assert retry.status_code == 409
        assert client.get("/api/v1/users/bob").status_code == 404


class TestUserEndpoints:
    """Test suite for user endpoints."""

    def test_profile(self, client):
        """Test a contributor's profile shows points and level."""
        _submit(client, photo_url="/uploads/1.jpg")

        response = client.get("/api/v1/users/alice")

        assert response.status_code == 200
        data = response.json()
        assert data["points"] == 3
        assert data["level"] == "Explorer"
        assert data["points_breakdown"]["photos_added"] == 2
        assert data["stats"]["total_reports"] == 1

    def test_unknown_user(self, client):
        """Test unknown users return 404."""
        assert client.get("/api/v1/users/nobody").status_code == 404

    def test_leaderboard(self, client):
        """Test leaderboard ranks contributors by points."""
        report_id = _submit(client).json()["id"]
        client.post(f"/api/v1/reports/{report_id}/confirm", headers={"X-User-Id": "bob"})
        _submit(client, user="carol", feature_type="elevator")

        response = client.get("/api/v1/users/leaderboard", params={"limit": 2})

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        assert [u["id"] for u in data["users"]] == ["alice", "bob"]
        assert data["users"][0]["points"] == 11
