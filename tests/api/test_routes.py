import pytest
from fastapi.testclient import TestClient
from conftest import JWT_SECRET, auth_header, job_key_from, signed_webhook
from app.main import app
from app.services import get_services

CROP_URL = "https://replicate.delivery/crop.png"

@pytest.mark.api
class TestAPI:
    @pytest.fixture
    def client(self, services, monkeypatch):
        monkeypatch.setattr("app.auth.settings.JWT_SECRET", JWT_SECRET)
        app.dependency_overrides[get_services] = lambda: services
        yield TestClient(app)
        app.dependency_overrides.clear()

    def post_webhook(self, client, submission, payload):
        body, headers = signed_webhook(payload)
        return client.post(submission["webhook_url"].replace("https://api.example.test", ""),
                           content=body, headers=headers)

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}

    def test_detection_lifecycle(self, client, image, async_provider):
        response = client.post("/ai/v1/detection", json={"imageName": image, "criteria": "materials"},
                               headers=auth_header())
        assert response.status_code == 202
        assert response.json()["status"] == "queued"

        metadata = client.get(f"/images/v1/image/{image}/metadata").json()["metadata"]
        assert metadata["materials"] == "Processing"

        response = self.post_webhook(client, async_provider.submissions[0],
                                     {"status": "succeeded", "output": [CROP_URL]})
        assert response.status_code == 200
        assert response.json()["job_key"] == job_key_from(async_provider.submissions[0]["webhook_url"])

        response = self.post_webhook(client, async_provider.submissions[1],
                                     {"status": "succeeded", "output": "stone, brick"})
        assert response.json()["status"] == "completed"

        # The cached metadata view was invalidated by the update
        metadata = client.get(f"/images/v1/image/{image}/metadata").json()["metadata"]
        assert metadata == {"history": "Built around 1900", "materials": "stone, brick"}

        response = client.post("/ai/v1/detection", json={"imageName": image, "criteria": "materialsType"},
                               headers=auth_header())
        assert response.status_code == 200
        assert response.json()["result"] == "stone, brick"

    def test_duplicate_detection_is_running(self, client, image):
        payload = {"imageId": image, "criteria": "history"}
        client.post("/ai/v1/detection", json=payload, headers=auth_header())
        response = client.post("/ai/v1/detection", json=payload, headers=auth_header())
        assert response.status_code == 200
        assert response.json()["status"] == "running"

    def test_detection_failure(self, client, image, async_provider):
        async_provider.fail_with = "replicate down"
        response = client.post("/ai/v1/detection", json={"imageName": image, "criteria": "seismic"},
                               headers=auth_header())
        assert response.status_code == 502
        assert response.json()["detail"] == "Error in detection"

    @pytest.mark.parametrize("payload,status", [
        ({"imageName": "alice-img1.jpg", "criteria": "colour"}, 400),
        ({"imageName": "alice-img1.jpg"}, 400),
        ({"imageName": "alice-nope.jpg", "criteria": "materials"}, 404),
    ])
    def test_detection_bad_requests(self, client, image, payload, status):
        response = client.post("/ai/v1/detection", json=payload, headers=auth_header())
        assert response.status_code == status

    def test_detection_requires_token(self, client, image):
        response = client.post("/ai/v1/detection", json={"imageName": image, "criteria": "materials"})
        assert response.status_code == 401

    def test_detection_without_credit(self, client, image):
        response = client.post("/ai/v1/detection", json={"imageName": image, "criteria": "materials"},
                               headers=auth_header("carol"))
        assert response.status_code == 402

    def test_webhook_errors(self, client, image, async_provider):
        client.post("/ai/v1/detection", json={"imageName": image, "criteria": "materials"},
                    headers=auth_header())
        body, headers = signed_webhook({"status": "succeeded", "output": [CROP_URL]})

        response = client.post("/webhooks/v1/replicate/detection", content=body, headers=headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "Job key not found"

        response = client.post("/webhooks/v1/replicate/detection?job_key=detection-gone",
                               content=body, headers=headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "No data for job key"

        url = async_provider.submissions[0]["webhook_url"].replace("https://api.example.test", "")
        response = client.post(url, content=body + b" ", headers=headers)
        assert response.status_code == 401
        # A rejected signature triggers exactly one refetch of the signing secret
        assert async_provider.secret_fetches == 2

    def test_upload_and_list_images(self, client):
        files = [
            ("image", ("front.jpg", b"\xff\xd8front", "image/jpeg")),
            ("image", ("side.jpg", b"\xff\xd8side", "image/jpeg")),
        ]
        response = client.post("/images/v1/images", files=files, headers=auth_header("bob"))
        assert response.status_code == 201
        uploaded = response.json()
        assert len(uploaded) == 2
        assert all(item["name"].startswith("bob-") and item["name"].endswith(".jpg") for item in uploaded)

        listed = client.get("/images/v1/images", headers=auth_header("bob")).json()
        assert sorted(item["name"] for item in listed) == sorted(item["name"] for item in uploaded)
        assert client.get("/images/v1/images", headers=auth_header("alice")).json() == []

        response = client.get(f"/images/v1/image/{uploaded[0]['name']}")
        assert response.status_code == 200
        assert response.headers["cache-control"] == "private, max-age=31536000"
        assert response.content.startswith(b"\xff\xd8")

    def test_upload_limits(self, client, services):
        response = client.post("/images/v1/images", files=[("image", ("e.jpg", b"", "image/jpeg"))],
                               headers=auth_header())
        assert response.status_code == 400

        too_big = b"x" * (services.settings.MAX_UPLOAD_BYTES + 1)
        response = client.post("/images/v1/images", files=[("image", ("big.jpg", too_big, "image/jpeg"))],
                               headers=auth_header())
        assert response.status_code == 413

    def test_missing_image(self, client):
        assert client.get("/images/v1/image/nobody-1.jpg").status_code == 404
        assert client.get("/images/v1/image/nobody-1.jpg/metadata").status_code == 404
