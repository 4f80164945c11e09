from fastapi.testclient import TestClient


def test_public_status_needs_no_auth(client: TestClient):
    response = client.get("/api/v1/enrollment/status")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "UNLIMITED"
    assert data["remaining_spots"] == -1
    assert "updated_by" not in data


def test_admin_config_requires_token(client: TestClient):
    assert client.get("/api/v1/admin/enrollment/config").status_code == 401
    response = client.get(
        "/api/v1/admin/enrollment/config", headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert response.status_code == 401


def test_update_config_and_fill_to_capacity(client: TestClient, admin_headers):
    response = client.put(
        "/api/v1/admin/enrollment/config", headers=admin_headers, json={"max_participants": 1}
    )
    assert response.status_code == 200
    assert response.json()["status"] == "OPEN"
    assert response.json()["updated_by"] == "admin_test"

    first = client.post("/api/v1/participants", json={"phone": "+12025550101"})
    assert first.status_code == 201

    second = client.post("/api/v1/participants", json={"phone": "+12025550102"})
    assert second.status_code == 403
    assert second.json()["category"] == "capacity_error"
    assert second.json()["details"]["decision"] == "FULL"

    status = client.get("/api/v1/enrollment/status").json()
    assert status["status"] == "FULL"
    assert status["is_full"] is True


def test_ceiling_below_count_is_rejected(client: TestClient, admin_headers):
    client.post("/api/v1/participants", json={"phone": "+12025550103"})
    client.post("/api/v1/participants", json={"phone": "+12025550104"})

    response = client.put(
        "/api/v1/admin/enrollment/config", headers=admin_headers, json={"max_participants": 1}
    )

    assert response.status_code == 400
    assert response.json()["category"] == "config_error"


def test_omitted_ceiling_is_kept_and_null_removes_it(client: TestClient, admin_headers):
    client.put("/api/v1/admin/enrollment/config", headers=admin_headers, json={"max_participants": 5})

    kept = client.put(
        "/api/v1/admin/enrollment/config", headers=admin_headers, json={"is_enrollment_active": False}
    ).json()
    assert kept["max_participants"] == 5
    assert kept["status"] == "DISABLED"

    cleared = client.put(
        "/api/v1/admin/enrollment/config",
        headers=admin_headers,
        json={"max_participants": None, "is_enrollment_active": True},
    ).json()
    assert cleared["max_participants"] is None
    assert cleared["status"] == "UNLIMITED"


def test_negative_ceiling_fails_validation(client: TestClient, admin_headers):
    response = client.put(
        "/api/v1/admin/enrollment/config", headers=admin_headers, json={"max_participants": -1}
    )
    assert response.status_code == 422
