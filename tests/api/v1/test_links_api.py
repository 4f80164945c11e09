from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from tests.utils.factories import create_links, create_participant

BASE = "/api/v1/admin/links"


def test_upload_links_file(client: TestClient, admin_headers):
    content = b"url\nhttps://survey.example.com/1\nhttps://survey.example.com/2\nnot a url\n"

    response = client.post(
        f"{BASE}/upload",
        headers=admin_headers,
        files={"file": ("links.txt", content, "text/plain")},
        data={"batch_label": "wave-1"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["successful_uploads"] == 2
    assert data["errors"][0]["line"] == 4
    assert data["batch_label"] == "wave-1"

    status = client.get(f"{BASE}/status", headers=admin_headers).json()
    assert status["available_links"] == 2
    assert status["by_batch"]["wave-1"]["available"] == 2


def test_upload_rejects_non_utf8(client: TestClient, admin_headers):
    response = client.post(
        f"{BASE}/upload",
        headers=admin_headers,
        files={"file": ("links.txt", b"\xff\xfe\x00bad", "text/plain")},
    )

    assert response.status_code == 400


def test_add_single_link(client: TestClient, admin_headers):
    body = {"long_url": "https://survey.example.com/single", "short_url": "https://sho.rt/s"}

    created = client.post(BASE, headers=admin_headers, json=body)
    assert created.status_code == 201
    assert created.json()["status"] == "AVAILABLE"

    assert client.post(BASE, headers=admin_headers, json=body).status_code == 409
    assert client.post(BASE, headers=admin_headers, json={"long_url": "nope"}).status_code == 400


def test_list_links_with_filters(client: TestClient, db_session: Session, admin_headers):
    create_links(db_session, 2, batch_label="a")
    create_links(db_session, 1, batch_label="b")

    page = client.get(BASE, headers=admin_headers, params={"batch_label": "a", "limit": 1}).json()

    assert page["total"] == 2
    assert len(page["items"]) == 1
    assert page["limit"] == 1


def test_delete_link(client: TestClient, db_session: Session, admin_headers):
    assigned, unassigned = create_links(db_session, 2)
    unassigned_id = unassigned.id
    participant = create_participant(db_session)
    # The oldest link goes to the participant
    client.post(f"/api/v1/participants/{participant.id}/invitation", headers=admin_headers)

    assert client.delete(f"{BASE}/{assigned.id}", headers=admin_headers).status_code == 409
    assert client.delete(f"{BASE}/{unassigned_id}", headers=admin_headers).status_code == 204
    assert client.delete(f"{BASE}/{unassigned_id}", headers=admin_headers).status_code == 404
