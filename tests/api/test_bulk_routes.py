import time

import pytest
from fastapi.testclient import TestClient

from bulkgrant.api.app import create_app
from bulkgrant.config.settings import AppSettings
from bulkgrant.remote.client import ProjectMember

from fakes import FakeMembershipClient, forbidden


def _request(**overrides):
    payload = {
        "requester_id": "admin-1",
        "user_emails": ["a@example.com", "b@example.com"],
        "project_ids": ["p1", "p2", "p3"],
        "role": "project_user",
        "credential": "token",
    }
    payload.update(overrides)
    return payload


def _wait_for_terminal(client, job_id, attempts=200):
    for _ in range(attempts):
        body = client.get(f"/v1/bulk/status/{job_id}").json()
        if body["status"] not in {"pending", "processing"}:
            return body
        time.sleep(0.01)
    raise AssertionError(f"job {job_id} did not finish")


@pytest.fixture()
def membership():
    return FakeMembershipClient(outcomes={("p3", "b@example.com"): forbidden()})


@pytest.fixture()
def client(membership):
    settings = AppSettings(batch_delay_seconds=0.0, worker_concurrency=2)
    app = create_app(settings=settings, membership_client=membership)
    with TestClient(app) as test_client:
        yield test_client


def test_assign_runs_job_to_completion(client):
    response = client.post("/v1/bulk/assign", json=_request())
    assert response.status_code == 202
    job_id = response.json()["jobId"]

    body = _wait_for_terminal(client, job_id)

    assert body["status"] == "partial_success"
    assert body["progress"]["total"] == 6
    assert body["progress"]["success"] == 5
    assert body["progress"]["failed"] == 1
    assert len(body["tasks"]) == 6


def test_assign_with_same_job_id_is_accepted_once(client, membership):
    first = client.post("/v1/bulk/assign", json=_request(job_id="job-fixed"))
    second = client.post("/v1/bulk/assign", json=_request(job_id="job-fixed"))

    assert first.status_code == 202
    assert second.json()["jobId"] == "job-fixed"
    _wait_for_terminal(client, "job-fixed")
    assert len(membership.calls) == 6
    history = client.get("/v1/bulk/history", params={"requester_id": "admin-1"}).json()
    assert history["count"] == 1


def test_invalid_emails_are_rejected(client):
    response = client.post("/v1/bulk/assign", json=_request(user_emails=["a@example.com", "nope"]))

    assert response.status_code == 422
    assert response.json()["detail"]["invalid_emails"] == ["nope"]


def test_missing_fields_are_rejected(client):
    payload = _request()
    del payload["role"]

    response = client.post("/v1/bulk/assign", json=payload)

    assert response.status_code == 422


def test_unknown_job_is_404(client):
    assert client.get("/v1/bulk/status/missing").status_code == 404
    assert client.post("/v1/bulk/missing:cancel").status_code == 404


def test_status_respects_requester(client):
    job_id = client.post("/v1/bulk/assign", json=_request()).json()["jobId"]

    response = client.get(f"/v1/bulk/status/{job_id}", params={"requester_id": "admin-2"})

    assert response.status_code == 404


def test_history_lists_requester_jobs(client):
    for _ in range(3):
        client.post("/v1/bulk/assign", json=_request())
    client.post("/v1/bulk/assign", json=_request(requester_id="admin-2"))

    response = client.get("/v1/bulk/history", params={"requester_id": "admin-1", "limit": 2})

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 2
    assert {job["role"] for job in body["jobs"]} == {"project_user"}


def test_cancel_finished_job_keeps_status(client):
    job_id = client.post("/v1/bulk/assign", json=_request()).json()["jobId"]
    _wait_for_terminal(client, job_id)

    response = client.post(f"/v1/bulk/{job_id}:cancel")

    assert response.status_code == 200
    assert response.json() == {"jobId": job_id, "status": "partial_success"}


def test_assign_with_another_requesters_job_id_is_404(client):
    client.post("/v1/bulk/assign", json=_request(job_id="job-owned"))

    response = client.post("/v1/bulk/assign", json=_request(job_id="job-owned", requester_id="admin-2"))

    assert response.status_code == 404


def test_preview_reports_planned_changes(client, membership):
    membership.members["p1"] = [ProjectMember(member_id="m1", email="a@example.com", role_ids=["project_user"])]
    payload = _request()
    del payload["role"]

    response = client.post("/v1/bulk/preview", json=payload)

    assert response.status_code == 200
    body = response.json()
    assert body["summary"] == {"total_operations": 6, "new_users": 5, "updates": 1, "unchanged": 0}
    first = body["preview"][0]
    assert first["user_email"] == "a@example.com"
    assert first["project_name"] == "Project p1"
    assert first["current_access"] == {"has_access": True, "current_role": "project_user"}
    assert membership.calls == []


def test_preview_rejects_invalid_emails(client):
    response = client.post("/v1/bulk/preview", json=_request(user_emails=["nope"]))

    assert response.status_code == 422
    assert response.json()["detail"]["invalid_emails"] == ["nope"]


def test_preview_upstream_failure_is_502(client, membership):
    membership.project_names["p2"] = forbidden("no access")

    response = client.post("/v1/bulk/preview", json=_request())

    assert response.status_code == 502
    assert response.json()["detail"] == {"message": "no access", "error_code": "FORBIDDEN"}
