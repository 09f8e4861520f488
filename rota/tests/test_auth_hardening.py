import os
from datetime import datetime, timedelta, timezone

import jwt
from fastapi.testclient import TestClient

from rota.main import app

client = TestClient(app)

CLOCK_IN_BODY = {"shift_id": 1}


def _mint_token(user_id="dev-user", company_id=1, **claims) -> str:
    r = client.post("/auth/token", json={"user_id": user_id, "company_id": company_id, **claims})
    assert r.status_code == 200, r.text
    return r.json()["access_token"]


def _headers(token: str, company_id=1) -> dict:
    return {"Authorization": f"Bearer {token}", "X-Company-Id": str(company_id)}


def test_missing_authorization_header_401():
    r = client.post("/timekeeping/clock_in", json=CLOCK_IN_BODY, headers={"X-Company-Id": "1"})
    assert r.status_code == 401


def test_wrong_scheme_401():
    token = _mint_token()
    r = client.post(
        "/timekeeping/clock_in",
        json=CLOCK_IN_BODY,
        headers={"Authorization": f"Basic {token}", "X-Company-Id": "1"},
    )
    assert r.status_code == 401


def test_garbled_bearer_token_401():
    r = client.post(
        "/timekeeping/clock_in",
        json=CLOCK_IN_BODY,
        headers={"Authorization": "Bearer not-a-real-token", "X-Company-Id": "1"},
    )
    assert r.status_code == 401


def test_expired_token_401():
    token = jwt.encode(
        {"sub": "101", "company_id": 1, "exp": datetime.now(timezone.utc) - timedelta(minutes=1)},
        os.environ["JWT_SECRET"],
        algorithm="HS256",
    )
    r = client.post("/timekeeping/clock_in", json=CLOCK_IN_BODY, headers=_headers(token))
    assert r.status_code == 401


def test_missing_company_header_403():
    token = _mint_token()
    r = client.post(
        "/timekeeping/clock_in",
        json=CLOCK_IN_BODY,
        headers={"Authorization": f"Bearer {token}"},
    )
    assert r.status_code == 403
    assert "X-Company-Id" in r.text


def test_company_mismatch_403():
    token = _mint_token(company_id=1)
    r = client.post("/timekeeping/clock_in", json=CLOCK_IN_BODY, headers=_headers(token, company_id=2))
    assert r.status_code == 403
    assert "Company mismatch" in r.text


def test_employee_cannot_reach_manager_routes():
    token = _mint_token(user_id="101", worker_id=101)
    headers = _headers(token)

    assert client.get("/approvals/pending", headers=headers).status_code == 403
    assert client.get("/timesheets/pending", headers=headers).status_code == 403
    assert client.get("/outbox", headers=headers).status_code == 403
    r = client.post("/shift_invites", json={"shift_id": 1, "worker_ids": [101]}, headers=headers)
    assert r.status_code == 403
    assert "Insufficient role" in r.text


def test_token_without_role_is_treated_as_employee():
    token = jwt.encode(
        {"sub": "101", "company_id": 1, "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
        os.environ["JWT_SECRET"],
        algorithm="HS256",
    )
    headers = _headers(token)

    assert client.get("/approvals/pending", headers=headers).status_code == 403
    # Falls through auth to the domain layer: no such shift.
    r = client.post("/timekeeping/clock_in", json={"shift_id": 424242}, headers=headers)
    assert r.status_code == 404


def test_unknown_role_claim_403():
    token = jwt.encode(
        {
            "sub": "101",
            "company_id": 1,
            "role": "OWNER",
            "exp": datetime.now(timezone.utc) + timedelta(hours=1),
        },
        os.environ["JWT_SECRET"],
        algorithm="HS256",
    )
    r = client.get("/approvals/pending", headers=_headers(token))
    assert r.status_code == 403
    assert "Invalid role claim" in r.text


def test_employee_cannot_act_for_another_worker():
    token = _mint_token(user_id="101", worker_id=101)
    r = client.post(
        "/timekeeping/clock_in",
        json={"shift_id": 1, "worker_id": 102},
        headers=_headers(token),
    )
    assert r.status_code == 403
    assert "another worker" in r.text


def test_employee_token_without_worker_identity_403():
    token = _mint_token(user_id="front-desk")
    r = client.post("/timekeeping/clock_in", json=CLOCK_IN_BODY, headers=_headers(token))
    assert r.status_code == 403


def test_manager_must_name_worker():
    token = _mint_token(user_id="manager-1", role="MANAGER")
    r = client.post("/timekeeping/clock_in", json=CLOCK_IN_BODY, headers=_headers(token))
    assert r.status_code == 422
