"""End-to-end HTTP flows with in-process dispatch and placeholder generation."""

import pytest

from app.core.security import create_access_token, hash_password
from app.models.user import User
from app.services.generation import PLACEHOLDER_NOTE

pytestmark = pytest.mark.asyncio


async def _register(client, email="alice@example.com"):
    r = await client.post(
        "/api/auth/register",
        json={"email": email, "password": "hunter2", "firstName": "Alice", "lastName": "Doe"},
    )
    assert r.status_code == 201
    body = r.json()
    return body["user"], {"Authorization": f"Bearer {body['accessToken']}"}


async def _wait_for_job(client, headers, job_id, attempts=20):
    for _ in range(attempts):
        r = await client.get(f"/api/images/jobs/{job_id}", headers=headers)
        assert r.status_code == 200
        job = r.json()
        if job["status"] in ("completed", "failed"):
            return job
    raise AssertionError(f"job {job_id} did not finish")


async def test_register_grants_bonus_and_login(client):
    user, headers = await _register(client)
    assert user["credits"] == 100
    assert user["firstName"] == "Alice"

    r = await client.get("/api/users/me", headers=headers)
    assert r.status_code == 200
    assert r.json()["email"] == "alice@example.com"

    r = await client.post("/api/auth/login", json={"email": "ALICE@example.com", "password": "hunter2"})
    assert r.status_code == 200
    assert r.json()["accessToken"]

    r = await client.post("/api/auth/login", json={"email": "alice@example.com", "password": "wrong"})
    assert r.status_code == 401


async def test_duplicate_registration_rejected(client):
    await _register(client)
    r = await client.post("/api/auth/register", json={"email": "alice@example.com", "password": "x"})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "BAD_REQUEST"


async def test_generate_then_poll_until_completed(client):
    _, headers = await _register(client)
    r = await client.post(
        "/api/images/generate",
        headers=headers,
        json={"prompt": "a red fox in snow", "parameters": {"width": 512, "height": 512}},
    )
    assert r.status_code == 202
    body = r.json()
    assert body["status"] in ("pending", "processing", "completed")

    job = await _wait_for_job(client, headers, body["jobId"])
    assert job["status"] == "completed"
    assert job["error"] is None
    assert job["result"]["note"] == PLACEHOLDER_NOTE
    assert job["result"]["timeTaken"] == 1000
    assert job["result"]["images"][0]["width"] == 512

    me = (await client.get("/api/users/me", headers=headers)).json()
    assert me["credits"] == 99

    txs = (await client.get("/api/billing/transactions", headers=headers)).json()
    assert [t["type"] for t in txs["transactions"]] == ["usage", "bonus"]
    assert txs["transactions"][0]["credits"] == -1
    assert txs["pagination"] == {"page": 1, "limit": 20, "total": 2}

    stats = (await client.get("/api/analytics/stats", headers=headers)).json()
    assert stats["totalImages"] == 1
    assert stats["imagesThisMonth"] == 1
    assert stats["totalCreditsUsed"] == 1
    assert stats["currentCredits"] == 99
    assert stats["recentActivity"][0]["id"] == body["jobId"]


async def test_generate_without_credits_is_402(client):
    user = User(email="broke@example.com", password_hash=hash_password("pw"))
    await user.insert()
    headers = {"Authorization": f"Bearer {create_access_token(str(user.id))}"}

    r = await client.post("/api/images/generate", headers=headers, json={"prompt": "a cat"})
    assert r.status_code == 402
    assert r.json()["error"]["code"] == "INSUFFICIENT_CREDITS"

    r = await client.get("/api/images/jobs", headers=headers)
    assert r.json()["pagination"]["total"] == 0


async def test_generate_requires_prompt(client):
    _, headers = await _register(client)
    r = await client.post("/api/images/generate", headers=headers, json={"prompt": "  "})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "VALIDATION_ERROR"
    assert (await client.get("/api/users/me", headers=headers)).json()["credits"] == 100


async def test_job_of_another_user_is_not_found(client):
    _, alice = await _register(client)
    _, bob = await _register(client, email="bob@example.com")
    job_id = (await client.post("/api/images/generate", headers=alice, json={"prompt": "mine"})).json()["jobId"]

    r = await client.get(f"/api/images/jobs/{job_id}", headers=bob)
    assert r.status_code == 404
    r = await client.get("/api/images/jobs/garbage", headers=alice)
    assert r.status_code == 404


async def test_jobs_and_gallery_paginate(client):
    _, headers = await _register(client)
    for i in range(3):
        r = await client.post("/api/images/generate", headers=headers, json={"prompt": f"prompt {i}"})
        assert r.status_code == 202

    r = await client.get("/api/images/jobs", headers=headers, params={"page": 2, "limit": 2})
    body = r.json()
    assert body["pagination"] == {"page": 2, "limit": 2, "total": 3}
    assert [j["prompt"] for j in body["jobs"]] == ["prompt 0"]

    r = await client.get("/api/images/gallery", headers=headers)
    body = r.json()
    assert body["pagination"]["total"] == 3
    assert [img["prompt"] for img in body["images"]] == ["prompt 2", "prompt 1", "prompt 0"]


async def test_purchase_and_invalid_package(client):
    _, headers = await _register(client)
    r = await client.post("/api/billing/purchase", headers=headers, json={"packageId": "starter", "paymentMethod": "card"})
    assert r.status_code == 200
    assert r.json() == {"success": True, "newBalance": 150, "creditsAdded": 50}

    r = await client.post("/api/billing/purchase", headers=headers, json={"packageId": "platinum"})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "VALIDATION_ERROR"
    assert (await client.get("/api/users/me", headers=headers)).json()["credits"] == 150


async def test_api_key_lifecycle(client):
    _, headers = await _register(client)
    r = await client.post("/api/keys", headers=headers, json={"name": "ci"})
    assert r.status_code == 201
    created = r.json()
    assert created["key"].startswith("sk_")
    key_headers = {"X-API-Key": created["key"]}

    r = await client.get("/api/users/me", headers=key_headers)
    assert r.status_code == 200
    assert r.json()["email"] == "alice@example.com"

    keys = (await client.get("/api/keys", headers=headers)).json()["keys"]
    assert len(keys) == 1
    assert keys[0]["usageCount"] == 1
    assert keys[0]["key"] == created["key"][:12] + "..." + created["key"][-4:]

    r = await client.patch(f"/api/keys/{created['id']}/toggle", headers=headers)
    assert r.json() == {"success": True, "isActive": False}
    assert (await client.get("/api/users/me", headers=key_headers)).status_code == 401

    r = await client.delete(f"/api/keys/{created['id']}", headers=headers)
    assert r.json() == {"success": True}
    assert (await client.get("/api/keys", headers=headers)).json()["keys"] == []
    r = await client.delete(f"/api/keys/{created['id']}", headers=headers)
    assert r.status_code == 404


async def test_create_key_requires_name(client):
    _, headers = await _register(client)
    r = await client.post("/api/keys", headers=headers, json={})
    assert r.status_code == 400
