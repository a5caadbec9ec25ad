from __future__ import annotations

from unittest.mock import patch

from resume_api.core.exceptions import StorageFailure


def test_plans_catalog_is_public(client):
    r = client.get("/api/v1/plans")
    assert r.status_code == 200
    body = r.json()
    assert [p["id"] for p in body["plans"]] == ["basic", "standard", "pro"]
    assert [p["credits"] for p in body["plans"]] == [10, 50, 200]
    assert body["plans"][0]["price"] == "9.99"
    assert body["creditCosts"]["resume_generation"] == 1
    assert body["creditCosts"]["ai_suggestions"] == 0


def test_credits_require_authentication(client):
    r = client.get("/api/v1/credits")
    assert r.status_code == 401
    assert r.json()["code"] == "unauthenticated"


def test_credits_reject_bad_token(client):
    r = client.get("/api/v1/credits", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


def test_balance_not_found_without_subscription(client, auth_headers):
    r = client.get("/api/v1/credits", headers=auth_headers("user_1"))
    assert r.status_code == 404
    assert r.json()["success"] is False


def test_balance_shape(client, ledger, auth_headers):
    ledger.create_subscription("user_1", "standard")
    ledger.consume("user_1", "job_tailoring", 5)

    r = client.get("/api/v1/credits", headers=auth_headers("user_1"))

    assert r.status_code == 200
    body = r.json()
    assert body["plan"] == "standard"
    assert body["status"] == "active"
    assert body["credits"] == 45
    assert body["remainingCredits"] == 45
    assert body["totalCredits"] == 50
    assert body["usedCredits"] == 5
    assert "periodEnd" in body


def test_balance_refreshes_when_period_rolled_over(client, ledger, clock, auth_headers):
    ledger.create_subscription("user_1", "basic")
    ledger.consume("user_1", "resume_generation", 9)
    clock.advance(days=31)

    r = client.get("/api/v1/credits", headers=auth_headers("user_1"))

    assert r.json()["credits"] == 10


def test_consume_success(client, ledger, auth_headers):
    ledger.create_subscription("user_1", "basic")

    r = client.post(
        "/api/v1/credits/consume",
        json={"feature": "resume_generation", "description": "First resume"},
        headers=auth_headers("user_1"),
    )

    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["consumed"] == 1
    assert body["remainingCredits"] == 9


def test_consume_insufficient_credits_is_402(client, ledger, auth_headers):
    ledger.create_subscription("user_1", "basic")
    ledger.consume("user_1", "resume_generation", 10)

    r = client.post(
        "/api/v1/credits/consume",
        json={"feature": "resume_generation", "amount": 1},
        headers=auth_headers("user_1"),
    )

    assert r.status_code == 402
    body = r.json()
    assert body["success"] is False
    assert body["error"] == "Insufficient credits"
    assert body["currentCredits"] == 0
    assert body["requiredCredits"] == 1


def test_consume_without_subscription_is_402(client, auth_headers):
    r = client.post(
        "/api/v1/credits/consume",
        json={"feature": "resume_generation", "amount": 1},
        headers=auth_headers("nobody"),
    )
    assert r.status_code == 402
    assert r.json()["code"] == "no_active_subscription"


def test_consume_storage_failure_is_distinct_from_insufficient(client, ledger, auth_headers):
    ledger.create_subscription("user_1", "basic")

    with patch.object(ledger, "consume", side_effect=StorageFailure()):
        r = client.post(
            "/api/v1/credits/consume",
            json={"feature": "resume_generation"},
            headers=auth_headers("user_1"),
        )

    assert r.status_code == 503
    assert r.json()["code"] == "storage_failure"
    assert "currentCredits" not in r.json()


def test_consume_free_feature_does_not_debit(client, ledger, auth_headers):
    ledger.create_subscription("user_1", "basic")

    r = client.post(
        "/api/v1/credits/consume",
        json={"feature": "ai_suggestions"},
        headers=auth_headers("user_1"),
    )

    assert r.status_code == 200
    assert r.json()["consumed"] == 0
    assert r.json()["remainingCredits"] == 10
    assert ledger.list_events("user_1") == []


def test_consume_rejects_unknown_feature_and_bad_amount(client, ledger, auth_headers):
    ledger.create_subscription("user_1", "basic")
    headers = auth_headers("user_1")

    r = client.post("/api/v1/credits/consume", json={"feature": "nope"}, headers=headers)
    assert r.status_code == 422

    r = client.post(
        "/api/v1/credits/consume",
        json={"feature": "resume_generation", "amount": 0},
        headers=headers,
    )
    assert r.status_code == 422
    assert ledger.get_balance("user_1").credits == 10


def test_check_credits(client, ledger, auth_headers):
    ledger.create_subscription("user_1", "basic")
    headers = auth_headers("user_1")

    r = client.post("/api/v1/credits/check", json={"feature": "mock_interview"}, headers=headers)
    assert r.json() == {"allowed": True, "feature": "mock_interview", "requiredCredits": 1}

    r = client.post(
        "/api/v1/credits/check",
        json={"feature": "mock_interview", "amount": 11},
        headers=headers,
    )
    assert r.json()["allowed"] is False
    assert ledger.get_balance("user_1").credits == 10


def test_history_and_usage(client, ledger, auth_headers):
    ledger.create_subscription("user_1", "pro")
    ledger.consume("user_1", "resume_generation", 1)
    ledger.consume("user_1", "linkedin_optimization", 2)
    headers = auth_headers("user_1")

    r = client.get("/api/v1/credits/history?limit=10", headers=headers)
    assert r.status_code == 200
    items = r.json()["items"]
    assert len(items) == 2
    assert {i["feature"] for i in items} == {"resume_generation", "linkedin_optimization"}

    r = client.get("/api/v1/credits/usage?days=7", headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert body["totalUsed"] == 3
    assert body["byFeature"] == {"resume_generation": 1, "linkedin_optimization": 2}


def test_refresh_endpoint(client, ledger, clock, auth_headers):
    headers = auth_headers("user_1")
    assert client.post("/api/v1/credits/refresh", headers=headers).json() == {"success": False}

    ledger.create_subscription("user_1", "basic")
    clock.advance(days=30)
    assert client.post("/api/v1/credits/refresh", headers=headers).json() == {"success": True}
    assert client.post("/api/v1/credits/refresh", headers=headers).json() == {"success": False}


def test_check_refreshes_when_period_rolled_over(client, ledger, clock, auth_headers):
    ledger.create_subscription("user_1", "basic")
    ledger.consume("user_1", "resume_generation", 10)
    clock.advance(days=31)

    r = client.post(
        "/api/v1/credits/check",
        json={"feature": "mock_interview"},
        headers=auth_headers("user_1"),
    )

    assert r.status_code == 200
    assert r.json()["allowed"] is True
    assert ledger.get_balance("user_1").credits == 10


def test_free_feature_cannot_be_charged_an_explicit_amount(client, ledger, auth_headers):
    ledger.create_subscription("user_1", "basic")
    headers = auth_headers("user_1")

    r = client.post(
        "/api/v1/credits/consume",
        json={"feature": "ai_suggestions", "amount": 3},
        headers=headers,
    )
    assert r.status_code == 400
    assert r.json()["code"] == "validation_error"

    r = client.post(
        "/api/v1/credits/check",
        json={"feature": "ai_suggestions", "amount": 3},
        headers=headers,
    )
    assert r.status_code == 400
    assert ledger.get_balance("user_1").credits == 10
    assert ledger.list_events("user_1") == []


def test_usage_offset_comparison_and_recent_usage(client, ledger, clock, auth_headers):
    ledger.create_subscription("user_1", "pro")
    ledger.consume("user_1", "resume_generation", 4)
    clock.advance(days=10)
    ledger.consume("user_1", "job_tailoring", 2, description="Acme")
    headers = auth_headers("user_1")

    r = client.get("/api/v1/credits/usage?days=7&comparison=true", headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert body["totalUsed"] == 2
    assert [u["description"] for u in body["recentUsage"]] == ["Acme"]
    assert body["comparison"] == {
        "previousTotalUsed": 4,
        "usageChange": -2,
        "usageChangePercent": -50,
    }

    r = client.get("/api/v1/credits/usage?days=7&offset=7", headers=headers)
    body = r.json()
    assert body["offset"] == 7
    assert body["totalUsed"] == 4
    assert body["comparison"] is None

    assert client.get("/api/v1/credits/usage?offset=-1", headers=headers).status_code == 422
