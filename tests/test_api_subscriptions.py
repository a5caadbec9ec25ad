from __future__ import annotations


def test_create_subscription_then_balance(client, auth_headers):
    headers = auth_headers("user_1")
    r = client.post(
        "/api/v1/subscriptions",
        json={"plan": "pro", "providerSubscriptionId": "sub_1", "providerCustomerId": "cus_1"},
        headers=headers,
    )

    assert r.status_code == 201
    sub = r.json()["subscription"]
    assert sub["userId"] == "user_1"
    assert sub["plan"] == "pro"
    assert sub["status"] == "active"
    assert sub["credits"] == 200
    assert sub["providerSubscriptionId"] == "sub_1"

    balance = client.get("/api/v1/credits", headers=headers).json()
    assert balance["credits"] == 200


def test_create_duplicate_subscription_is_409(client, auth_headers):
    headers = auth_headers("user_1")
    client.post("/api/v1/subscriptions", json={"plan": "basic"}, headers=headers)

    r = client.post("/api/v1/subscriptions", json={"plan": "standard"}, headers=headers)

    assert r.status_code == 409
    assert r.json()["code"] == "duplicate_subscription"


def test_create_subscription_rejects_unknown_plan(client, auth_headers):
    r = client.post("/api/v1/subscriptions", json={"plan": "gold"}, headers=auth_headers("user_1"))
    assert r.status_code == 422


def test_create_subscription_requires_auth(client):
    r = client.post("/api/v1/subscriptions", json={"plan": "basic"})
    assert r.status_code == 401


def test_get_my_subscription(client, ledger, auth_headers):
    headers = auth_headers("user_1")
    assert client.get("/api/v1/subscriptions/me", headers=headers).status_code == 404

    ledger.create_subscription("user_1", "standard")
    r = client.get("/api/v1/subscriptions/me", headers=headers)
    assert r.status_code == 200
    assert r.json()["subscription"]["plan"] == "standard"


def test_cancel_then_consume_is_blocked(client, ledger, auth_headers):
    headers = auth_headers("user_1")
    ledger.create_subscription("user_1", "basic")

    r = client.post("/api/v1/subscriptions/cancel", headers=headers)
    assert r.status_code == 200
    assert r.json()["subscription"]["status"] == "canceled"
    assert r.json()["subscription"]["canceledAt"] is not None

    r = client.post("/api/v1/credits/consume", json={"feature": "resume_generation"}, headers=headers)
    assert r.status_code == 402


def test_change_plan(client, ledger, auth_headers):
    headers = auth_headers("user_1")
    ledger.create_subscription("user_1", "basic")

    r = client.put("/api/v1/subscriptions/plan", json={"plan": "standard"}, headers=headers)

    assert r.status_code == 200
    assert r.json()["subscription"]["plan"] == "standard"
    assert r.json()["subscription"]["credits"] == 50


def test_change_to_current_plan_does_not_refill(client, ledger, auth_headers):
    headers = auth_headers("user_1")
    ledger.create_subscription("user_1", "basic")
    ledger.consume("user_1", "resume_generation", 10)

    r = client.put("/api/v1/subscriptions/plan", json={"plan": "basic"}, headers=headers)

    assert r.status_code == 400
    assert ledger.get_balance("user_1").credits == 0


def test_cancel_and_resubscribe_does_not_refill(client, ledger, auth_headers):
    headers = auth_headers("user_1")
    ledger.create_subscription("user_1", "basic")
    ledger.consume("user_1", "resume_generation", 10)

    client.post("/api/v1/subscriptions/cancel", headers=headers)
    r = client.post("/api/v1/subscriptions", json={"plan": "basic"}, headers=headers)

    assert r.status_code == 201
    assert r.json()["subscription"]["credits"] == 0


def test_subscription_events_endpoint(client, clock, auth_headers):
    headers = auth_headers("user_1")
    client.post("/api/v1/subscriptions", json={"plan": "basic"}, headers=headers)
    clock.advance(minutes=1)
    client.put("/api/v1/subscriptions/plan", json={"plan": "pro"}, headers=headers)

    r = client.get("/api/v1/subscriptions/events", headers=headers)

    assert r.status_code == 200
    items = r.json()["items"]
    assert [i["eventType"] for i in items] == ["plan_changed", "subscription_created"]
    assert items[0]["creditsBefore"] == 10
    assert items[0]["creditsAfter"] == 200
    assert items[0]["details"] == {"previous_plan": "basic"}
