from datetime import datetime, timedelta, timezone

BASE = "/api/v1/matching"
T0 = datetime(2025, 1, 3, 3, 0, tzinfo=timezone.utc)


def _conversion(order_id="O1", deal_name="medical insurance", reward="8000", at=T0 + timedelta(hours=2)):
    return {"orderId": order_id, "dealName": deal_name, "rewardAmount": reward, "occurredAt": at.isoformat()}


def test_matching_requires_operator_token(client):
    r = client.post(f"{BASE}/candidates", json=_conversion())
    assert r.status_code == 401


def test_candidates_endpoint(client, cron_headers, click_factory, deal_factory):
    deal_factory("D-MED", "Medical Insurance", "8000")
    click_factory(T0, "member-1", "Medical Insurance", "D-MED", "e-1")
    click_factory(T0 - timedelta(days=3), "member-old", "Medical Insurance", "D-MED", "e-0")

    r = client.post(f"{BASE}/candidates", json=_conversion(), headers=cron_headers)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["orderId"] == "O1"
    assert len(body["candidates"]) == 1
    best = body["bestMatch"]
    assert best["score"] == 80
    assert best["confidence"] == "medium"
    assert best["scoreBreakdown"] == {"timeRange": 10, "dealNameMatch": 40, "rewardMatch": 30, "additionalInfo": 0}
    assert best["clickEvent"]["trackingId"] == "member-1"


def test_candidates_validation_is_400(client, cron_headers):
    r = client.post(f"{BASE}/candidates", json={"orderId": "O1"}, headers=cron_headers)
    assert r.status_code == 400
    assert r.json()["error"] == "Request validation failed"


def test_batch_endpoint(client, cron_headers, click_factory):
    click_factory(T0, "member-1", "Card")
    body = {"conversions": [
        _conversion("O1", "card", "100"),
        _conversion("O2", "card", "100", at=T0 + timedelta(days=5)),
    ]}
    r = client.post(f"{BASE}/batch", json=body, headers=cron_headers)
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["requested"] == 2
    assert data["matched"] == 2
    assert data["results"][0]["bestMatch"]["score"] == 50
    assert data["results"][1]["bestMatch"] is None


def test_unattributed_endpoint_writes_nothing(client, cron_headers, click_factory, ledger_store, raw_rows):
    click_factory(T0, "member-1", "Card")
    ledger_store.append("conversions_raw", ["", "", "Card", "afb", "100.00", "pending", "C1", T0.isoformat()])
    before = raw_rows()

    r = client.post(f"{BASE}/unattributed", json={"source": "afb"}, headers=cron_headers)
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["requested"] == 1
    assert data["results"][0]["orderId"] == "C1"
    assert data["results"][0]["bestMatch"]["clickEvent"]["trackingId"] == "member-1"
    assert raw_rows() == before


def test_health_and_root(client):
    assert client.get("/health").json()["status"] == "healthy"
    assert client.get("/").json()["api_base"] == "/api/v1"
