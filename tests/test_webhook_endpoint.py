import json

from fastapi.testclient import TestClient

from conftest import sign

URL = "/api/v1/webhooks/asp-conversion"
EVENT_ID = "7d9c2b1a-0e3f-4a5b-8c6d-9e0f1a2b3c4d"


def _body(**overrides) -> bytes:
    payload = {
        "trackingId": "member-1",
        "orderId": "ORD-1",
        "rewardAmount": 5000,
        "status": "approved",
        "occurredAt": "2025-01-03T12:00:00+09:00",
        "dealName": "Rakuten Card",
    }
    payload.update(overrides)
    return json.dumps(payload).encode()


def _post(client: TestClient, body: bytes, source="afb", signature=None, header="X-AFB-Signature"):
    headers = {"Content-Type": "application/json"}
    if signature is not False:
        headers[header] = signature or f"sha256={sign(body)}"
    return client.post(f"{URL}?source={source}", content=body, headers=headers)


def test_push_records_conversion(client, raw_rows):
    r = _post(client, _body())
    assert r.status_code == 200, r.text
    assert r.json() == {"status": "success", "message": "Conversion recorded successfully"}
    assert r.headers["X-Request-ID"]

    rows = raw_rows()
    assert rows == [[
        "member-1", "", "Rakuten Card", "afb", "5000.00", "approved", "ORD-1", "2025-01-03T12:00:00+09:00",
    ]]


def test_push_duplicate_acknowledged_without_append(client, raw_rows):
    body = _body()
    assert _post(client, body).status_code == 200
    r = _post(client, body)
    assert r.status_code == 200
    assert r.json()["message"] == "Duplicate conversion skipped"
    assert len(raw_rows()) == 1


def test_legacy_asp_query_param(client, raw_rows):
    body = _body(orderId="ORD-LEGACY")
    r = client.post(
        f"{URL}?asp=afb",
        content=body,
        headers={"x-signature": sign(body), "Content-Type": "application/json"},
    )
    assert r.status_code == 200, r.text
    assert raw_rows()[0][6] == "ORD-LEGACY"


def test_missing_signature_is_401(client, raw_rows):
    r = _post(client, _body(), signature=False)
    assert r.status_code == 401
    assert r.json()["success"] is False
    assert r.json()["error"] == "Missing signature"
    assert raw_rows() == []


def test_invalid_signature_is_401(client, raw_rows):
    body = _body()
    r = _post(client, body, signature=sign(body, "wrong-secret"))
    assert r.status_code == 401
    assert r.json()["error"] == "Invalid signature"
    # signature over a different body
    r = _post(client, body, signature=sign(_body(orderId="OTHER")))
    assert r.status_code == 401
    assert raw_rows() == []


def test_unconfigured_source_is_500(client, raw_rows):
    body = _body()
    r = _post(client, body, source="moshimo")
    assert r.status_code == 500
    assert r.json()["error"] == "Webhook secret not configured"
    # no source at all
    r = client.post(URL, content=body, headers={"X-AFB-Signature": sign(body)})
    assert r.status_code == 500
    assert raw_rows() == []


def test_schema_violation_is_400(client, raw_rows):
    r = _post(client, _body(rewardAmount="12.345"))
    assert r.status_code == 400
    data = r.json()
    assert data["error"] == "Invalid webhook payload"
    assert any("reward" in d["field"].lower() for d in data["details"])

    r = _post(client, b"{not json")
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid JSON body"
    assert raw_rows() == []


def test_event_id_click_match_overrides_payload(client, raw_rows, click_factory):
    click_factory("2025-01-03T02:00:00+00:00", "member-from-click", "Medical Insurance", "D9", EVENT_ID)
    body = _body(trackingId="member-spoofed", dealName="Fake Deal", eventId=EVENT_ID, orderId="ORD-2")

    r = _post(client, body)
    assert r.status_code == 200, r.text
    row = raw_rows()[0]
    assert row[0] == "member-from-click"
    assert row[1] == EVENT_ID
    assert row[2] == "Medical Insurance"


def test_event_id_without_click_keeps_payload(client, raw_rows):
    body = _body(eventId=EVENT_ID, dealName=None, orderId="ORD-3")
    r = _post(client, body)
    assert r.status_code == 200, r.text
    row = raw_rows()[0]
    assert row[0] == "member-1"
    assert row[2] == "unknown"


def test_occurred_at_defaults_to_receipt_time(client, raw_rows):
    payload = json.loads(_body(orderId="ORD-4"))
    del payload["occurredAt"]
    r = _post(client, json.dumps(payload).encode())
    assert r.status_code == 200
    assert raw_rows()[0][7].endswith("+00:00")


def test_secret_is_per_source(make_client, settings, raw_rows):
    client = make_client(settings, webhook_secrets={"a8net": "a8-secret"})
    body = _body(orderId="ORD-A8")
    assert _post(client, body, source="a8net").status_code == 401
    assert _post(client, body, source="a8net", signature=sign(body, "a8-secret")).status_code == 200
    assert raw_rows()[0][3] == "a8net"
