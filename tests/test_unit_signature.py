from attribution.services.signature import (
    extract_signature,
    generate_signature,
    verify_ip_allowlist,
    verify_signature,
)

BODY = b'{"trackingId":"member-1","orderId":"O1","rewardAmount":5000,"status":"approved"}'
SECRET = "s3cret"


def test_sign_then_verify_roundtrip():
    sig = generate_signature(BODY, SECRET)
    assert len(sig) == 64
    assert verify_signature(BODY, sig, SECRET) is True
    # str bodies are signed as their utf-8 bytes
    assert generate_signature(BODY.decode(), SECRET) == sig


def test_prefixes_and_uppercase_hex_accepted():
    sig = generate_signature(BODY, SECRET)
    assert verify_signature(BODY, f"sha256={sig}", SECRET)
    assert verify_signature(BODY, f"hmac-sha256={sig}", SECRET)
    assert verify_signature(BODY, f"SHA256={sig.upper()}", SECRET)


def test_flipped_body_byte_fails():
    sig = generate_signature(BODY, SECRET)
    tampered = bytearray(BODY)
    tampered[5] ^= 0x01
    assert verify_signature(bytes(tampered), sig, SECRET) is False


def test_flipped_signature_char_fails():
    sig = generate_signature(BODY, SECRET)
    flipped = ("0" if sig[0] != "0" else "1") + sig[1:]
    assert verify_signature(BODY, flipped, SECRET) is False
    # same length but not hex
    assert verify_signature(BODY, "z" + sig[1:], SECRET) is False


def test_blank_inputs_and_length_mismatch_return_false():
    sig = generate_signature(BODY, SECRET)
    assert verify_signature(BODY, None, SECRET) is False
    assert verify_signature(BODY, "   ", SECRET) is False
    assert verify_signature(BODY, sig, "") is False
    assert verify_signature(BODY, sig, None) is False
    assert verify_signature(BODY, sig[:-2], SECRET) is False
    assert verify_signature(BODY, sig, "other-secret") is False


def test_extract_signature_priority_and_case():
    headers = {
        "X-Signature": "third",
        "x-asp-signature": "second",
        "X-Hub-Signature-256": "last",
    }
    assert extract_signature(headers) == "second"
    assert extract_signature({"X-AFB-Signature": " first "}) == "first"
    assert extract_signature({"x-afb-signature": "  ", "x-hub-signature": "hub"}) == "hub"
    assert extract_signature({"content-type": "application/json"}) is None


def test_ip_allowlist():
    allowed = ["13.114.169.190", "180.211.73.218"]
    assert verify_ip_allowlist("13.114.169.190", allowed) is True
    assert verify_ip_allowlist(" 180.211.73.218 ", allowed) is True
    assert verify_ip_allowlist("10.0.0.1", allowed) is False
    assert verify_ip_allowlist("", allowed) is False
    assert verify_ip_allowlist(None, allowed) is False
    # empty list allows everyone
    assert verify_ip_allowlist("10.0.0.1", []) is True
