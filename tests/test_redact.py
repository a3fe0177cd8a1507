from __future__ import annotations

from pushbridge._redact import redact_for_log


def test_redact_for_log_redacts_sensitive_keys() -> None:
    payload = {
        "platform": "apns",
        "credential": "a1b2c3d4",
        "token": "fcm-token-value",
        "x-goog-api-key": "AIza-secret",
        "nested": {"apnsToken": "deadbeef", "sandbox": False},
    }

    redacted = redact_for_log(payload)
    assert redacted["platform"] == "apns"
    assert redacted["credential"] == "<redacted>"
    assert redacted["token"] == "<redacted>"
    assert redacted["x-goog-api-key"] == "<redacted>"
    assert redacted["nested"]["apnsToken"] == "<redacted>"
    assert redacted["nested"]["sandbox"] is False


def test_redact_for_log_truncates_long_strings() -> None:
    long_value = "x" * 600
    redacted = redact_for_log({"value": long_value}, max_string=10)
    assert redacted["value"].startswith("x" * 10)
    assert "<truncated>" in redacted["value"]


def test_redact_for_log_hides_raw_bytes() -> None:
    assert redact_for_log({"data": b"\x00\x01\x02"}) == {"data": "<bytes:3b>"}
