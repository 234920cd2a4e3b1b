from authkernel.logging import (
    _add_correlation_id,
    _redact_credentials,
    get_correlation_id,
    set_correlation_id,
)


def test_credential_values_are_redacted():
    event = _redact_credentials(
        None,
        "info",
        {
            "event": "token_issued",
            "refresh_token": "eyJhbGciOi.payload.signature",
            "password": "secret123",
            "principal_id": "p-1",
        },
    )

    assert event["refresh_token"] == "[redacted:28]"
    assert event["password"] == "[redacted:9]"
    assert event["principal_id"] == "p-1"
    assert event["event"] == "token_issued"


def test_correlation_id_added_to_events():
    cid = set_correlation_id("req-42")

    event = _add_correlation_id(None, "info", {"event": "x"})

    assert cid == "req-42"
    assert get_correlation_id() == "req-42"
    assert event["correlation_id"] == "req-42"


def test_correlation_id_generated_when_absent():
    cid = set_correlation_id(None)
    assert cid and cid == get_correlation_id()
