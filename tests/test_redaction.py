from __future__ import annotations

from greenlight.redaction import REDACTED, redact_document, redact_value


def test_redaction_of_pii_keys() -> None:
    redacted = redact_document(
        {
            "cin": "AB1234",
            "email": "amina@example.com",
            "phone": "+212600000000",
            "authUid": "u1",
            "name": "Amina",
            "requestType": "signup",
            "ec": 3,
        }
    )

    assert redacted == {
        "cin": REDACTED,
        "email": REDACTED,
        "phone": REDACTED,
        "authUid": "u1",
        "name": "Amina",
        "requestType": "signup",
        "ec": 3,
    }


def test_redaction_of_nested_values() -> None:
    redacted = redact_value(
        None,
        {
            "changes": [{"Email": "x@example.com", "name": "A"}],
            "nested": {"CIN": "AB1", "when": object()},
        },
    )

    assert redacted["changes"] == [{"Email": REDACTED, "name": "A"}]
    assert redacted["nested"]["CIN"] == REDACTED
    assert redacted["nested"]["when"] == "<object>"


def test_redaction_is_idempotent() -> None:
    data = {"cin": "AB1234", "name": "Amina"}
    once = redact_document(data)

    assert redact_document(once) == once
