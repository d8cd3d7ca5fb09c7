import json
import sys

import structlog

from app.shared.core.logging import exception_renderer, pii_redactor, setup_logging


def test_pii_redactor_nested():
    event_dict = {
        "company_id": 12,
        "email": "financeiro@acme.com.br",
        "nested": {"access_token": "tok-123", "safe": "data"},
        "list": [{"webhook_secret": "whsec"}, "safe_item"],
    }

    redacted = pii_redactor(None, None, event_dict)

    assert redacted["company_id"] == 12
    assert redacted["email"] == "[EMAIL_REDACTED]"
    assert redacted["nested"]["access_token"] == "[REDACTED]"
    assert redacted["nested"]["safe"] == "data"
    assert redacted["list"][0]["webhook_secret"] == "[REDACTED]"
    assert redacted["list"][1] == "safe_item"


def test_gateway_payload_keys_are_redacted():
    event_dict = {
        "payload": {
            "creditCardToken": "cc-tok",
            "cpfCnpj": "12345678000190",
            "creditCard": {"number": "4111"},
            "value": 10.0,
        }
    }

    redacted = pii_redactor(None, None, event_dict)["payload"]

    assert redacted["creditCardToken"] == "[REDACTED]"
    assert redacted["cpfCnpj"] == "[REDACTED]"
    assert redacted["creditCard"] == "[REDACTED]"
    assert redacted["value"] == 10.0


def test_pii_redactor_regex():
    event_dict = {"event": "Boleto sent to admin@example.com"}
    redacted = pii_redactor(None, None, event_dict)
    assert "admin@example.com" not in redacted["event"]
    assert "[EMAIL_REDACTED]" in redacted["event"]


def _failing_delivery():
    secret = "whsec-test-secret"
    raise RuntimeError(f"apply failed for {len(secret)} byte key")


def test_exception_renderer_drops_frame_locals():
    try:
        _failing_delivery()
    except RuntimeError:
        event_dict = {"event": "asaas_webhook_processing_failed", "exc_info": sys.exc_info()}

    rendered = exception_renderer(None, "error", event_dict)

    assert "exc_info" not in rendered
    assert rendered["exception"][0]["exc_type"] == "RuntimeError"
    dumped = json.dumps(rendered, default=str)
    assert "whsec-test-secret" not in dumped
    assert all(not frame.get("locals") for frame in rendered["exception"][0]["frames"])


def test_json_pipeline_renders_tracebacks_before_redaction(set_env):
    set_env(DEBUG="false")
    previous = structlog.get_config()
    try:
        setup_logging()
        processors = structlog.get_config()["processors"]
        assert exception_renderer in processors
        assert processors.index(exception_renderer) < processors.index(pii_redactor)
        assert structlog.processors.dict_tracebacks not in processors
    finally:
        structlog.configure(**previous)
