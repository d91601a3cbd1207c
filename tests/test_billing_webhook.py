"""
Tests for POST /webhooks/billing.

Covers HMAC verification, activation and renewal, ignored event types and
payload validation.
"""

import json
from datetime import timedelta

import pytest

from conftest import auth_header
from kasiviral.api.routes.webhooks_billing import (
    SIGNATURE_HEADER,
    compute_signature,
    verify_webhook_signature,
)

SECRET = "whsec_test"


def _post(client, payload, secret=SECRET, signature=None):
    body = json.dumps(payload).encode("utf-8")
    headers = {"Content-Type": "application/json"}
    if signature is None and secret is not None:
        signature = compute_signature(body, secret)
    if signature is not None:
        headers[SIGNATURE_HEADER] = signature
    return client.post("/webhooks/billing", content=body, headers=headers)


def _activation(clock, subject_id="u1", plan="monthly", days=30, **extra):
    data = {
        "subjectId": subject_id,
        "plan": plan,
        "expiresAt": (clock() + timedelta(days=days)).isoformat(),
    }
    data.update(extra)
    return {"type": "subscription.activated", "data": data}


class TestVerifyWebhookSignature:

    def test_valid_signature(self):
        body = b'{"type":"x"}'
        assert verify_webhook_signature(body, compute_signature(body, SECRET), SECRET) is True

    def test_tampered_body(self):
        signature = compute_signature(b'{"type":"x"}', SECRET)
        assert verify_webhook_signature(b'{"type":"y"}', signature, SECRET) is False

    def test_missing_secret_rejects(self):
        body = b"{}"
        assert verify_webhook_signature(body, compute_signature(body, SECRET), None) is False

    def test_missing_signature_rejects(self):
        assert verify_webhook_signature(b"{}", None, SECRET) is False


class TestBillingWebhook:

    def test_activation_event_entitles_subject(self, client, clock):
        response = _post(client, _activation(clock, customerRef="cus_1", subscriptionRef="sub_1"))

        assert response.status_code == 200
        assert response.json() == {"status": "processed"}

        me = client.get("/entitlement/me", headers=auth_header("token-u1")).json()
        assert me["isActive"] is True
        assert me["externalBillingCustomerRef"] == "cus_1"
        assert me["externalBillingSubscriptionRef"] == "sub_1"

    def test_renewal_extends_expiry(self, client, clock):
        _post(client, _activation(clock, days=30))
        renewal = _activation(clock, plan="annual", days=365)
        renewal["type"] = "subscription.renewed"

        assert _post(client, renewal).status_code == 200

        me = client.get("/entitlement/me", headers=auth_header("token-u1")).json()
        assert me["plan"] == "annual"
        assert me["isActive"] is True

    def test_bad_signature_rejected_without_side_effects(self, client, clock):
        response = _post(client, _activation(clock), signature="bm90LWEtc2lnbmF0dXJl")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_SIGNATURE"

        me = client.get("/entitlement/me", headers=auth_header("token-u1")).json()
        assert me["isActive"] is False

    def test_missing_signature_rejected(self, client, clock):
        response = _post(client, _activation(clock), secret=None)
        assert response.status_code == 401

    def test_wrong_secret_rejected(self, client, clock):
        response = _post(client, _activation(clock), secret="whsec_other")
        assert response.status_code == 401

    def test_unrelated_event_ignored(self, client):
        response = _post(client, {"type": "invoice.created", "data": {}})

        assert response.status_code == 200
        assert response.json() == {"status": "ignored"}

    @pytest.mark.parametrize(
        "mutate",
        [
            lambda p: p["data"].pop("subjectId"),
            lambda p: p["data"].update(plan="weekly"),
            lambda p: p["data"].update(expiresAt="soon"),
            lambda p: p.update(data="not-an-object"),
        ],
    )
    def test_invalid_activation_payload_is_400(self, client, clock, mutate):
        payload = _activation(clock)
        mutate(payload)

        response = _post(client, payload)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.parametrize("expires_at", ["9999-12-31T23:59:59-05:00", "0001-01-01T00:00:00+05:00"])
    def test_out_of_range_expiry_is_400(self, client, clock, expires_at):
        payload = _activation(clock)
        payload["data"]["expiresAt"] = expires_at

        response = _post(client, payload)

        assert response.status_code == 400
        assert response.json()["error"]["details"]["field"] == "expiresAt"

    @pytest.mark.parametrize("subject_id", [{"id": "u1"}, ["u1"], 42, "   "])
    def test_non_string_subject_is_400(self, client, clock, subject_id):
        payload = _activation(clock)
        payload["data"]["subjectId"] = subject_id

        response = _post(client, payload)

        assert response.status_code == 400
        assert response.json()["error"]["details"]["field"] == "subjectId"

    def test_past_expiry_is_400(self, client, clock):
        response = _post(client, _activation(clock, days=-1))
        assert response.status_code == 400

    def test_non_json_body_is_400(self, client):
        body = b"not json"
        response = client.post(
            "/webhooks/billing",
            content=body,
            headers={SIGNATURE_HEADER: compute_signature(body, SECRET)},
        )
        assert response.status_code == 400
