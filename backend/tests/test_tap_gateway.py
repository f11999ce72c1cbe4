# Overview: Pytest coverage for the TAP HTTP adapter using httpx.MockTransport.

import hashlib
import hmac
import json
from decimal import Decimal

import httpx
import pytest

from tillcore.errors import ExternalGatewayError
from tillcore.services.tap_gateway import TapGateway, map_provider_status, verify_webhook_signature


def make_gateway(handler, secret_key="sk_test_123", **kwargs):
    return TapGateway(
        secret_key=secret_key,
        base_url="https://tap.test/v2",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def charge_kwargs(**overrides):
    kwargs = {
        "amount": Decimal("12.3456"),
        "currency": "bhd",
        "payment_id": 7,
        "order_id": 3,
        "customer_phone": "+973 3300-1122",
        "redirect_url": "https://shop.test/payments/7/return",
        "webhook_url": "https://shop.test/api/webhooks/tap",
    }
    kwargs.update(overrides)
    return kwargs


class TestCreateCharge:
    def test_builds_charge_request(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "id": "chg_abc",
                "status": "INITIATED",
                "transaction": {"url": "https://checkout.tap.test/chg_abc"},
            })

        result = make_gateway(handler).create_charge(**charge_kwargs())

        assert seen["method"] == "POST"
        assert seen["url"] == "https://tap.test/v2/charges"
        assert seen["auth"] == "Bearer sk_test_123"
        body = seen["body"]
        assert body["amount"] == 12.346
        assert body["currency"] == "BHD"
        assert body["customer"]["phone"] == {"country_code": "+973", "number": "97333001122"}
        assert body["reference"] == {"transaction": "7", "order": "3"}
        assert body["metadata"] == {"paymentId": "7", "orderId": "3"}
        assert body["redirect"]["url"] == "https://shop.test/payments/7/return"
        assert body["post"]["url"] == "https://shop.test/api/webhooks/tap"

        assert result.charge_id == "chg_abc"
        assert result.status == "INITIATED"
        assert result.payment_url == "https://checkout.tap.test/chg_abc"

    def test_provider_error_message_is_surfaced(self):
        def handler(request):
            return httpx.Response(400, json={"errors": [{"code": "1117", "description": "Invalid amount"}]})

        with pytest.raises(ExternalGatewayError) as exc:
            make_gateway(handler).create_charge(**charge_kwargs())
        assert exc.value.message == "Invalid amount"
        assert exc.value.details == {"provider_status_code": 400}

    def test_http_error_without_body(self):
        def handler(request):
            return httpx.Response(503, text="upstream down")

        with pytest.raises(ExternalGatewayError, match="HTTP 503"):
            make_gateway(handler).create_charge(**charge_kwargs())

    def test_transport_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ExternalGatewayError, match="connection refused"):
            make_gateway(handler).create_charge(**charge_kwargs())

    def test_non_json_success_body(self):
        def handler(request):
            return httpx.Response(200, text="<html>ok</html>")

        with pytest.raises(ExternalGatewayError, match="invalid response"):
            make_gateway(handler).create_charge(**charge_kwargs())

    def test_missing_charge_id(self):
        def handler(request):
            return httpx.Response(200, json={"status": "INITIATED"})

        with pytest.raises(ExternalGatewayError, match="charge id"):
            make_gateway(handler).create_charge(**charge_kwargs())

    def test_missing_secret_key_never_calls_out(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"id": "chg_x"})

        with pytest.raises(ExternalGatewayError, match="not configured"):
            make_gateway(handler, secret_key="").create_charge(**charge_kwargs())
        assert calls == []


class TestRetrieveAndRefund:
    def test_retrieve_charge(self):
        def handler(request):
            assert request.method == "GET"
            assert request.url.path == "/v2/charges/chg_abc"
            return httpx.Response(200, json={"id": "chg_abc", "status": "CAPTURED"})

        result = make_gateway(handler).retrieve_charge("chg_abc")
        assert result.status == "CAPTURED"
        assert result.payment_url is None

    def test_refund_request(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "re_1", "status": "PENDING"})

        result = make_gateway(handler).create_refund(
            charge_id="chg_abc",
            amount=Decimal("5.500"),
            currency="BHD",
            reason="Customer request",
            merchant_ref="refund-9",
        )

        assert seen["path"] == "/v2/refunds"
        assert seen["body"] == {
            "charge_id": "chg_abc",
            "amount": 5.5,
            "currency": "BHD",
            "reason": "Customer request",
            "reference": {"merchant": "refund-9"},
        }
        assert result.refund_id == "re_1"
        assert result.status == "PENDING"

    def test_refund_rejected(self):
        def handler(request):
            return httpx.Response(422, json={"message": "Charge not refundable"})

        with pytest.raises(ExternalGatewayError, match="Charge not refundable"):
            make_gateway(handler).create_refund(charge_id="chg_abc", amount="1", currency="BHD")


class TestStatusMapping:
    @pytest.mark.parametrize("provider_status, expected", [
        ("CAPTURED", "SUCCESS"),
        ("AUTHORIZED", "SUCCESS"),
        ("INITIATED", "INITIATED"),
        ("DECLINED", "FAILED"),
        ("ABANDONED", "FAILED"),
        ("CANCELLED", "FAILED"),
        ("captured", "SUCCESS"),
        ("SOMETHING_NEW", "FAILED"),
        (None, "FAILED"),
    ])
    def test_map_provider_status(self, provider_status, expected):
        assert map_provider_status(provider_status) == expected


class TestWebhookSignature:
    body = b'{"id":"chg_abc","status":"CAPTURED"}'

    def sign(self, secret):
        return hmac.new(secret.encode(), self.body, hashlib.sha256).hexdigest()

    def test_valid_signature(self):
        assert verify_webhook_signature(self.body, self.sign("whsec"), "whsec")

    def test_string_body_is_encoded(self):
        assert verify_webhook_signature(self.body.decode(), self.sign("whsec"), "whsec")

    def test_wrong_secret(self):
        assert not verify_webhook_signature(self.body, self.sign("other"), "whsec")

    def test_missing_signature(self):
        assert not verify_webhook_signature(self.body, None, "whsec")

    def test_skipped_without_secret(self):
        assert verify_webhook_signature(self.body, None, None)

    def test_adapter_uses_configured_secret(self):
        gateway = make_gateway(lambda request: httpx.Response(200), webhook_secret="whsec")
        assert gateway.verify_webhook_signature(self.body, self.sign("whsec"))
        assert not gateway.verify_webhook_signature(self.body, "bad")


def test_from_config_reads_settings():
    config = {
        "TAP_SECRET_KEY": "sk_live_x",
        "TAP_BASE_URL": "https://tap.test/v2",
        "TAP_WEBHOOK_SECRET": "whsec",
        "TAP_TIMEOUT_SECONDS": "5",
        "TAP_PHONE_COUNTRY_CODE": "+966",
    }
    gateway = TapGateway.from_config(config, transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    assert gateway.secret_key == "sk_live_x"
    assert gateway.webhook_secret == "whsec"
    assert gateway.phone_country_code == "+966"
    gateway.close()
