# Overview: HTTP adapter for the TAP payment gateway; charges, refunds, webhook signatures, status mapping.

"""
TAP Payment Gateway Adapter

WHY: Card and wallet money moves through TAP. The rest of the system only
needs four capabilities: create a charge, create a refund, check a webhook
signature, and translate TAP's status vocabulary into ours.

DESIGN:
- One httpx.Client per adapter with bearer auth and a bounded timeout.
  A custom transport can be injected (tests use httpx.MockTransport).
- Every failure (transport error, non-2xx, non-JSON body) surfaces as
  ExternalGatewayError carrying TAP's message when it sent one.
- No retries: a failed call is reported to the caller immediately.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
from dataclasses import dataclass, field

import httpx

from ..errors import ExternalGatewayError
from ..models.payments import PAYMENT_STATUS_FAILED, PAYMENT_STATUS_INITIATED, PAYMENT_STATUS_SUCCESS
from ..money import round_gateway_amount

logger = logging.getLogger(__name__)


# TAP charge status -> internal payment status. Anything else fails closed.
PROVIDER_STATUS_MAP = {
    "CAPTURED": PAYMENT_STATUS_SUCCESS,
    "AUTHORIZED": PAYMENT_STATUS_SUCCESS,
    "INITIATED": PAYMENT_STATUS_INITIATED,
    "FAILED": PAYMENT_STATUS_FAILED,
    "CANCELLED": PAYMENT_STATUS_FAILED,
    "ABANDONED": PAYMENT_STATUS_FAILED,
    "DECLINED": PAYMENT_STATUS_FAILED,
}


def map_provider_status(provider_status: str | None) -> str:
    status = (provider_status or "").strip().upper()
    mapped = PROVIDER_STATUS_MAP.get(status)
    if mapped is None:
        logger.warning("Unknown TAP status %r; treating as FAILED", provider_status)
        return PAYMENT_STATUS_FAILED
    return mapped


def verify_webhook_signature(raw_body: bytes | str, signature: str | None, secret: str | None) -> bool:
    """
    HMAC-SHA256 of the raw request body, hex encoded, compared in constant time.

    Without a configured secret verification is skipped (non-production).
    """
    if not secret:
        logger.warning("TAP webhook secret not configured; skipping signature verification")
        return True
    if not signature:
        return False
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")
    expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip())


@dataclass(frozen=True)
class ChargeResult:
    charge_id: str
    status: str
    payment_url: str | None
    raw: dict = field(default_factory=dict)


@dataclass(frozen=True)
class RefundResult:
    refund_id: str | None
    status: str | None
    raw: dict = field(default_factory=dict)


class TapGateway:
    def __init__(
        self,
        *,
        secret_key: str,
        base_url: str = "https://api.tap.company/v2",
        webhook_secret: str | None = None,
        timeout: float = 30.0,
        phone_country_code: str = "+973",
        transport: httpx.BaseTransport | None = None,
    ):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.phone_country_code = phone_country_code
        self._client = httpx.Client(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {secret_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config, transport: httpx.BaseTransport | None = None) -> "TapGateway":
        return cls(
            secret_key=config.get("TAP_SECRET_KEY", ""),
            base_url=config.get("TAP_BASE_URL", "https://api.tap.company/v2"),
            webhook_secret=config.get("TAP_WEBHOOK_SECRET"),
            timeout=float(config.get("TAP_TIMEOUT_SECONDS", 30)),
            phone_country_code=config.get("TAP_PHONE_COUNTRY_CODE", "+973"),
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    # =========================================================================
    # CHARGES
    # =========================================================================

    def create_charge(
        self,
        *,
        amount,
        currency: str,
        payment_id: int,
        order_id: int,
        customer_phone: str | None,
        redirect_url: str,
        webhook_url: str,
    ) -> ChargeResult:
        body = {
            "amount": round_gateway_amount(amount),
            "currency": currency.upper(),
            "customer": {
                "phone": {
                    "country_code": self.phone_country_code,
                    "number": re.sub(r"\D", "", customer_phone or ""),
                },
            },
            "source": {"id": "src_all"},
            "reference": {"transaction": str(payment_id), "order": str(order_id)},
            "redirect": {"url": redirect_url},
            "post": {"url": webhook_url},
            "description": f"Payment for Order {order_id}",
            "metadata": {"paymentId": str(payment_id), "orderId": str(order_id)},
        }
        data = self._request("POST", "/charges", json=body, action="create charge")
        return self._charge_result(data)

    def retrieve_charge(self, charge_id: str) -> ChargeResult:
        data = self._request("GET", f"/charges/{charge_id}", action="retrieve charge")
        return self._charge_result(data)

    @staticmethod
    def payment_url(charge: dict) -> str | None:
        return (charge.get("transaction") or {}).get("url")

    # =========================================================================
    # REFUNDS
    # =========================================================================

    def create_refund(
        self,
        *,
        charge_id: str,
        amount,
        currency: str,
        reason: str | None = None,
        merchant_ref: str | None = None,
    ) -> RefundResult:
        body = {
            "charge_id": charge_id,
            "amount": round_gateway_amount(amount),
            "currency": currency.upper(),
        }
        if reason:
            body["reason"] = reason
        if merchant_ref:
            body["reference"] = {"merchant": merchant_ref}
        data = self._request("POST", "/refunds", json=body, action="create refund")
        return RefundResult(refund_id=data.get("id"), status=data.get("status"), raw=data)

    # =========================================================================
    # WEBHOOKS / STATUS
    # =========================================================================

    def verify_webhook_signature(self, raw_body: bytes | str, signature: str | None) -> bool:
        return verify_webhook_signature(raw_body, signature, self.webhook_secret)

    @staticmethod
    def map_provider_status(provider_status: str | None) -> str:
        return map_provider_status(provider_status)

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    def _charge_result(self, data: dict) -> ChargeResult:
        charge_id = data.get("id")
        if not charge_id:
            raise ExternalGatewayError("TAP response did not include a charge id")
        return ChargeResult(
            charge_id=charge_id,
            status=data.get("status") or "",
            payment_url=self.payment_url(data),
            raw=data,
        )

    def _request(self, method: str, path: str, *, action: str, json: dict | None = None) -> dict:
        if not self.secret_key:
            raise ExternalGatewayError("TAP secret key is not configured")
        try:
            response = self._client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            logger.error("TAP %s failed: %s", action, exc)
            raise ExternalGatewayError(f"Failed to {action}: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.is_error:
            message = _provider_message(data) or f"Failed to {action} (HTTP {response.status_code})"
            logger.error("TAP %s rejected (%s): %s", action, response.status_code, data or response.text)
            raise ExternalGatewayError(message, details={"provider_status_code": response.status_code})

        if not isinstance(data, dict):
            logger.error("TAP %s returned a non-JSON body", action)
            raise ExternalGatewayError(f"Failed to {action}: invalid response from gateway")
        return data


def _provider_message(data) -> str | None:
    if not isinstance(data, dict):
        return None
    if data.get("message"):
        return str(data["message"])
    error = data.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    errors = data.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        return errors[0].get("description") or errors[0].get("message")
    return None
