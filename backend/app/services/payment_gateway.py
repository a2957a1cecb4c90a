# Overview: Narrow interface to the external card payment gateway.

"""
Card Payment Gateway

The order engine needs exactly two things from the gateway:

- create_payment_intent(amount, metadata) -> reference
- retrieve_payment_status(reference) -> status + captured amount

HttpPaymentGateway talks to a Stripe-compatible REST API with httpx
(form-encoded bodies, bearer secret key). Tests swap in their own object via
``app.extensions["payment_gateway"]``.

No gateway call is ever made while a stock-debiting transaction is open.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol
from urllib.parse import quote

import httpx
from flask import current_app

from .order_errors import PaymentGatewayError

INTENT_STATUS_SUCCEEDED = "succeeded"


@dataclass(frozen=True)
class PaymentIntent:
    reference: str
    status: str
    amount_cents: int
    client_secret: str | None = None
    currency: str | None = None
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "payment_intent_id": self.reference,
            "client_secret": self.client_secret,
            "status": self.status,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
        }


class PaymentGateway(Protocol):
    def create_payment_intent(self, amount_cents: int, metadata: dict) -> PaymentIntent:
        ...

    def retrieve_payment_status(self, reference: str) -> PaymentIntent:
        ...


class HttpPaymentGateway:
    def __init__(
        self,
        base_url: str,
        secret_key: str,
        currency: str = "vnd",
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.secret_key = secret_key
        self.currency = currency
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_config(cls, config) -> "HttpPaymentGateway":
        return cls(
            base_url=config["PAYMENT_GATEWAY_URL"],
            secret_key=config["PAYMENT_GATEWAY_SECRET_KEY"],
            currency=config["PAYMENT_CURRENCY"],
            timeout=config["PAYMENT_GATEWAY_TIMEOUT"],
        )

    def _request(self, method: str, path: str, data: dict | None = None) -> dict:
        if not self.secret_key:
            raise PaymentGatewayError("Card payments are not configured")

        try:
            with httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={"Authorization": f"Bearer {self.secret_key}"},
            ) as client:
                response = client.request(method, path, data=data)
        except httpx.HTTPError as exc:
            raise PaymentGatewayError("Payment gateway unreachable", details={"reason": str(exc)}) from exc

        if response.status_code >= 400:
            try:
                error = response.json().get("error", {})
            except ValueError:
                error = {}
            raise PaymentGatewayError(
                "Payment gateway rejected the request",
                details={
                    "status_code": response.status_code,
                    "gateway_message": error.get("message"),
                },
            )

        try:
            return response.json()
        except ValueError as exc:
            raise PaymentGatewayError("Payment gateway returned invalid JSON") from exc

    @staticmethod
    def _to_intent(body: dict) -> PaymentIntent:
        try:
            return PaymentIntent(
                reference=body["id"],
                status=body["status"],
                amount_cents=int(body["amount"]),
                client_secret=body.get("client_secret"),
                currency=body.get("currency"),
                metadata=body.get("metadata") or {},
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise PaymentGatewayError("Payment gateway response missing fields") from exc

    def create_payment_intent(self, amount_cents: int, metadata: dict) -> PaymentIntent:
        data = {
            "amount": str(amount_cents),
            "currency": self.currency,
            "automatic_payment_methods[enabled]": "true",
        }
        for key, value in metadata.items():
            data[f"metadata[{key}]"] = str(value)
        return self._to_intent(self._request("POST", "/v1/payment_intents", data=data))

    def retrieve_payment_status(self, reference: str) -> PaymentIntent:
        return self._to_intent(self._request("GET", f"/v1/payment_intents/{quote(reference, safe='')}"))


def get_payment_gateway() -> PaymentGateway:
    return current_app.extensions["payment_gateway"]
