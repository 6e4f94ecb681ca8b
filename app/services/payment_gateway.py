"""
Adaptador de la pasarela de pagos (Paystack).

El resto de la aplicación solo conoce PaymentGateway; los tests
sustituyen la implementación con app.dependency_overrides.
"""
import hashlib
import hmac
import logging
import secrets
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from app.core.config import settings
from app.core.exceptions import PaymentGatewayUnavailable, PaymentGatewayError

logger = logging.getLogger(__name__)

REFERENCE_PREFIX = "PSK"


class GatewayTransaction(BaseModel):
    reference: str
    authorization_url: str


class GatewayVerification(BaseModel):
    reference: str
    status: str  # "success", "failed", "abandoned", ...
    amount_minor: Optional[int] = None
    currency: Optional[str] = None
    metadata: Dict[str, Any] = {}


def generate_reference() -> str:
    """PSK_<milisegundos>_<aleatorio>"""
    return f"{REFERENCE_PREFIX}_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


class PaymentGateway(ABC):

    @abstractmethod
    def initialize_transaction(
        self,
        reference: str,
        email: str,
        amount_minor: int,
        currency: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> GatewayTransaction:
        ...

    @abstractmethod
    def verify_transaction(self, reference: str) -> GatewayVerification:
        ...

    @abstractmethod
    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        ...


class PaystackGateway(PaymentGateway):

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        callback_url: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.secret_key = secret_key if secret_key is not None else settings.PAYSTACK_SECRET_KEY
        self.base_url = (base_url or settings.PAYSTACK_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.PAYMENT_GATEWAY_TIMEOUT_SECONDS
        self.callback_url = callback_url or settings.PAYSTACK_CALLBACK_URL
        self.transport = transport

    def _request(self, method: str, path: str, json: Optional[dict] = None) -> Dict[str, Any]:
        if not self.secret_key:
            raise PaymentGatewayUnavailable("Payment gateway is not configured")
        headers = {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }
        try:
            with httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport
            ) as client:
                response = client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning("Paystack %s %s timed out: %s", method, path, e)
            raise PaymentGatewayUnavailable("Payment gateway timed out")
        except httpx.HTTPError as e:
            logger.warning("Paystack %s %s failed: %s", method, path, e)
            raise PaymentGatewayUnavailable()

        if response.status_code >= 500:
            logger.warning("Paystack %s %s returned %s", method, path, response.status_code)
            raise PaymentGatewayUnavailable()

        try:
            body = response.json()
        except ValueError:
            raise PaymentGatewayError("Payment gateway returned an invalid response")

        if response.status_code >= 400 or not body.get("status"):
            message = body.get("message") or f"HTTP {response.status_code}"
            logger.error("Paystack %s %s rejected: %s", method, path, message)
            raise PaymentGatewayError(f"Payment gateway error: {message}")
        return body.get("data") or {}

    def initialize_transaction(
        self,
        reference: str,
        email: str,
        amount_minor: int,
        currency: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> GatewayTransaction:
        payload = {
            "email": email,
            "amount": amount_minor,
            "currency": currency,
            "reference": reference,
            "metadata": metadata or {},
        }
        if self.callback_url:
            payload["callback_url"] = self.callback_url

        data = self._request("POST", "/transaction/initialize", json=payload)
        if not data.get("authorization_url"):
            raise PaymentGatewayError("Payment gateway did not return an authorization URL")
        logger.info("Initialized Paystack transaction %s", reference)
        return GatewayTransaction(
            reference=data.get("reference") or reference,
            authorization_url=data["authorization_url"]
        )

    def verify_transaction(self, reference: str) -> GatewayVerification:
        data = self._request("GET", f"/transaction/verify/{reference}")
        return GatewayVerification(
            reference=data.get("reference") or reference,
            status=data.get("status") or "unknown",
            amount_minor=data.get("amount"),
            currency=data.get("currency"),
            metadata=data.get("metadata") or {}
        )

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        """HMAC-SHA512 del cuerpo crudo con la clave secreta"""
        if not signature or not self.secret_key:
            return False
        expected = hmac.new(
            self.secret_key.encode("utf-8"),
            raw_body,
            hashlib.sha512
        ).hexdigest()
        return hmac.compare_digest(expected, signature)


def get_payment_gateway() -> PaymentGateway:
    return PaystackGateway()
