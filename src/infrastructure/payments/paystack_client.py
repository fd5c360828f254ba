# src/infrastructure/payments/paystack_client.py

import hashlib
import hmac
import logging
import os

import requests

from src.domain.exceptions import GatewayError


logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.paystack.co"


def is_test_mode() -> bool:
    return os.getenv("APP_ENV", "development").lower() != "production"


class PaystackClient:
    """
    Thin wrapper over the Paystack transaction API.

    Every method either returns the "data" object of a successful
    Paystack response or raises GatewayError.
    """

    provider = "PAYSTACK"

    def __init__(
        self,
        secret_key: str,
        public_key: str | None = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        test_mode: bool = True,
        session: requests.Session | None = None,
    ):
        self.secret_key = secret_key
        self.public_key = public_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.test_mode = test_mode
        self.http = session or requests.Session()

    @classmethod
    def from_env(cls) -> "PaystackClient":
        test_mode = is_test_mode()
        suffix = "TEST" if test_mode else "LIVE"
        secret_key = os.getenv(f"PAYSTACK_SECRET_KEY_{suffix}")
        if not secret_key:
            raise GatewayError(
                f"Paystack keys not configured. Set PAYSTACK_SECRET_KEY_{suffix}.",
                status_code=500,
            )
        return cls(
            secret_key=secret_key,
            public_key=os.getenv(f"PAYSTACK_PUBLIC_KEY_{suffix}"),
            base_url=os.getenv("PAYSTACK_BASE_URL", DEFAULT_BASE_URL),
            timeout=float(os.getenv("PAYSTACK_TIMEOUT_SECONDS", "10")),
            test_mode=test_mode,
        )

    def initialize_transaction(
        self,
        email: str,
        amount: int,
        currency: str,
        reference: str,
        callback_url: str | None = None,
        metadata: dict | None = None,
    ) -> dict:
        payload = {
            "email": email,
            "amount": amount,
            "currency": currency,
            "reference": reference,
        }
        if callback_url:
            payload["callback_url"] = callback_url
        if metadata:
            payload["metadata"] = metadata
        return self._request("POST", "/transaction/initialize", json=payload)

    def verify_transaction(self, reference: str) -> dict:
        return self._request("GET", f"/transaction/verify/{reference}")

    def verify_webhook_signature(self, raw_body: bytes, signature: str | None) -> bool:
        """Paystack signs the raw body with HMAC-SHA512 keyed by the secret key."""
        if not signature:
            return False
        expected = hmac.new(
            self.secret_key.encode("utf-8"),
            raw_body,
            hashlib.sha512,
        ).hexdigest()
        return hmac.compare_digest(expected, signature)

    def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.base_url}{path}"
        headers = {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }
        try:
            response = self.http.request(
                method,
                url,
                headers=headers,
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as exc:
            logger.warning("Paystack %s %s failed: %s", method, path, exc)
            raise GatewayError("Payment provider unreachable") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 500:
            logger.warning("Paystack %s %s returned %s", method, path, response.status_code)
            raise GatewayError("Payment provider error")

        if not response.ok or not body.get("status"):
            message = body.get("message") or f"Payment provider rejected the request ({response.status_code})"
            logger.warning("Paystack %s %s rejected: %s", method, path, message)
            raise GatewayError(message, status_code=400)

        return body.get("data") or {}
