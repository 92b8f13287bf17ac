"""
Flutterwave v3 checkout client.

Only two calls are used: starting a hosted checkout for a package and
verifying a transaction by its reference. Both the webhook and the browser
redirect end up in ``verify_payment``.
"""
import logging
import time
from typing import Optional
import requests
from drivetheory.core.config import settings
from drivetheory.core.exceptions import PaymentGatewayError

logger = logging.getLogger(__name__)


def generate_tx_ref(user_id: int) -> str:
    return f"DRV_{int(time.time() * 1000)}_{user_id}"


def user_id_from_tx_ref(tx_ref: str) -> Optional[int]:
    """The user id is the last ``_`` segment of a reference; None if it is not a number"""
    _, _, tail = tx_ref.rpartition("_")
    return int(tail) if tail.isdigit() else None


class FlutterwaveClient:
    """Thin wrapper over the Flutterwave REST API"""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        api_url: Optional[str] = None,
        currency: Optional[str] = None,
        timeout: Optional[int] = None,
        session: Optional[requests.Session] = None,
    ):
        self.secret_key = secret_key or settings.FLUTTERWAVE_SECRET_KEY
        self.api_url = (api_url or settings.FLUTTERWAVE_API_URL).rstrip("/")
        self.currency = currency or settings.PAYMENT_CURRENCY
        self.timeout = timeout or settings.FLUTTERWAVE_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    def _headers(self) -> dict:
        if not self.secret_key:
            raise PaymentGatewayError("Payment gateway is not configured")
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _request(self, method: str, url: str, **kwargs) -> dict:
        try:
            response = self.session.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error("Flutterwave request to %s failed: %s", url, e)
            raise PaymentGatewayError("Payment gateway is unreachable") from e

        try:
            data = response.json()
        except ValueError as e:
            logger.error("Flutterwave returned non-JSON (HTTP %s) for %s", response.status_code, url)
            raise PaymentGatewayError("Invalid response from payment gateway") from e

        if data.get("status") == "error" or response.status_code >= 400:
            message = data.get("message") or "Payment gateway rejected the request"
            logger.warning("Flutterwave error (HTTP %s): %s", response.status_code, message)
            raise PaymentGatewayError(message)
        return data

    def initiate_payment(
        self,
        amount: int,
        user,
        package_type: str,
        tx_ref: str,
        redirect_url: str,
        payment_method: str = "mobilemoney",
    ) -> dict:
        """
        Start a hosted checkout.

        Returns ``{"link": <checkout url>, "tx_ref": <reference>}``.
        """
        payload = {
            "tx_ref": tx_ref,
            "amount": amount,
            "currency": self.currency,
            "redirect_url": redirect_url,
            "customer": {
                "email": f"{user.username}@users.drivetheory.local",
                "name": user.username,
            },
            "meta": {
                "user_id": user.id,
                "package_type": package_type,
            },
        }

        if payment_method == "mobilemoney":
            endpoint = f"{self.api_url}/charges?type=mobile_money_rwanda"
        else:
            endpoint = f"{self.api_url}/payments"
            payload["payment_options"] = "card" if payment_method == "card" else "banktransfer"

        logger.info("Initiating %s payment tx_ref=%s amount=%s user_id=%s", payment_method, tx_ref, amount, user.id)
        data = self._request("POST", endpoint, json=payload)

        # hosted checkout answers with data.link, mobile money with an authorization redirect
        link = (
            (data.get("data") or {}).get("link")
            or (data.get("data") or {}).get("redirect")
            or ((data.get("meta") or {}).get("authorization") or {}).get("redirect")
        )
        if not link:
            raise PaymentGatewayError("No redirect URL found in gateway response")
        return {"link": link, "tx_ref": tx_ref}

    def verify_payment(self, tx_ref: str) -> dict:
        """
        Look a transaction up by reference.

        Returns the gateway's ``data`` object: ``status`` is one of
        successful/failed/pending, plus ``amount``, ``currency``, ``id`` and
        ``payment_type``.
        """
        logger.info("Verifying payment tx_ref=%s", tx_ref)
        data = self._request(
            "GET",
            f"{self.api_url}/transactions/verify_by_reference",
            params={"tx_ref": tx_ref},
        )
        if not data.get("data"):
            raise PaymentGatewayError(data.get("message") or "Payment verification failed")
        return data["data"]


def get_payment_gateway() -> FlutterwaveClient:
    return FlutterwaveClient()
