import base64
import logging
import secrets
import time
from datetime import datetime, timedelta, timezone

import httpx

from app.core.config import get_settings
from app.utils.cache import get_cached, set_cached


settings = get_settings()
logger = logging.getLogger(__name__)

SANDBOX_BASE_URL = "https://sandbox.safaricom.co.ke"
PRODUCTION_BASE_URL = "https://api.safaricom.co.ke"
OAUTH_PATH = "/oauth/v1/generate?grant_type=client_credentials"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"

# Daraja expects timestamps in Kenyan wall-clock time (EAT, no DST).
EAT = timezone(timedelta(hours=3), name="EAT")

# Refresh the token a minute before Safaricom expires it.
TOKEN_EXPIRY_MARGIN_SECONDS = 60


def daraja_base_url(environment: str) -> str:
    env = str(environment or "").strip().lower()
    if env in {"production", "live", "prod"}:
        return PRODUCTION_BASE_URL
    return SANDBOX_BASE_URL


def daraja_timestamp(now: datetime | None = None) -> str:
    moment = now or datetime.now(timezone.utc)
    return moment.astimezone(EAT).strftime("%Y%m%d%H%M%S")


def daraja_password(shortcode: str, passkey: str, timestamp: str) -> str:
    raw = f"{shortcode}{passkey}{timestamp}".encode("utf-8")
    return base64.b64encode(raw).decode("utf-8")


class MpesaApiError(Exception):
    def __init__(self, message: str, *, status_code: int | None = None, raw: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.raw = raw


class DarajaClient:
    """Thin client for the two Daraja calls an STK push needs: OAuth, then processrequest."""

    def __init__(self):
        self.base_url = daraja_base_url(settings.mpesa_environment)
        self.consumer_key = settings.mpesa_consumer_key
        self.consumer_secret = settings.mpesa_consumer_secret
        self.shortcode = str(settings.mpesa_business_shortcode)
        self.passkey = settings.mpesa_passkey
        self.callback_url = self._callback_url()
        self.transaction_type = settings.mpesa_transaction_type
        self.timeout = settings.mpesa_timeout_seconds

    def _callback_url(self) -> str:
        url = str(settings.mpesa_callback_url or "").strip()
        token = (settings.mpesa_callback_token or "").strip()
        if token:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}token={token}"
        return url

    def _basic_auth(self) -> str:
        token = f"{self.consumer_key}:{self.consumer_secret}"
        return base64.b64encode(token.encode()).decode()

    def _token_cache_key(self) -> str:
        return f"daraja:token:{self.base_url}:{self.consumer_key}"

    def _extract_error_message(self, response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            data = {}
        if isinstance(data, dict):
            for key in ("errorMessage", "ResponseDescription", "CustomerMessage", "message", "error_description"):
                value = data.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
        text = (response.text or "").strip()
        return text[:300] if text else f"HTTP {response.status_code}"

    def _send(self, method: str, path: str, *, headers: dict, payload: dict | None = None) -> httpx.Response:
        url = f"{self.base_url}{path}"
        start = time.time()
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.request(method, url, json=payload, headers=headers)
        except (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError) as exc:
            logger.warning("Daraja %s %s transport error: %s", method, path.split("?")[0], exc)
            raise MpesaApiError("Unable to reach M-Pesa.", raw=str(exc)) from exc
        duration_ms = round((time.time() - start) * 1000, 2)
        logger.info("Daraja %s %s status=%s duration=%sms", method, path.split("?")[0], response.status_code, duration_ms)
        return response

    def get_access_token(self) -> str:
        cache_key = self._token_cache_key()
        cached = get_cached(cache_key)
        if cached:
            return cached

        response = self._send("GET", OAUTH_PATH, headers={"Authorization": f"Basic {self._basic_auth()}"})
        if response.status_code >= 400:
            raise MpesaApiError(
                self._extract_error_message(response),
                status_code=response.status_code,
                raw=response.text,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise MpesaApiError("M-Pesa returned invalid JSON for the access token.", raw=response.text) from exc

        token = data.get("access_token")
        if not token:
            raise MpesaApiError("M-Pesa did not return an access token.", raw=response.text)
        try:
            expires_in = int(data.get("expires_in") or 3599)
        except (TypeError, ValueError):
            expires_in = 3599
        set_cached(cache_key, token, ttl_seconds=max(1, expires_in - TOKEN_EXPIRY_MARGIN_SECONDS))
        return token

    def build_stk_payload(
        self,
        *,
        phone_number: str,
        amount: int,
        account_reference: str,
        transaction_desc: str,
        timestamp: str,
    ) -> dict:
        return {
            "BusinessShortCode": self.shortcode,
            "Password": daraja_password(self.shortcode, self.passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": self.transaction_type,
            "Amount": int(amount),
            "PartyA": phone_number,
            "PartyB": self.shortcode,
            "PhoneNumber": phone_number,
            "CallBackURL": self.callback_url,
            "AccountReference": account_reference,
            "TransactionDesc": transaction_desc,
        }

    def stk_push(self, *, phone_number: str, amount: int, account_reference: str, transaction_desc: str) -> dict:
        if settings.mpesa_test_mode:
            # Explicit test mode never contacts Safaricom.
            suffix = secrets.token_hex(6)
            return {
                "MerchantRequestID": f"TEST-MR-{suffix}",
                "CheckoutRequestID": f"ws_CO_TEST_{suffix}",
                "ResponseCode": "0",
                "ResponseDescription": "Success. Request accepted for processing",
                "CustomerMessage": "Success. Request accepted for processing",
            }

        token = self.get_access_token()
        payload = self.build_stk_payload(
            phone_number=phone_number,
            amount=amount,
            account_reference=account_reference,
            transaction_desc=transaction_desc,
            timestamp=daraja_timestamp(),
        )
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        # Single attempt: a retried push can put a second PIN prompt on the customer's phone.
        response = self._send("POST", STK_PUSH_PATH, headers=headers, payload=payload)
        if response.status_code >= 400:
            raise MpesaApiError(
                self._extract_error_message(response),
                status_code=response.status_code,
                raw=response.text,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise MpesaApiError("M-Pesa returned invalid JSON response.", status_code=response.status_code, raw=response.text) from exc
