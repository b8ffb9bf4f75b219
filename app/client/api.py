import httpx


class CheckoutApiError(Exception):
    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class CheckoutApiClient:
    """HTTP client for the storefront's M-Pesa endpoints."""

    def __init__(self, base_url: str, *, api_prefix: str = "/api/v1", timeout: float = 15.0, transport=None):
        self.base_url = base_url.rstrip("/")
        self.api_prefix = api_prefix
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _url(self, path: str) -> str:
        return f"{self.base_url}{self.api_prefix}{path}"

    @staticmethod
    def _message(response: httpx.Response, fallback: str) -> str:
        try:
            data = response.json()
        except ValueError:
            return fallback
        if isinstance(data, dict):
            detail = data.get("detail")
            if isinstance(detail, dict) and detail.get("message"):
                return str(detail["message"])
            if data.get("message"):
                return str(data["message"])
        return fallback

    def initiate_payment(
        self,
        *,
        phone_number: str,
        amount: int,
        product_name: str,
        account_reference: str | None = None,
        transaction_desc: str | None = None,
    ) -> dict:
        body = {"phoneNumber": phone_number, "amount": amount, "productName": product_name}
        if account_reference:
            body["accountReference"] = account_reference
        if transaction_desc:
            body["transactionDesc"] = transaction_desc
        try:
            response = self._client.post(self._url("/mpesa/stk-push"), json=body)
        except httpx.HTTPError as exc:
            raise CheckoutApiError("Could not reach the payment service. Please try again.") from exc
        if response.status_code >= 400:
            raise CheckoutApiError(
                self._message(response, "Payment initiation failed"),
                status_code=response.status_code,
            )
        data = response.json()
        if not data.get("success"):
            raise CheckoutApiError(data.get("message") or "Payment initiation failed", status_code=response.status_code)
        return data

    def payment_status(self, checkout_request_id: str) -> dict:
        response = self._client.get(self._url(f"/mpesa/payment-status/{checkout_request_id}"))
        if response.status_code >= 400:
            raise CheckoutApiError(
                self._message(response, "Status lookup failed"),
                status_code=response.status_code,
            )
        return response.json()
