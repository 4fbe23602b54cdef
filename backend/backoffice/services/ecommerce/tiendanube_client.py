# Overview: HTTP client for the Tiendanube REST API.

"""
Tiendanube API client.

- Auth header is "Authentication: bearer <token>" (not Authorization).
- A User-Agent identifying the app is mandatory.
- The API is rate limited (leaky bucket, ~2 req/s); HTTP 429 is retried
  with exponential backoff: base_delay * 2**attempt.
- Any other non-2xx response raises EcommerceError.
"""
from __future__ import annotations

import logging
import time
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

import httpx


logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.tiendanube.com/v1"
DEFAULT_USER_AGENT = "Backoffice (soporte@backoffice.local)"
MAX_PER_PAGE = 200


class EcommerceError(Exception):
    """Raised when the e-commerce platform rejects a call or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TiendanubeClient:
    def __init__(
        self,
        store_id: str,
        access_token: str,
        *,
        api_base: str = DEFAULT_API_BASE,
        user_agent: str = DEFAULT_USER_AGENT,
        max_retries: int = 3,
        retry_base_delay: float = 0.6,
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
        sleep=time.sleep,
    ):
        self.store_id = str(store_id)
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self._sleep = sleep
        self._http = httpx.Client(
            base_url=f"{api_base.rstrip('/')}/{self.store_id}/",
            headers={
                "Authentication": f"bearer {access_token}",
                "User-Agent": user_agent,
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(cls, store_id: str, access_token: str, config, **kwargs) -> "TiendanubeClient":
        return cls(
            store_id,
            access_token,
            api_base=config.get("TIENDANUBE_API_BASE", DEFAULT_API_BASE),
            user_agent=config.get("TIENDANUBE_USER_AGENT", DEFAULT_USER_AGENT),
            max_retries=config.get("TIENDANUBE_MAX_RETRIES", 3),
            retry_base_delay=config.get("TIENDANUBE_RETRY_BASE_DELAY", 0.6),
            timeout=config.get("TIENDANUBE_TIMEOUT", 15.0),
            **kwargs,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def request(self, method: str, endpoint: str, *, json=None, params: dict | None = None):
        for attempt in range(self.max_retries + 1):
            try:
                response = self._http.request(method, endpoint.lstrip("/"), json=json, params=params)
            except httpx.HTTPError as e:
                raise EcommerceError(f"Tiendanube request failed: {e}") from e

            if response.status_code == 429:
                if attempt < self.max_retries:
                    delay = self.retry_base_delay * (2 ** attempt)
                    logger.info("Tiendanube rate limited on %s %s, retrying in %.2fs", method, endpoint, delay)
                    self._sleep(delay)
                    continue
                raise EcommerceError(
                    f"Tiendanube rate limit exceeded after {self.max_retries} retries", status_code=429
                )

            if response.is_error:
                raise EcommerceError(
                    f"Tiendanube API error {response.status_code}: {response.reason_phrase}. {response.text}",
                    status_code=response.status_code,
                )

            if not response.content:
                return None
            return response.json()

        raise EcommerceError("Tiendanube: retries exhausted")

    def fetch_all(self, endpoint: str, *, per_page: int = MAX_PER_PAGE, params: dict | None = None) -> list:
        """Follow page/per_page pagination until a short page comes back."""
        items = []
        page = 1
        while True:
            batch = self.request("GET", endpoint, params={**(params or {}), "page": page, "per_page": per_page})
            batch = batch or []
            items.extend(batch)
            if len(batch) < per_page:
                return items
            page += 1

    # -- Products --

    def get_products(self) -> list[dict]:
        return self.fetch_all("products")

    def get_product(self, product_id) -> dict:
        return self.request("GET", f"products/{product_id}")

    def update_variant_stock(self, product_id, variant_id, stock: int) -> dict | None:
        return self.request("PUT", f"products/{product_id}/variants/{variant_id}", json={"stock": stock})

    # -- Webhooks --

    def list_webhooks(self) -> list[dict]:
        return self.request("GET", "webhooks") or []

    def create_webhook(self, event: str, url: str) -> dict:
        return self.request("POST", "webhooks", json={"event": event, "url": url})

    def delete_webhook(self, webhook_id) -> None:
        self.request("DELETE", f"webhooks/{webhook_id}")


def extract_i18n(field) -> str:
    """Text of a multi-language field, preferring Spanish, then Portuguese, then anything."""
    if not field:
        return ""
    if isinstance(field, str):
        return field
    return field.get("es") or field.get("pt") or next(iter(field.values()), "") or ""


def parse_price(price) -> int | None:
    """Tiendanube prices are decimal strings ("1500.00"); returns cents or None."""
    if price is None or price == "":
        return None
    try:
        value = Decimal(str(price))
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
