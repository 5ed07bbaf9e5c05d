"""WooCommerce REST API (v3) order store."""

from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta
from typing import Dict, Iterable, Iterator, List, Optional

import requests

from src.orders.store import Order, OrderStore, OrderStoreError

logger = logging.getLogger(__name__)

PER_PAGE = 100
REQUEST_TIMEOUT = 30

# How far back find_by_meta scans; the REST API cannot filter on meta values
META_LOOKUP_DAYS = 365


def parse_order(data: Dict) -> Order:
    """Convert a WooCommerce order JSON object into an Order."""
    created = data.get("date_created_gmt") or data.get("date_created")
    meta = {
        item.get("key"): item.get("value")
        for item in data.get("meta_data", [])
        if item.get("key")
    }
    return Order(
        id=int(data["id"]),
        status=data.get("status", ""),
        created_at=datetime.fromisoformat(created) if created else datetime.now(),
        meta=meta,
    )


class WooCommerceOrderStore(OrderStore):
    """Order store backed by the WooCommerce REST API."""

    def __init__(self, base_url: str, consumer_key: str, consumer_secret: str):
        self.base_url = base_url.rstrip("/")
        self.auth = (consumer_key, consumer_secret)

    @classmethod
    def from_env(cls) -> "WooCommerceOrderStore":
        """
        Build from WOOCOMMERCE_URL, WOOCOMMERCE_CONSUMER_KEY and WOOCOMMERCE_CONSUMER_SECRET.

        Raises:
            OrderStoreError: If any of them is missing
        """
        required = ["WOOCOMMERCE_URL", "WOOCOMMERCE_CONSUMER_KEY", "WOOCOMMERCE_CONSUMER_SECRET"]
        missing = [var for var in required if not os.getenv(var)]
        if missing:
            raise OrderStoreError(f"Missing required environment variables: {', '.join(missing)}")
        return cls(
            os.environ["WOOCOMMERCE_URL"],
            os.environ["WOOCOMMERCE_CONSUMER_KEY"],
            os.environ["WOOCOMMERCE_CONSUMER_SECRET"],
        )

    def _url(self, path: str) -> str:
        return f"{self.base_url}/wp-json/wc/v3/{path}"

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        try:
            response = requests.request(
                method,
                self._url(path),
                auth=self.auth,
                timeout=REQUEST_TIMEOUT,
                **kwargs,
            )
        except requests.RequestException as e:
            raise OrderStoreError(f"WooCommerce request failed: {e}") from e
        return response

    def _check(self, response: requests.Response) -> None:
        if response.status_code >= 400:
            logger.error(
                f"WooCommerce error: status={response.status_code}, response={response.text[:500]}"
            )
            raise OrderStoreError(f"WooCommerce returned HTTP {response.status_code}")

    def _iter_orders(self, params: Dict) -> Iterator[Order]:
        page = 1
        while True:
            response = self._request("GET", "orders", params={**params, "per_page": PER_PAGE, "page": page})
            self._check(response)
            batch = response.json()
            for item in batch:
                yield parse_order(item)

            total_pages = int(response.headers.get("X-WP-TotalPages", page))
            if len(batch) < PER_PAGE or page >= total_pages:
                return
            page += 1

    def find_awaiting_payment(
        self, statuses: Iterable[str], created_after: datetime
    ) -> List[Order]:
        params = {
            "status": ",".join(statuses),
            "after": created_after.strftime("%Y-%m-%dT%H:%M:%S"),
        }
        return [order for order in self._iter_orders(params) if order.xero_invoice_id]

    def get(self, order_id: int) -> Optional[Order]:
        response = self._request("GET", f"orders/{order_id}")
        if response.status_code == 404:
            return None
        self._check(response)
        return parse_order(response.json())

    def find_by_meta(self, key: str, value: str) -> Optional[Order]:
        created_after = datetime.now() - timedelta(days=META_LOOKUP_DAYS)
        params = {"after": created_after.strftime("%Y-%m-%dT%H:%M:%S")}
        for order in self._iter_orders(params):
            if order.meta.get(key) == value:
                return order
        return None

    def set_meta(self, order_id: int, key: str, value: str) -> None:
        response = self._request(
            "PUT", f"orders/{order_id}", json={"meta_data": [{"key": key, "value": value}]}
        )
        self._check(response)

    def update_status(self, order_id: int, status: str, note: str = "") -> None:
        response = self._request("PUT", f"orders/{order_id}", json={"status": status})
        self._check(response)

        if note:
            response = self._request("POST", f"orders/{order_id}/notes", json={"note": note})
            self._check(response)
