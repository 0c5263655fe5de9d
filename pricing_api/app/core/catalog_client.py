"""
WooCommerce catalog client with retry logic and rate limiting.

Variant ids are opaque strings: "<product_id>" for a simple product or
"<product_id>:<variation_id>" for a variation of a variable product.
"""

import time
import random
import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, List, Any, Tuple, Sequence
import httpx
from urllib.parse import urljoin

from app.core.price_calculator import format_price
from app.core.utils import chunked

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = (429, 500, 502, 503, 504)
NON_RETRYABLE_STATUS = (400, 401, 403, 404, 422)


class CatalogError(Exception):
    """Catalog API failure. `retryable` marks timeouts, 429 and 5xx responses."""

    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


@dataclass
class VariantInfo:
    """Catalog identity and current price of a variant."""
    variant_id: str
    product_title: str
    variant_title: Optional[str] = None
    sku: Optional[str] = None
    price: Optional[Decimal] = None


def parse_variant_id(variant_id: str) -> Tuple[int, Optional[int]]:
    """
    Split a variant id into (product_id, variation_id).

    Raises:
        ValueError: If the id is not '<int>' or '<int>:<int>'.
    """
    parts = str(variant_id).strip().split(":")
    if len(parts) > 2 or not all(p.isdigit() for p in parts):
        raise ValueError(f"Invalid variant id: {variant_id!r}")
    product_id = int(parts[0])
    variation_id = int(parts[1]) if len(parts) == 2 else None
    return product_id, variation_id


def _parse_catalog_price(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


class CatalogClient:
    """
    Async WooCommerce REST API client for variant prices.

    Only the operations the price scheduler needs: batch-read variant
    identity/price, expand products to their variants and write a variant's
    regular price.
    """

    def __init__(
        self,
        store_url: str,
        consumer_key: str,
        consumer_secret: str,
        rate_limit_rps: float = 5.0,
        timeout: float = 30.0,
        max_retries: int = 4,
        initial_delay: float = 2.0,
        backoff_factor: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize catalog client.

        Args:
            store_url: Store base URL (e.g., https://example.com)
            consumer_key: WooCommerce consumer key
            consumer_secret: WooCommerce consumer secret
            rate_limit_rps: Rate limit (requests per second)
            timeout: Request timeout in seconds
            max_retries: Retry attempts for transient failures
            initial_delay: Initial retry delay in seconds
            backoff_factor: Backoff multiplier
            transport: Optional httpx transport (tests)
        """
        if not consumer_key or not consumer_secret:
            raise ValueError("Must provide consumer_key and consumer_secret")

        self.store_url = store_url.rstrip('/')
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.backoff_factor = backoff_factor

        # Rate limiting state, shared by concurrent item updates
        self._last_request_time = 0.0
        self._min_interval = 1.0 / rate_limit_rps if rate_limit_rps > 0 else 0
        self._rate_lock = asyncio.Lock()

        self.client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            transport=transport
        )

    async def close(self):
        await self.client.aclose()

    async def _wait_for_rate_limit(self):
        """Wait if needed to respect rate limit."""
        async with self._rate_lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if elapsed < self._min_interval:
                await asyncio.sleep(self._min_interval - elapsed)
            self._last_request_time = time.monotonic()

    def _retry_delay(self, attempt: int, response: Optional[httpx.Response] = None) -> float:
        delay = min(self.initial_delay * (self.backoff_factor ** attempt), 60.0)
        if response is not None:
            retry_after = response.headers.get("Retry-After")
            if retry_after and retry_after.isdigit():
                delay = max(delay, min(float(retry_after), 60.0))
        if delay > 0:
            delay += random.uniform(0, 0.4)  # Jitter
        return delay

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict] = None,
        json_data: Optional[Dict] = None
    ) -> httpx.Response:
        """
        Make HTTP request with retry logic.

        Raises:
            CatalogError: On a non-retryable response or when retries are exhausted
        """
        url = urljoin(self.store_url + '/', endpoint.lstrip('/'))
        auth = httpx.BasicAuth(self.consumer_key, self.consumer_secret)

        last_error = None

        for attempt in range(self.max_retries + 1):
            await self._wait_for_rate_limit()

            try:
                response = await self.client.request(
                    method=method,
                    url=url,
                    params=params,
                    json=json_data,
                    auth=auth
                )
            except httpx.TimeoutException as e:
                last_error = CatalogError(f"Timeout: {e}", retryable=True)
            except httpx.RequestError as e:
                last_error = CatalogError(f"Request error: {e}", retryable=True)
            else:
                if response.status_code in (200, 201, 204):
                    return response

                if response.status_code in RETRYABLE_STATUS:
                    last_error = CatalogError(
                        f"HTTP {response.status_code}: {response.text[:200]}",
                        status_code=response.status_code,
                        retryable=True
                    )
                    if attempt < self.max_retries:
                        logger.warning(f"{method} {endpoint} returned {response.status_code}, retry {attempt + 1}/{self.max_retries}")
                        await asyncio.sleep(self._retry_delay(attempt, response))
                        continue
                    break

                # 4xx and anything unexpected is not worth retrying
                raise CatalogError(
                    f"HTTP {response.status_code}: {response.text[:200]}",
                    status_code=response.status_code,
                    retryable=False
                )

            if attempt < self.max_retries:
                logger.warning(f"{method} {endpoint} failed ({last_error}), retry {attempt + 1}/{self.max_retries}")
                await asyncio.sleep(self._retry_delay(attempt))

        raise CatalogError(
            f"{last_error} (after {self.max_retries} retries)",
            status_code=last_error.status_code if last_error else None,
            retryable=True
        )

    def _simple_variant(self, item: Dict[str, Any]) -> VariantInfo:
        return VariantInfo(
            variant_id=str(item.get("id")),
            product_title=item.get("name", f"Product #{item.get('id')}"),
            sku=item.get("sku") or None,
            price=_parse_catalog_price(item.get("regular_price"))
        )

    def _variation_variant(self, product_id: int, product_title: str, item: Dict[str, Any]) -> VariantInfo:
        options = [a.get("option") for a in item.get("attributes", []) if a.get("option")]
        return VariantInfo(
            variant_id=f"{product_id}:{item.get('id')}",
            product_title=product_title,
            variant_title=" / ".join(options) or None,
            sku=item.get("sku") or None,
            price=_parse_catalog_price(item.get("regular_price"))
        )

    async def _fetch_products(self, product_ids: Sequence[int]) -> List[Dict[str, Any]]:
        products = []
        for batch in chunked(list(product_ids), 100):
            params = {"include": ",".join(map(str, batch)), "per_page": 100}
            response = await self._request("GET", "/wp-json/wc/v3/products", params=params)
            items = response.json()
            if isinstance(items, list):
                products.extend(items)
        return products

    async def _fetch_all_variations(self, product_id: int, product_title: str) -> List[VariantInfo]:
        """All variations of a variable product, following pagination."""
        found = []
        page = 1
        per_page = 100

        while True:
            params = {"per_page": per_page, "page": page}
            response = await self._request(
                "GET", f"/wp-json/wc/v3/products/{product_id}/variations", params=params
            )
            items = response.json()
            if not isinstance(items, list) or not items:
                break

            found.extend(self._variation_variant(product_id, product_title, item) for item in items)

            if len(items) < per_page:
                break
            page += 1

        return found

    async def get_variants(self, variant_ids: Sequence[str]) -> List[VariantInfo]:
        """
        Batch-read variant identity and current regular price.

        Unknown or malformed ids are left out of the result.

        Args:
            variant_ids: Variant ids ('123' or '123:456')

        Returns:
            List of VariantInfo for the variants found
        """
        simple_ids: List[int] = []
        variations_by_product: Dict[int, List[int]] = {}

        for variant_id in dict.fromkeys(str(v) for v in variant_ids):
            try:
                product_id, variation_id = parse_variant_id(variant_id)
            except ValueError:
                logger.warning(f"Skipping malformed variant id {variant_id!r}")
                continue
            if variation_id is None:
                simple_ids.append(product_id)
            else:
                variations_by_product.setdefault(product_id, []).append(variation_id)

        found = [self._simple_variant(item) for item in await self._fetch_products(simple_ids)]

        for product_id, variation_ids in variations_by_product.items():
            try:
                product = (await self._request("GET", f"/wp-json/wc/v3/products/{product_id}")).json()
            except CatalogError as e:
                if e.status_code == 404:
                    continue
                raise
            product_title = product.get("name", f"Product #{product_id}")

            for batch in chunked(variation_ids, 100):
                params = {"include": ",".join(map(str, batch)), "per_page": 100}
                response = await self._request(
                    "GET", f"/wp-json/wc/v3/products/{product_id}/variations", params=params
                )
                items = response.json()
                for item in items if isinstance(items, list) else []:
                    found.append(self._variation_variant(product_id, product_title, item))

        return found

    async def expand_products(self, product_ids: Sequence[str]) -> List[VariantInfo]:
        """
        Resolve product ids to the variants a bulk edit touches.

        A simple product is its own single variant; a variable product
        expands to every one of its variations. Unknown or malformed ids are
        left out of the result.
        """
        ids: List[int] = []
        for product_id in dict.fromkeys(str(p).strip() for p in product_ids):
            if not product_id.isdigit():
                logger.warning(f"Skipping malformed product id {product_id!r}")
                continue
            ids.append(int(product_id))

        found: List[VariantInfo] = []
        for product in await self._fetch_products(ids):
            if product.get("type") == "variable":
                title = product.get("name", f"Product #{product.get('id')}")
                found.extend(await self._fetch_all_variations(int(product["id"]), title))
            else:
                found.append(self._simple_variant(product))

        return found

    async def update_variant_price(self, variant_id: str, price: Decimal) -> bool:
        """
        Set a variant's regular price. Only regular_price is sent.

        Args:
            variant_id: Variant id ('123' or '123:456')
            price: Target price

        Returns:
            True if successful

        Raises:
            CatalogError: If the update fails (after retries for transient errors)
        """
        try:
            product_id, variation_id = parse_variant_id(variant_id)
        except ValueError as e:
            raise CatalogError(str(e), retryable=False)

        if variation_id is None:
            endpoint = f"/wp-json/wc/v3/products/{product_id}"
        else:
            endpoint = f"/wp-json/wc/v3/products/{product_id}/variations/{variation_id}"

        await self._request("PATCH", endpoint, json_data={"regular_price": format_price(price)})
        return True
