"""
Shopify Admin GraphQL client for catalog reads and bulk mutations.

Pagination is cursor based and strictly sequential: page N+1 needs the
cursor from page N. Every call goes through execute_query, which retries
according to integrations.retry.
"""

import re
import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Optional

import requests
import structlog

from config.settings import settings
from exceptions import (
    AuthFailedError,
    BulkUpdateRolledBackError,
    CatalogUserError,
    InventoryAdjustError,
    RateLimitedError,
    UpstreamApiError,
    ValidationError,
    VariantUpdateValidationError,
)
from integrations.compensation import CompensationLog
from integrations.retry import Fatal, RetryPolicy, classify
from models.catalog import (
    CatalogPage,
    CatalogRecord,
    InventoryAdjustResult,
    InventoryLevel,
    VariantUpdateResult,
)

logger = structlog.get_logger(__name__)

MAX_PAGE_SIZE = 250
INVENTORY_ID_CHUNK = 50
INVENTORY_BATCH_SIZE = 10
WEIGHT_UNITS = ("KILOGRAMS", "POUNDS", "OUNCES", "GRAMS")

AuditFn = Callable[..., None]


# ===================
# QUERIES
# ===================

VARIANT_FIELDS = """
    id
    title
    sku
    barcode
    price
    compareAtPrice
    weight
    weightUnit
    inventoryQuantity
    taxable
    taxCode
    createdAt
    updatedAt
    selectedOptions { name value }
    inventoryItem {
        id
        unitCost { amount }
        inventoryLevels(first: 10) { edges { node { available location { id name } } } }
    }
"""

PRODUCT_FIELDS = """
    id
    title
    handle
    description
    vendor
    productType
    tags
    status
    createdAt
    updatedAt
    publishedAt
    totalInventory
"""

PRODUCTS_QUERY = """
query getProducts($first: Int!, $after: String, $query: String) {
    products(first: $first, after: $after, query: $query) {
        pageInfo { hasNextPage endCursor }
        edges {
            node {
                %s
                variants(first: 250) { edges { node { %s } } }
                images(first: 10) { edges { node { id url altText } } }
            }
        }
    }
}
""" % (PRODUCT_FIELDS, VARIANT_FIELDS)

PRODUCT_QUERY = """
query getProduct($id: ID!) {
    product(id: $id) {
        %s
        variants(first: 250) { edges { node { %s } } }
        images(first: 10) { edges { node { id url altText } } }
    }
}
""" % (PRODUCT_FIELDS, VARIANT_FIELDS)

VARIANT_QUERY = """
query getVariant($id: ID!) {
    productVariant(id: $id) {
        %s
        product { %s }
    }
}
""" % (VARIANT_FIELDS, PRODUCT_FIELDS)

VARIANT_BY_INVENTORY_ITEM_QUERY = """
query getInventoryItemVariant($id: ID!) {
    inventoryItem(id: $id) {
        id
        variant {
            %s
            product { %s }
        }
    }
}
""" % (VARIANT_FIELDS, PRODUCT_FIELDS)

INVENTORY_LEVELS_QUERY = """
query getInventoryLevels($first: Int!, $after: String, $inventoryItemIds: [ID!]!) {
    inventoryLevels(first: $first, after: $after, inventoryItemIds: $inventoryItemIds) {
        pageInfo { hasNextPage endCursor }
        edges {
            node {
                id
                available
                location { id name }
                inventoryItem { id sku }
            }
        }
    }
}
"""

INVENTORY_ADJUST_MUTATION = """
mutation inventoryBulkAdjustQuantityAtLocation($locationId: ID!, $inventoryItemAdjustments: [InventoryAdjustItemInput!]!) {
    inventoryBulkAdjustQuantityAtLocation(
        locationId: $locationId
        inventoryItemAdjustments: $inventoryItemAdjustments
    ) {
        userErrors { field message }
        inventoryLevels {
            id
            available
            location { id name }
            inventoryItem { id sku }
        }
    }
}
"""

VARIANT_UPDATE_MUTATION = """
mutation productVariantUpdate($input: ProductVariantInput!) {
    productVariantUpdate(input: $input) {
        productVariant { id title sku price compareAtPrice inventoryQuantity }
        userErrors { field message }
    }
}
"""

VARIANT_STATE_QUERY = """
query getVariantState($id: ID!) {
    productVariant(id: $id) {
        id
        price
        compareAtPrice
        sku
        barcode
        weight
        weightUnit
        taxable
        taxCode
        inventoryItem { unitCost { amount } }
    }
}
"""

# snake_case update key -> ProductVariantInput field
VARIANT_INPUT_FIELDS = {
    "price": "price",
    "compare_at_price": "compareAtPrice",
    "cost": "cost",
    "sku": "sku",
    "barcode": "barcode",
    "weight": "weight",
    "weight_unit": "weightUnit",
    "taxable": "taxable",
    "tax_code": "taxCode",
}

_OPERATION_RE = re.compile(r"\b(query|mutation|subscription)\s+(\w+)", re.IGNORECASE)


def extract_query_type(query: str) -> str:
    """'query getProducts(...)' -> 'QUERY getProducts'."""
    match = _OPERATION_RE.search(query)
    if match:
        return f"{match.group(1).upper()} {match.group(2)}"
    return "UNKNOWN"


def _chunks(items: list, size: int) -> Iterator[list]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _user_error_message(user_errors: list[dict]) -> str:
    return ", ".join(e.get("message", "Unknown error") for e in user_errors)


class ShopifyCatalogClient:
    """
    Catalog client bound to one shop.

    Not safe to share across threads; create one client per job.
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        *,
        api_version: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        page_delay: Optional[float] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        audit: Optional[AuditFn] = None,
        timeout: int = 60,
    ):
        self.shop_domain = shop_domain
        self.api_version = api_version or settings.shopify_api_version
        self.endpoint = f"https://{shop_domain}/admin/api/{self.api_version}/graphql.json"
        self.policy = RetryPolicy(
            max_attempts=max_retries or settings.sync_max_retries,
            base_delay=settings.sync_retry_delay_seconds if retry_delay is None else retry_delay,
        )
        self.page_delay = settings.sync_page_delay_seconds if page_delay is None else page_delay
        self.session = session or requests.Session()
        self.session.headers.update({
            "X-Shopify-Access-Token": access_token,
            "Content-Type": "application/json",
        })
        self.sleep = sleep
        self.audit = audit
        self.timeout = timeout

    # ===================
    # TRANSPORT
    # ===================

    def _post(self, query: str, variables: dict) -> dict:
        """One HTTP round-trip; maps failures onto the error taxonomy."""
        try:
            response = self.session.post(
                self.endpoint,
                json={"query": query, "variables": variables},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise UpstreamApiError("shopify", f"Request failed: {e}") from e

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitedError(
                "shopify",
                "Shopify rate limit exceeded (429)",
                retry_after=float(retry_after) if retry_after else None,
            )
        if response.status_code in (401, 403):
            raise AuthFailedError("shopify", f"Shopify rejected credentials ({response.status_code})")
        if response.status_code >= 400:
            raise UpstreamApiError(
                "shopify",
                f"Shopify API error ({response.status_code}): {response.text[:300]}",
                details={"http_status": response.status_code},
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamApiError("shopify", f"Non-JSON response ({response.status_code})") from e

        errors = data.get("errors")
        if errors:
            throttled = any(
                (e.get("extensions") or {}).get("code") == "THROTTLED" for e in errors
            )
            messages = ", ".join(e.get("message", "Unknown error") for e in errors)
            if throttled:
                raise RateLimitedError("shopify", f"Throttled: {messages}")
            raise UpstreamApiError("shopify", f"GraphQL errors: {messages}")

        return data

    def execute_query(self, query: str, variables: Optional[dict] = None) -> dict:
        """
        Run a GraphQL document with retries.

        Raises:
            The last error once attempts are exhausted, or the first fatal one.
        """
        variables = variables or {}
        query_type = extract_query_type(query)
        attempt = 0

        while True:
            attempt += 1
            try:
                data = self._post(query, variables)
                self._audit("graphql_query", query_type=query_type, attempt=attempt, success=True)
                logger.debug("graphql_query_executed", shop=self.shop_domain, query_type=query_type, attempt=attempt)
                return data
            except Exception as e:
                decision = classify(e)
                self._audit(
                    "graphql_query",
                    query_type=query_type,
                    attempt=attempt,
                    success=False,
                    error=str(e),
                )
                if isinstance(decision, Fatal) or attempt >= self.policy.max_attempts:
                    logger.error(
                        "graphql_query_failed",
                        shop=self.shop_domain,
                        query_type=query_type,
                        attempts=attempt,
                        error=str(e)
                    )
                    raise

                delay = self.policy.delay_for(decision, attempt)
                logger.warning(
                    "graphql_query_retrying",
                    shop=self.shop_domain,
                    query_type=query_type,
                    attempt=attempt,
                    rate_limited=decision.rate_limited,
                    wait_seconds=delay
                )
                self.sleep(delay)

    def _audit(self, operation: str, **details: Any) -> None:
        if self.audit is not None:
            self.audit(operation, **details)

    # ===================
    # PRODUCT READS
    # ===================

    def fetch_page(self, cursor: Optional[str] = None, limit: int = MAX_PAGE_SIZE) -> CatalogPage:
        """One page of products with nested variants and images."""
        return self._products_page(cursor, limit, None)

    def fetch_since(
        self,
        since: datetime,
        cursor: Optional[str] = None,
        limit: int = MAX_PAGE_SIZE
    ) -> CatalogPage:
        """Same contract as fetch_page, filtered to products updated at or after `since`."""
        return self._products_page(cursor, limit, self.updated_since_filter(since))

    @staticmethod
    def updated_since_filter(since: datetime) -> str:
        if since.tzinfo is not None:
            since = since.astimezone(timezone.utc)
        return f"updated_at:>={since.strftime('%Y-%m-%dT%H:%M:%SZ')}"

    def _products_page(self, cursor: Optional[str], limit: int, search: Optional[str]) -> CatalogPage:
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        variables: dict[str, Any] = {"first": limit}
        if cursor:
            variables["after"] = cursor
        if search:
            variables["query"] = search

        data = self.execute_query(PRODUCTS_QUERY, variables)
        products = (data.get("data") or {}).get("products") or {}
        page_info = products.get("pageInfo") or {}

        return CatalogPage(
            records=[CatalogRecord.from_product_node(edge["node"]) for edge in products.get("edges", [])],
            next_cursor=page_info.get("endCursor"),
            has_more=bool(page_info.get("hasNextPage")),
        )

    def iter_pages(
        self,
        cursor: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = MAX_PAGE_SIZE
    ) -> Iterator[CatalogPage]:
        """
        Yield pages until the server reports no more.

        Sleeps page_delay between pages, never after the last one.
        """
        page_number = 0
        while True:
            if since is not None:
                page = self.fetch_since(since, cursor, limit)
            else:
                page = self.fetch_page(cursor, limit)
            page_number += 1

            logger.info(
                "catalog_page_fetched",
                shop=self.shop_domain,
                page=page_number,
                records=len(page.records),
                has_more=page.has_more
            )
            yield page

            if not page.has_more:
                return
            if not page.next_cursor:
                logger.warning("catalog_page_missing_cursor", shop=self.shop_domain, page=page_number)
                return
            cursor = page.next_cursor
            self.sleep(self.page_delay)

    def fetch_all(self, cursor: Optional[str] = None) -> Iterator[CatalogRecord]:
        """Lazy sequence of every product, restartable from a cursor."""
        for page in self.iter_pages(cursor=cursor):
            yield from page.records

    def fetch_all_since(self, since: datetime, cursor: Optional[str] = None) -> Iterator[CatalogRecord]:
        for page in self.iter_pages(cursor=cursor, since=since):
            yield from page.records

    def fetch_product(self, product_id: str) -> Optional[CatalogRecord]:
        data = self.execute_query(PRODUCT_QUERY, {"id": product_id})
        node = (data.get("data") or {}).get("product")
        return CatalogRecord.from_product_node(node) if node else None

    def fetch_variant(self, variant_id: str) -> Optional[CatalogRecord]:
        data = self.execute_query(VARIANT_QUERY, {"id": variant_id})
        node = (data.get("data") or {}).get("productVariant")
        return CatalogRecord.from_variant_node(node) if node else None

    def fetch_variant_by_inventory_item(self, inventory_item_id: str) -> Optional[CatalogRecord]:
        data = self.execute_query(VARIANT_BY_INVENTORY_ITEM_QUERY, {"id": inventory_item_id})
        item = (data.get("data") or {}).get("inventoryItem") or {}
        node = item.get("variant")
        if not node:
            return None
        node.setdefault("inventoryItem", {"id": item.get("id")})
        return CatalogRecord.from_variant_node(node)

    # ===================
    # INVENTORY READS
    # ===================

    def fetch_inventory_levels(
        self,
        item_ids: list[str],
        cursor: Optional[str] = None,
        limit: int = MAX_PAGE_SIZE
    ) -> tuple[list[InventoryLevel], Optional[str], bool]:
        """One page of levels for at most 50 inventory items."""
        if len(item_ids) > INVENTORY_ID_CHUNK:
            raise ValueError(f"At most {INVENTORY_ID_CHUNK} inventory item ids per query")
        variables: dict[str, Any] = {
            "first": max(1, min(limit, MAX_PAGE_SIZE)),
            "inventoryItemIds": item_ids,
        }
        if cursor:
            variables["after"] = cursor

        data = self.execute_query(INVENTORY_LEVELS_QUERY, variables)
        levels = (data.get("data") or {}).get("inventoryLevels") or {}
        page_info = levels.get("pageInfo") or {}
        return (
            [InventoryLevel.from_node(edge["node"]) for edge in levels.get("edges", [])],
            page_info.get("endCursor"),
            bool(page_info.get("hasNextPage")),
        )

    def fetch_all_inventory_levels(self, item_ids: list[str]) -> list[InventoryLevel]:
        """All levels for any number of items, chunked 50 ids per query."""
        all_levels: list[InventoryLevel] = []
        for chunk in _chunks(list(item_ids), INVENTORY_ID_CHUNK):
            cursor = None
            while True:
                levels, cursor, has_more = self.fetch_inventory_levels(chunk, cursor)
                all_levels.extend(levels)
                if not has_more or not cursor:
                    break
                self.sleep(self.page_delay)
        return all_levels

    def _available_at(self, item_ids: list[str], location_id: str) -> dict[str, int]:
        return {
            level.inventory_item_id: level.available
            for level in self.fetch_all_inventory_levels(item_ids)
            if level.location_id == location_id
        }

    # ===================
    # INVENTORY WRITES
    # ===================

    def bulk_adjust_inventory(self, updates: list[dict]) -> InventoryAdjustResult:
        """
        Apply inventory changes grouped by location.

        Each update has inventory_item_id, location_id and either `quantity`
        (absolute target) or `quantity_delta`. A location whose batch fails
        is restored to its captured absolute levels and reported in
        `errors`; other locations keep their changes.

        Raises:
            ValidationError: If any absolute target quantity is negative
        """
        for update in updates:
            quantity = update.get("quantity")
            if quantity is not None and int(quantity) < 0:
                raise ValidationError(
                    f"Invalid inventory quantity: {quantity}. Cannot be negative.",
                    code="INVALID_INVENTORY_QUANTITY",
                    details={"inventory_item_id": update.get("inventory_item_id")}
                )

        by_location: dict[str, list[dict]] = {}
        for update in updates:
            location_id = update.get("location_id")
            if not location_id or not update.get("inventory_item_id"):
                logger.warning("inventory_update_skipped", reason="missing_ids", update=update)
                continue
            by_location.setdefault(location_id, []).append(update)

        result = InventoryAdjustResult()
        self._audit("bulk_adjust_inventory", total_updates=len(updates), locations=len(by_location))

        for location_id, location_updates in by_location.items():
            log = CompensationLog(scope=f"inventory:{location_id}")
            try:
                item_ids = [u["inventory_item_id"] for u in location_updates]
                captured = self._available_at(item_ids, location_id)
                applied = self._adjust_location(location_id, location_updates, captured, log)
                log.complete()
                result.updated.extend(applied)
            except Exception as e:
                log.replay(cause=e)
                error = e if isinstance(e, InventoryAdjustError) else InventoryAdjustError(location_id, str(e))
                logger.error(
                    "inventory_location_failed",
                    shop=self.shop_domain,
                    location_id=location_id,
                    error=str(e)
                )
                result.errors.append({"location_id": location_id, "error": error.message})

        logger.info(
            "inventory_adjust_complete",
            shop=self.shop_domain,
            updated=result.total_updated,
            errors=result.total_errors
        )
        return result

    def _adjust_location(
        self,
        location_id: str,
        updates: list[dict],
        captured: dict[str, int],
        log: CompensationLog
    ) -> list[dict]:
        applied: list[dict] = []
        batches = list(_chunks(updates, INVENTORY_BATCH_SIZE))

        for index, batch in enumerate(batches, start=1):
            adjustments = []
            for update in batch:
                item_id = update["inventory_item_id"]
                if update.get("quantity") is not None:
                    delta = int(update["quantity"]) - captured.get(item_id, 0)
                else:
                    delta = int(update.get("quantity_delta") or 0)
                adjustments.append({"inventoryItemId": item_id, "availableDelta": delta})

            self._audit(
                "inventory_update_batch",
                location_id=location_id,
                batch=index,
                total_batches=len(batches),
                items=len(batch),
            )
            data = self.execute_query(INVENTORY_ADJUST_MUTATION, {
                "locationId": location_id,
                "inventoryItemAdjustments": adjustments,
            })
            payload = (data.get("data") or {}).get("inventoryBulkAdjustQuantityAtLocation") or {}
            user_errors = payload.get("userErrors") or []

            # A batch with userErrors may still be partially applied, so it
            # gets a compensation entry before the failure is raised.
            batch_items = [a["inventoryItemId"] for a in adjustments]
            prior = {item: captured.get(item, 0) for item in batch_items}
            log.record(
                action=f"inventory_batch_{index}",
                prior_state=prior,
                undo=lambda prior=prior: self._restore_levels(location_id, prior),
            )

            if user_errors:
                raise InventoryAdjustError(
                    location_id,
                    f"Inventory update errors: {_user_error_message(user_errors)}",
                )
            applied.extend(payload.get("inventoryLevels") or [])

        return applied

    def _restore_levels(self, location_id: str, prior: dict[str, int]) -> None:
        """Set items back to captured absolute levels (delta = captured - current)."""
        current = self._available_at(list(prior), location_id)
        adjustments = [
            {"inventoryItemId": item, "availableDelta": level - current.get(item, 0)}
            for item, level in prior.items()
            if level != current.get(item, 0)
        ]
        if not adjustments:
            return
        data = self.execute_query(INVENTORY_ADJUST_MUTATION, {
            "locationId": location_id,
            "inventoryItemAdjustments": adjustments,
        })
        payload = (data.get("data") or {}).get("inventoryBulkAdjustQuantityAtLocation") or {}
        if payload.get("userErrors"):
            raise CatalogUserError(_user_error_message(payload["userErrors"]), payload["userErrors"])

    # ===================
    # VARIANT WRITES
    # ===================

    @staticmethod
    def validate_variant_update(update: dict) -> None:
        """
        Reject values the catalog must never receive.

        Raises:
            VariantUpdateValidationError: On negative amounts or unknown weight unit
        """
        variant_id = str(update.get("id") or "")
        if not variant_id:
            raise VariantUpdateValidationError("", "Variant id is required")
        for key, label in (
            ("price", "Price"),
            ("compare_at_price", "Compare at price"),
            ("cost", "Cost"),
            ("weight", "Weight"),
        ):
            value = update.get(key)
            if value is None or value == "":
                continue
            try:
                number = float(value)
            except (TypeError, ValueError):
                raise VariantUpdateValidationError(variant_id, f"{label} is not a number")
            if number < 0:
                raise VariantUpdateValidationError(variant_id, f"{label} cannot be negative")
        unit = update.get("weight_unit")
        if unit and unit not in WEIGHT_UNITS:
            raise VariantUpdateValidationError(variant_id, f"Invalid weight unit: {unit}")

    def bulk_update_variants(self, updates: list[dict]) -> VariantUpdateResult:
        """
        Update variants all-or-nothing.

        Each update is validated and its prior state captured before it is
        sent. If update k fails, updates 1..k-1 are restored to their
        captured values and BulkUpdateRolledBackError is raised.
        """
        log = CompensationLog(scope="variants")
        result = VariantUpdateResult()
        self._audit("bulk_update_variants", total_updates=len(updates))

        for index, update in enumerate(updates, start=1):
            variant_id = update.get("id")
            try:
                self.validate_variant_update(update)
                prior = self._variant_state(variant_id)
                restore = {"id": variant_id}
                restore.update({key: prior.get(key) for key in update if key in VARIANT_INPUT_FIELDS})

                variant = self._update_variant(update)
                log.record(
                    action=f"variant_update:{variant_id}",
                    prior_state=restore,
                    undo=lambda restore=restore: self._update_variant(restore, include_nulls=True),
                )
                result.updated.append(variant)
                self._audit("variant_update", variant_id=variant_id, index=index, total=len(updates))
            except Exception as e:
                applied = len(log.entries)
                log.replay(cause=e)
                logger.error(
                    "variant_bulk_update_rolled_back",
                    shop=self.shop_domain,
                    failed_variant_id=variant_id,
                    failed_index=index,
                    rolled_back=applied,
                    error=str(e)
                )
                raise BulkUpdateRolledBackError(
                    f"Bulk update failed and rolled back: {e}",
                    failed_variant_id=variant_id,
                    rolled_back=applied,
                ) from e

        log.complete()
        logger.info("variant_bulk_update_complete", shop=self.shop_domain, updated=result.total_updated)
        return result

    def _variant_state(self, variant_id: str) -> dict[str, Any]:
        data = self.execute_query(VARIANT_STATE_QUERY, {"id": variant_id})
        node = (data.get("data") or {}).get("productVariant") or {}
        unit_cost = (node.get("inventoryItem") or {}).get("unitCost") or {}
        return {
            "price": node.get("price"),
            "compare_at_price": node.get("compareAtPrice"),
            "cost": unit_cost.get("amount"),
            "sku": node.get("sku"),
            "barcode": node.get("barcode"),
            "weight": node.get("weight"),
            "weight_unit": node.get("weightUnit"),
            "taxable": node.get("taxable"),
            "tax_code": node.get("taxCode"),
        }

    def _update_variant(self, update: dict, include_nulls: bool = False) -> dict:
        """
        Send one productVariantUpdate.

        None values are skipped unless include_nulls is set, in which case a
        key present with None clears that field.
        """
        variant_input: dict[str, Any] = {"id": update["id"]}
        for key, field in VARIANT_INPUT_FIELDS.items():
            value = update.get(key)
            if value is None:
                if include_nulls and key in update:
                    variant_input[field] = None
                continue
            if key in ("price", "compare_at_price", "cost"):
                value = str(value)
            elif key == "weight":
                value = float(value)
            elif key == "taxable":
                value = bool(value)
            variant_input[field] = value

        data = self.execute_query(VARIANT_UPDATE_MUTATION, {"input": variant_input})
        payload = (data.get("data") or {}).get("productVariantUpdate") or {}
        user_errors = payload.get("userErrors") or []
        if user_errors:
            raise CatalogUserError(f"Variant update errors: {_user_error_message(user_errors)}", user_errors)
        variant = payload.get("productVariant")
        if not variant:
            raise UpstreamApiError("shopify", "Variant update failed: no variant returned")
        return variant
