import logging
import time
from datetime import date
from typing import Any, Optional

import requests

from . import settings
from .errors import PlatformError
from .schemas import PlatformVariant
from .sources import VariantPlatform
from .utils import strip_gid

logger = logging.getLogger(__name__)

PAGE_PAUSE_SECONDS = 0.5

LOCATIONS_QUERY = """
query($cursor: String) {
  locations(first: 50, after: $cursor) {
    pageInfo { hasNextPage endCursor }
    nodes { id name isActive }
  }
}
"""

PRODUCTS_QUERY = """
query($cursor: String) {
  products(first: 100, after: $cursor, query: "status:active") {
    pageInfo { hasNextPage endCursor }
    nodes {
      title
      tags
      variants(first: 100) {
        nodes { id sku title inventoryItem { id } }
      }
    }
  }
}
"""

INVENTORY_LEVELS_QUERY = """
query($locationId: ID!, $cursor: String) {
  location(id: $locationId) {
    inventoryLevels(first: 250, after: $cursor) {
      pageInfo { hasNextPage endCursor }
      nodes {
        item { id }
        quantities(names: ["available", "on_hand", "committed", "incoming"]) { name quantity }
      }
    }
  }
}
"""

VARIANTS_BY_SKU_QUERY = """
query($query: String!) {
  productVariants(first: 20, query: $query) {
    nodes { id sku title inventoryItem { id } }
  }
}
"""

AVAILABLE_QUERY = """
query($ids: [ID!]!, $locationId: ID!) {
  nodes(ids: $ids) {
    ... on InventoryItem {
      id
      inventoryLevel(locationId: $locationId) {
        quantities(names: ["available"]) { name quantity }
      }
    }
  }
}
"""

ADJUST_MUTATION = """
mutation inventoryAdjustQuantities($input: InventoryAdjustQuantitiesInput!) {
  inventoryAdjustQuantities(input: $input) {
    userErrors { field message }
    inventoryAdjustmentGroup { reason changes { name delta } }
  }
}
"""

SHOPIFYQL_QUERY = """
query($shopifyQl: String!) {
  shopifyqlQuery(query: $shopifyQl) {
    parseErrors
    tableData { rows }
  }
}
"""


def _gid(kind: str, value: str) -> str:
    value = str(value)
    return value if value.startswith("gid://") else f"gid://shopify/{kind}/{value}"


def _quantities(node: dict) -> dict[str, int]:
    return {q["name"]: int(q.get("quantity") or 0) for q in node.get("quantities") or []}


class ShopifyClient(VariantPlatform):
    """Thin GraphQL Admin API client for the calls the planner makes."""

    def __init__(
        self,
        shop: Optional[str] = None,
        access_token: Optional[str] = None,
        api_version: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 30,
    ):
        shop = shop or settings.SHOPIFY_SHOP_DOMAIN
        access_token = access_token or settings.SHOPIFY_ACCESS_TOKEN
        if not shop or not access_token:
            raise PlatformError("Missing Shopify credentials (SHOPIFY_SHOP_DOMAIN / SHOPIFY_ACCESS_TOKEN)")

        api_version = api_version or settings.SHOPIFY_API_VERSION
        self.graphql_url = f"https://{shop}/admin/api/{api_version}/graphql.json"
        self.analytics_url = f"https://{shop}/admin/api/unstable/graphql.json"
        self.session = session or requests.Session()
        self.session.headers.update(
            {"X-Shopify-Access-Token": access_token, "Content-Type": "application/json"}
        )
        self.timeout = timeout

    # --- Transport ---

    def execute(self, query: str, variables: Optional[dict] = None, url: Optional[str] = None) -> dict:
        try:
            response = self.session.post(
                url or self.graphql_url,
                json={"query": query, "variables": variables or {}},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except requests.exceptions.RequestException as e:
            raise PlatformError(f"Shopify request failed: {e}") from e
        except ValueError as e:
            raise PlatformError(f"Shopify returned invalid JSON: {e}") from e

        if payload.get("errors"):
            raise PlatformError("GraphQL errors", details=payload["errors"])
        return payload.get("data") or {}

    def _paginate(self, query: str, path: list[str], variables: Optional[dict] = None):
        """Yields nodes from a cursor-paginated connection found at `path` in the response."""
        cursor = None
        while True:
            data = self.execute(query, {**(variables or {}), "cursor": cursor})
            connection: Any = data
            for key in path:
                connection = (connection or {}).get(key)
            if not connection:
                return

            yield from connection.get("nodes", [])

            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                return
            cursor = page_info.get("endCursor")
            time.sleep(PAGE_PAUSE_SECONDS)

    # --- Snapshot ---

    def fetch_locations(self) -> list[dict]:
        logger.info("📡 Fetching locations...")
        return [
            {"id": strip_gid(node["id"]), "name": node["name"], "active": node.get("isActive", True)}
            for node in self._paginate(LOCATIONS_QUERY, ["locations"])
        ]

    def fetch_products(self) -> list[dict]:
        logger.info("📡 Fetching products...")
        products = []
        for node in self._paginate(PRODUCTS_QUERY, ["products"]):
            products.append(
                {
                    "title": node.get("title", ""),
                    "tags": node.get("tags") or [],
                    "variants": [
                        {
                            "sku": variant.get("sku"),
                            "title": variant.get("title", ""),
                            "inventory_item_id": strip_gid((variant.get("inventoryItem") or {}).get("id")),
                        }
                        for variant in (node.get("variants") or {}).get("nodes", [])
                    ],
                }
            )
        return products

    def fetch_inventory_levels(self, location_id: str) -> list[dict]:
        levels = []
        for node in self._paginate(
            INVENTORY_LEVELS_QUERY,
            ["location", "inventoryLevels"],
            {"locationId": _gid("Location", location_id)},
        ):
            quantities = _quantities(node)
            levels.append(
                {
                    "inventory_item_id": strip_gid(node["item"]["id"]),
                    "available": quantities.get("available", 0),
                    "on_hand": quantities.get("on_hand", 0),
                    "committed": quantities.get("committed", 0),
                    "incoming": quantities.get("incoming", 0),
                }
            )
        logger.info(f"  > Location {location_id}: {len(levels)} inventory levels")
        return levels

    # --- Velocity ---

    def fetch_sales_by_sku(self, since: date, until: date) -> list[dict]:
        """Net units sold per SKU between two dates, both inclusive."""
        shopify_ql = (
            "FROM sales SHOW product_variant_sku, product_title, net_items_sold "
            "GROUP BY product_variant_sku, product_title "
            f"SINCE {since.isoformat()} UNTIL {until.isoformat()} "
            "ORDER BY net_items_sold DESC"
        )
        data = self.execute(SHOPIFYQL_QUERY, {"shopifyQl": shopify_ql}, url=self.analytics_url)
        result = data.get("shopifyqlQuery") or {}
        if result.get("parseErrors"):
            raise PlatformError("ShopifyQL parse errors", details=result["parseErrors"])

        rows = (result.get("tableData") or {}).get("rows") or []
        return [
            {
                "sku": row.get("product_variant_sku") or "",
                "product_name": row.get("product_title") or "",
                "quantity": int(float(row.get("net_items_sold") or 0)),
            }
            for row in rows
        ]

    # --- Rebalancing ---

    def find_variants(self, sku: str) -> list[PlatformVariant]:
        data = self.execute(VARIANTS_BY_SKU_QUERY, {"query": f"sku:{sku}"})
        nodes = (data.get("productVariants") or {}).get("nodes", [])
        return [
            PlatformVariant(
                variant_id=strip_gid(node["id"]),
                sku=node.get("sku") or "",
                title=node.get("title") or "",
                inventory_item_id=strip_gid((node.get("inventoryItem") or {}).get("id")),
            )
            for node in nodes
            # The search is fuzzy, keep exact SKU matches only.
            if (node.get("sku") or "") == sku
        ]

    def fetch_available(self, location_id: str, inventory_item_ids: list[str]) -> dict[str, int]:
        data = self.execute(
            AVAILABLE_QUERY,
            {
                "ids": [_gid("InventoryItem", i) for i in inventory_item_ids],
                "locationId": _gid("Location", location_id),
            },
        )
        available = {}
        for node in data.get("nodes") or []:
            if not node:
                continue
            level = node.get("inventoryLevel") or {}
            available[strip_gid(node["id"])] = _quantities(level).get("available", 0)
        return available

    def adjust_quantities(self, location_id: str, changes: list[tuple[str, int]], reference: str) -> None:
        variables = {
            "input": {
                "name": "available",
                "reason": "correction",
                "referenceDocumentUri": f"app://stock-planner/rebalance/{reference}",
                "changes": [
                    {
                        "inventoryItemId": _gid("InventoryItem", item_id),
                        "locationId": _gid("Location", location_id),
                        "delta": delta,
                    }
                    for item_id, delta in changes
                ],
            }
        }
        data = self.execute(ADJUST_MUTATION, variables)
        user_errors = (data.get("inventoryAdjustQuantities") or {}).get("userErrors") or []
        if user_errors:
            messages = ", ".join(
                f"{'.'.join(e.get('field') or [])}: {e.get('message')}" if e.get("field") else e.get("message", "")
                for e in user_errors
            )
            raise PlatformError(f"Adjustment rejected: {messages}", details=user_errors)
