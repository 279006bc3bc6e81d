"""
Supplier Catalogs
=================
SupplierCatalog is the seam between the inventory stage and a hardware
supplier's stock/pricing API.

check_availability(supplier, items, location)
    supplier: catalog key, lower case with underscores ("home_depot")
    items:    [{"item_name": str, "quantity_needed": int, "category": str}]
    location: {"latitude": float, "longitude": float, "radius_miles": float}

    returns {
      "supplier", "request_id", "timestamp", "success": bool,
      "stores": [{"store_id", "store_name", "address", "city", "state",
                  "zip_code", "coordinates": {"latitude", "longitude"},
                  "phone", "hours": {"open", "close"}, "distance_miles"}],
      "items": [{"item_name", "sku", "brand", "price", "stock_quantity",
                 "in_stock", "category", "description", "unit"}],
      "total_estimated_cost": float,
      "message": str,
    }
    Stores are nearest first, within the radius, at most SUPPLIER["max_stores"].
    Unknown suppliers return success False with no stores.

MockSupplierCatalog answers from fixed tables with seeded randomness.
"""

import logging
import random
import re
import uuid
from typing import Optional, Protocol

from config.settings import SUPPLIER
from services.errors import utc_now_iso
from tools.routing import haversine_km

logger = logging.getLogger(__name__)

KM_TO_MILES = 0.621371


class SupplierCatalog(Protocol):
    async def check_availability(
        self, supplier: str, items: list[dict], location: Optional[dict] = None
    ) -> dict: ...


def supplier_key(name: str) -> str:
    """'Home Depot' -> 'home_depot', "Lowe's" -> 'lowes'."""
    cleaned = re.sub(r"[^a-z0-9\s_]", "", name.lower()).strip()
    return re.sub(r"\s+", "_", cleaned)


# ============================================================
# Mock catalog data
# ============================================================

MOCK_STORES = {
    "home_depot": [
        {
            "store_id": "HD_SF_001", "store_name": "The Home Depot #4512",
            "address": "1965 Ocean Ave", "city": "San Francisco", "state": "CA", "zip_code": "94127",
            "coordinates": {"latitude": 37.7249, "longitude": -122.4564},
            "phone": "(415) 469-1142", "hours": {"open": "06:00", "close": "22:00"},
        },
        {
            "store_id": "HD_SF_002", "store_name": "The Home Depot #4518",
            "address": "2525 Bayshore Blvd", "city": "San Francisco", "state": "CA", "zip_code": "94134",
            "coordinates": {"latitude": 37.7403, "longitude": -122.3892},
            "phone": "(415) 468-1142", "hours": {"open": "06:00", "close": "22:00"},
        },
    ],
    "lowes": [
        {
            "store_id": "LWS_SF_001", "store_name": "Lowe's Home Improvement #2584",
            "address": "1200 Harrison St", "city": "San Francisco", "state": "CA", "zip_code": "94103",
            "coordinates": {"latitude": 37.7749, "longitude": -122.4114},
            "phone": "(415) 864-3500", "hours": {"open": "06:00", "close": "21:00"},
        },
    ],
    "grainger": [
        {
            "store_id": "GR_SF_001", "store_name": "Grainger Branch #9A549",
            "address": "1230 Howard St", "city": "San Francisco", "state": "CA", "zip_code": "94103",
            "coordinates": {"latitude": 37.7752, "longitude": -122.4131},
            "phone": "(415) 575-0400", "hours": {"open": "07:00", "close": "17:00"},
        },
    ],
    "ferguson": [
        {
            "store_id": "FG_SF_001", "store_name": "Ferguson Plumbing Supply",
            "address": "2001 Jerrold Ave", "city": "San Francisco", "state": "CA", "zip_code": "94124",
            "coordinates": {"latitude": 37.7446, "longitude": -122.3937},
            "phone": "(415) 648-8300", "hours": {"open": "07:00", "close": "16:30"},
        },
    ],
}

MOCK_CATALOG = {
    "pipe_fitting": {"brands": ["Nibco", "Mueller", "Charlotte"], "base_price": 3.50, "stock": (15, 45), "category": "plumbing"},
    "pipe_sealant": {"brands": ["Oatey", "Rectorseal", "Hercules"], "base_price": 8.99, "stock": (5, 20), "category": "plumbing"},
    "pipe_wrench": {"brands": ["Ridgid", "Husky", "Milwaukee"], "base_price": 24.99, "stock": (3, 12), "category": "tools"},
    "pvc_pipe": {"brands": ["Charlotte", "JM Eagle"], "base_price": 6.49, "stock": (20, 80), "category": "plumbing"},
    "ball_valve": {"brands": ["Apollo", "SharkBite", "ProLine"], "base_price": 15.99, "stock": (8, 25), "category": "plumbing"},
    "electrical_outlet": {"brands": ["Leviton", "Pass & Seymour", "Hubbell"], "base_price": 2.89, "stock": (25, 75), "category": "electrical"},
    "wire_nuts": {"brands": ["Ideal", "3M", "Buchanan"], "base_price": 12.99, "stock": (10, 30), "category": "electrical"},
    "air_filter": {"brands": ["Filtrete", "Honeywell", "Nordic Pure"], "base_price": 11.99, "stock": (10, 40), "category": "hvac"},
}

# Checked in order; first keyword contained in the item name wins
KEYWORD_TO_ITEM = [
    ("sealant", "pipe_sealant"),
    ("wrench", "pipe_wrench"),
    ("pvc", "pvc_pipe"),
    ("valve", "ball_valve"),
    ("fitting", "pipe_fitting"),
    ("outlet", "electrical_outlet"),
    ("wire", "wire_nuts"),
    ("filter", "air_filter"),
    ("pipe", "pipe_fitting"),
    ("plumbing", "pipe_fitting"),
    ("electrical", "electrical_outlet"),
]

SKU_PREFIXES = {"home_depot": "HD", "lowes": "LW", "grainger": "GR", "ferguson": "FG"}
GENERIC_BRANDS = ["Generic", "ProTech", "BuildMaster"]


def find_catalog_key(item_name: str) -> Optional[str]:
    normalized = re.sub(r"[^a-z0-9]", "", item_name.lower())
    if item_name.lower().replace(" ", "_") in MOCK_CATALOG:
        return item_name.lower().replace(" ", "_")
    for keyword, key in KEYWORD_TO_ITEM:
        if keyword in normalized:
            return key
    return None


class MockSupplierCatalog:
    """Stand-in supplier API backed by MOCK_STORES and MOCK_CATALOG."""

    def __init__(self, seed: Optional[int] = None):
        self._random = random.Random(seed)

    def _sku(self, supplier: str, key: str) -> str:
        prefix = SKU_PREFIXES.get(supplier, "GN")
        return f"{prefix}-{key[:4].upper().ljust(4, '0')}-{self._random.randint(0, 9999):04d}"

    def _quote(self, supplier: str, item: dict) -> dict:
        name = item["item_name"]
        key = find_catalog_key(name)
        entry = MOCK_CATALOG.get(key) if key else None

        if entry is None:
            brand = self._random.choice(GENERIC_BRANDS)
            price = 5.99 + self._random.random() * 45
            stock = self._random.randint(0, 19)
            category = item.get("category") or "general"
            key = "generic"
        else:
            brand = self._random.choice(entry["brands"])
            price = entry["base_price"] * (0.8 + self._random.random() * 0.4)
            stock = self._random.randint(*entry["stock"])
            category = entry["category"]

        return {
            "item_name": name,
            "sku": self._sku(supplier, key),
            "brand": brand,
            "price": round(price, 2),
            "stock_quantity": stock,
            "in_stock": stock > 0,
            "category": category,
            "description": f"{brand} {name}",
            "unit": item.get("unit") or "each",
        }

    async def check_availability(
        self, supplier: str, items: list[dict], location: Optional[dict] = None
    ) -> dict:
        response = {
            "supplier": supplier,
            "request_id": f"mock_{uuid.uuid4().hex[:12]}",
            "timestamp": utc_now_iso(),
            "success": False,
            "stores": [],
            "items": [],
            "total_estimated_cost": 0.0,
            "message": "",
        }

        stores = MOCK_STORES.get(supplier)
        if stores is None:
            response["message"] = f"Supplier '{supplier}' not supported in mock catalog"
            logger.warning(response["message"])
            return response

        location = location or {
            "latitude": SUPPLIER["search_latitude"],
            "longitude": SUPPLIER["search_longitude"],
            "radius_miles": SUPPLIER["radius_miles"],
        }
        radius = location.get("radius_miles", SUPPLIER["radius_miles"])

        nearby = []
        for store in stores:
            miles = haversine_km(
                location["latitude"], location["longitude"],
                store["coordinates"]["latitude"], store["coordinates"]["longitude"],
            ) * KM_TO_MILES
            if miles <= radius:
                nearby.append({**store, "distance_miles": round(miles, 2)})
        nearby.sort(key=lambda s: s["distance_miles"])

        quotes = [self._quote(supplier, item) for item in items]
        quantities = {item["item_name"]: item.get("quantity_needed", 1) for item in items}
        total = sum(q["price"] * quantities.get(q["item_name"], 1) for q in quotes)
        in_stock = sum(1 for q in quotes if q["in_stock"])

        response.update({
            "success": True,
            "stores": nearby[: SUPPLIER["max_stores"]],
            "items": quotes,
            "total_estimated_cost": round(total, 2),
            "message": f"Found {in_stock}/{len(items)} items in stock",
        })
        logger.info(f"Mock supplier {supplier}: {response['message']} at {len(response['stores'])} store(s)")
        return response
