"""
Inventory Records
=================
Stock records per user. The planning workflow only reads them; restock and
consumption happen through these helpers outside the pipeline.
"""

import logging
from typing import Optional

from services.database import plain_row

logger = logging.getLogger(__name__)


class InventoryService:
    """Inventory item access for one database."""

    def __init__(self, db):
        self.db = db

    async def list_items(self, user_id: str) -> list[dict]:
        rows = await self.db.fetch_all(
            "SELECT * FROM inventory_items WHERE user_id = %s ORDER BY name",
            (user_id,),
        )
        return [plain_row(row) for row in rows]

    async def get_item(self, user_id: str, item_id: str) -> Optional[dict]:
        row = await self.db.fetch_one(
            "SELECT * FROM inventory_items WHERE id = %s AND user_id = %s",
            (item_id, user_id),
        )
        return plain_row(row)

    async def create_item(self, user_id: str, item: dict) -> dict:
        row = await self.db.execute_returning(
            """
            INSERT INTO inventory_items
                (user_id, name, description, quantity, unit, category,
                 supplier, min_quantity, cost_per_unit)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                user_id,
                item["name"],
                item.get("description"),
                item.get("quantity", 0),
                item.get("unit", "each"),
                item.get("category"),
                item.get("supplier"),
                item.get("min_quantity", 0),
                item.get("cost_per_unit"),
            ),
        )
        return plain_row(row)

    async def update_quantity(self, user_id: str, item_id: str, quantity: int) -> Optional[dict]:
        if quantity < 0:
            raise ValueError("Inventory quantity cannot be negative")
        row = await self.db.execute_returning(
            """
            UPDATE inventory_items
               SET quantity = %s,
                   status = CASE WHEN %s = 0 THEN 'out_of_stock'
                                 WHEN %s <= min_quantity THEN 'low_stock'
                                 ELSE 'available' END,
                   updated_at = now()
             WHERE id = %s AND user_id = %s
            RETURNING *
            """,
            (quantity, quantity, quantity, item_id, user_id),
        )
        if row:
            logger.info(f"Inventory item {item_id} set to {quantity}")
        return plain_row(row)

    async def get_low_stock_items(self, user_id: str, threshold: int) -> list[dict]:
        rows = await self.db.fetch_all(
            """
            SELECT * FROM inventory_items
            WHERE user_id = %s AND quantity <= %s
            ORDER BY quantity, name
            """,
            (user_id, threshold),
        )
        return [plain_row(row) for row in rows]
