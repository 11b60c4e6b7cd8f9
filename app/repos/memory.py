# app/repos/memory.py
"""Magazyn i koszyki w pamieci procesu (testy, lokalne uruchomienia)."""

import threading
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Tuple

from app.domain.errors import NotFound
from app.domain.schemas import CartLine, InventoryRecord, ItemType
from app.domain.stores import CartStore, StockAdminStore


class InMemoryInventoryStore(StockAdminStore):
    def __init__(self):
        self._records: Dict[Tuple[str, ItemType], InventoryRecord] = {}
        self._lock = threading.Lock()

    def _key(self, item_id: str, item_type) -> Tuple[str, ItemType]:
        return item_id, ItemType(item_type)

    def _require(self, key) -> InventoryRecord:
        record = self._records.get(key)
        if record is None:
            raise NotFound(f"{key[1].value.capitalize()} {key[0]} not found")
        return record

    def add(self, item_id: str, item_type: ItemType, name: str, price=Decimal("0.00"), stock: int = 0) -> InventoryRecord:
        record = InventoryRecord(
            item_id=item_id,
            item_type=ItemType(item_type),
            name=name,
            price=Decimal(str(price)),
            stock=stock,
        )
        with self._lock:
            self._records[self._key(item_id, item_type)] = record
        return record.model_copy()

    def get(self, item_id: str, item_type: ItemType) -> InventoryRecord:
        with self._lock:
            return self._require(self._key(item_id, item_type)).model_copy()

    def try_reserve(self, item_id: str, item_type: ItemType, quantity: int) -> bool:
        with self._lock:
            record = self._records.get(self._key(item_id, item_type))
            if record is None or record.stock < quantity:
                return False
            record.stock -= quantity
            return True

    def release(self, item_id: str, item_type: ItemType, quantity: int) -> None:
        with self._lock:
            self._require(self._key(item_id, item_type)).stock += quantity

    def restock(self, item_id: str, item_type: ItemType, quantity: int) -> InventoryRecord:
        with self._lock:
            record = self._require(self._key(item_id, item_type))
            record.stock += quantity
            record.last_restocked = datetime.now(timezone.utc)
            return record.model_copy()

    def set_stock(self, item_id: str, item_type: ItemType, stock: int) -> InventoryRecord:
        with self._lock:
            record = self._require(self._key(item_id, item_type))
            record.stock = stock
            return record.model_copy()


class InMemoryCartStore(CartStore):
    """Koszyk tworzony przy pierwszym zapisie; nieznany user = pusty koszyk."""

    def __init__(self):
        self._carts: Dict[int, List[CartLine]] = {}
        self._lock = threading.Lock()

    def get(self, user_id: int) -> List[CartLine]:
        with self._lock:
            return [line.model_copy() for line in self._carts.get(user_id, [])]

    def replace(self, user_id: int, items: List[CartLine]) -> None:
        with self._lock:
            self._carts[user_id] = [line.model_copy() for line in items]

    def upsert_line(self, user_id: int, line: CartLine) -> None:
        with self._lock:
            lines = self._carts.setdefault(user_id, [])
            for index, existing in enumerate(lines):
                if existing.key == line.key:
                    lines[index] = line.model_copy()
                    return
            lines.append(line.model_copy())

    def remove_line(self, user_id: int, item_id: str, item_type: ItemType) -> None:
        key = (item_id, ItemType(item_type))
        with self._lock:
            lines = self._carts.get(user_id, [])
            self._carts[user_id] = [line for line in lines if line.key != key]

    def user_ids_with_items(self) -> List[int]:
        with self._lock:
            return sorted(user_id for user_id, lines in self._carts.items() if lines)
