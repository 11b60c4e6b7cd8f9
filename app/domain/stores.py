# app/domain/stores.py
"""Interfejsy persystencji, z ktorych korzysta rekoncyliator."""

from abc import ABC, abstractmethod
from typing import List

from app.domain.schemas import CartLine, InventoryRecord, ItemType


class InventoryStore(ABC):
    """
    Licznik stanu per produkt/combo.

    Stock is only ever changed through try_reserve and release, both of which
    must be a single atomic operation in the backing store.
    """

    @abstractmethod
    def get(self, item_id: str, item_type: ItemType) -> InventoryRecord:
        """Return the record or raise NotFound."""

    @abstractmethod
    def try_reserve(self, item_id: str, item_type: ItemType, quantity: int) -> bool:
        """Decrement stock by quantity iff stock >= quantity. False when absent."""

    @abstractmethod
    def release(self, item_id: str, item_type: ItemType, quantity: int) -> None:
        """Increment stock by quantity. Raise NotFound when absent."""


class StockAdminStore(InventoryStore):
    """Operacje administracyjne (dostawy, reczna korekta)."""

    @abstractmethod
    def restock(self, item_id: str, item_type: ItemType, quantity: int) -> InventoryRecord:
        ...

    @abstractmethod
    def set_stock(self, item_id: str, item_type: ItemType, stock: int) -> InventoryRecord:
        ...


class CartStore(ABC):
    """Koszyk jednego uzytkownika, lista pozycji w kolejnosci dodania."""

    @abstractmethod
    def get(self, user_id: int) -> List[CartLine]:
        ...

    @abstractmethod
    def replace(self, user_id: int, items: List[CartLine]) -> None:
        ...

    @abstractmethod
    def upsert_line(self, user_id: int, line: CartLine) -> None:
        ...

    @abstractmethod
    def remove_line(self, user_id: int, item_id: str, item_type: ItemType) -> None:
        ...

    @abstractmethod
    def user_ids_with_items(self) -> List[int]:
        ...
