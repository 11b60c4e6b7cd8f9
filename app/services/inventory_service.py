# app/services/inventory_service.py
from sqlalchemy.orm import Session

from app.domain.errors import InvalidQuantity
from app.domain.schemas import InventoryOut, InventoryRecord, ItemType
from app.domain.stores import StockAdminStore
from app.repos.inventory_repo import InventoryRepo
from app.utils.logging import get_logger

logger = get_logger(__name__)


def _to_out(record: InventoryRecord) -> InventoryOut:
    return InventoryOut(
        item_id=record.item_id,
        item_type=record.item_type,
        name=record.name,
        price=record.price,
        stock=record.stock,
        stock_status=record.stock_status,
        last_restocked=record.last_restocked,
    )


class InventoryService:
    """
    Stany magazynowe od strony katalogu/admina.
    Dostawa (restock) to atomowy inkrement, nie ruszamy rezerwacji w koszykach.
    """

    def __init__(self, store: StockAdminStore):
        self.store = store

    def get_record(self, item_id: str, item_type: ItemType) -> InventoryOut:
        return _to_out(self.store.get(item_id, item_type))

    def restock(self, item_id: str, item_type: ItemType, quantity: int) -> InventoryOut:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise InvalidQuantity(quantity)

        record = self.store.restock(item_id, item_type, quantity)
        logger.info(f"[STOCK] Restocked {quantity} of {record.name}, stock now {record.stock}")
        return _to_out(record)

    def set_stock(self, item_id: str, item_type: ItemType, stock: int) -> InventoryOut:
        """Reczna korekta stanu; nadpisuje licznik bez wzgledu na rezerwacje."""
        if isinstance(stock, bool) or not isinstance(stock, int) or stock < 0:
            raise InvalidQuantity(stock, minimum=0)

        record = self.store.set_stock(item_id, item_type, stock)
        logger.info(f"[STOCK] Stock of {record.name} set to {stock}")
        return _to_out(record)


def build_inventory_service(db: Session) -> InventoryService:
    return InventoryService(InventoryRepo(db))
