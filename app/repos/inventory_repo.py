# app/repos/inventory_repo.py
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.data.models.product import ComboModel, ProductModel
from app.domain.errors import NotFound
from app.domain.schemas import InventoryRecord, ItemType
from app.domain.stores import StockAdminStore
from app.repos.base import storage_errors
from app.utils.retry import storage_retry

_MODELS = {
    ItemType.PRODUCT: ProductModel,
    ItemType.COMBO: ComboModel,
}


def _model_for(item_type):
    return _MODELS[ItemType(item_type)]


class InventoryRepo(StockAdminStore):
    """
    Stany magazynowe w SQL.
    Kazda zmiana stanu to jeden warunkowy UPDATE (bez read-modify-write),
    wiec baza serializuje rownolegle rezerwacje tego samego produktu.
    """

    def __init__(self, db: Session):
        self.db = db

    def _to_record(self, row, item_type) -> InventoryRecord:
        return InventoryRecord(
            item_id=row.id,
            item_type=ItemType(item_type),
            name=row.name,
            price=row.price,
            stock=row.stock,
            last_restocked=row.last_restocked,
        )

    def _load(self, item_id: str, item_type):
        model = _model_for(item_type)
        row = self.db.execute(
            select(model)
            .where(model.id == item_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            raise NotFound(f"{ItemType(item_type).value.capitalize()} {item_id} not found")
        return row

    @storage_retry()
    def get(self, item_id: str, item_type: ItemType) -> InventoryRecord:
        with storage_errors(self.db, "inventory get"):
            record = self._to_record(self._load(item_id, item_type), item_type)
            self.db.commit()
        return record

    @storage_retry()
    def try_reserve(self, item_id: str, item_type: ItemType, quantity: int) -> bool:
        model = _model_for(item_type)
        with storage_errors(self.db, "inventory reserve"):
            # UPDATE ... SET stock = stock - q WHERE id = :id AND stock >= q
            result = self.db.execute(
                update(model)
                .where(model.id == item_id, model.stock >= quantity)
                .values(stock=model.stock - quantity)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        return result.rowcount == 1

    @storage_retry()
    def release(self, item_id: str, item_type: ItemType, quantity: int) -> None:
        model = _model_for(item_type)
        with storage_errors(self.db, "inventory release"):
            result = self.db.execute(
                update(model)
                .where(model.id == item_id)
                .values(stock=model.stock + quantity)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        if result.rowcount == 0:
            raise NotFound(f"{ItemType(item_type).value.capitalize()} {item_id} not found")

    @storage_retry()
    def restock(self, item_id: str, item_type: ItemType, quantity: int) -> InventoryRecord:
        model = _model_for(item_type)
        with storage_errors(self.db, "inventory restock"):
            result = self.db.execute(
                update(model)
                .where(model.id == item_id)
                .values(
                    stock=model.stock + quantity,
                    last_restocked=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        if result.rowcount == 0:
            raise NotFound(f"{ItemType(item_type).value.capitalize()} {item_id} not found")
        return self.get(item_id, item_type)

    @storage_retry()
    def set_stock(self, item_id: str, item_type: ItemType, stock: int) -> InventoryRecord:
        model = _model_for(item_type)
        with storage_errors(self.db, "inventory set stock"):
            result = self.db.execute(
                update(model)
                .where(model.id == item_id)
                .values(stock=stock)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        if result.rowcount == 0:
            raise NotFound(f"{ItemType(item_type).value.capitalize()} {item_id} not found")
        return self.get(item_id, item_type)

    def add(self, item_id: str, item_type: ItemType, name: str, price, stock: int) -> InventoryRecord:
        """Nowa pozycja katalogu (seed, testy)."""
        model = _model_for(item_type)
        with storage_errors(self.db, "inventory add"):
            self.db.add(model(id=item_id, name=name, price=price, stock=stock))
            self.db.commit()
        return self.get(item_id, item_type)
