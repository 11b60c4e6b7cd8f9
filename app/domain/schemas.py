# app/domain/schemas.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Tuple

from pydantic import BaseModel, ConfigDict, Field

from app.utils.settings import LOW_STOCK_THRESHOLD


class ItemType(str, Enum):
    """Ktora kolekcja magazynowa trzyma licznik stanu."""

    PRODUCT = "product"
    COMBO = "combo"


class CartLine(BaseModel):
    """Pozycja koszyka; cena i nazwa zapamietane w chwili dodania."""

    item_id: str = Field(..., min_length=1)
    item_type: ItemType
    quantity: int = Field(..., ge=1)
    unit_price: Decimal = Field(..., ge=0)
    display_name: str = Field(..., min_length=1)
    image_ref: str | None = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def key(self) -> Tuple[str, ItemType]:
        return self.item_id, self.item_type


class CartSummary(BaseModel):
    total_items: int
    total_price: Decimal
    item_count: int


class InventoryRecord(BaseModel):
    item_id: str
    item_type: ItemType
    name: str
    price: Decimal = Decimal("0.00")
    stock: int = Field(..., ge=0)
    last_restocked: datetime | None = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def stock_status(self) -> str:
        if self.stock == 0:
            return "Out of Stock"
        if self.stock <= LOW_STOCK_THRESHOLD:
            return "Low Stock"
        return "In Stock"


# =====================================================
# HTTP IN/OUT
# =====================================================
class AddItemIn(BaseModel):
    """Schema dla dodawania pozycji do koszyka."""

    item_id: str = Field(..., min_length=1)
    item_type: ItemType
    quantity: int = Field(..., gt=0, description="Ilosc (musi byc > 0)")
    unit_price: Decimal = Field(..., ge=0)
    display_name: str = Field(..., min_length=1)
    image_ref: str | None = None


class UpdateQuantityIn(BaseModel):
    quantity: int = Field(..., gt=0, description="Nowa ilosc (musi byc > 0)")


class ReplaceCartIn(BaseModel):
    items: List[CartLine]


class MergeCartIn(BaseModel):
    guest_items: List[CartLine]


class RestockIn(BaseModel):
    quantity: int = Field(..., gt=0)


class SetStockIn(BaseModel):
    stock: int = Field(..., ge=0)


class InventoryOut(BaseModel):
    item_id: str
    item_type: ItemType
    name: str
    price: Decimal
    stock: int
    stock_status: str
    last_restocked: datetime | None = None
