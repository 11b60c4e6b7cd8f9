# app/api/routers/inventory.py
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.data.database import get_db
from app.domain.errors import CartError
from app.domain.schemas import InventoryOut, ItemType, RestockIn, SetStockIn
from app.services.inventory_service import build_inventory_service

router = APIRouter(prefix="/inventory", tags=["inventory"])


def get_service(db: Session):
    return build_inventory_service(db)


@router.get("/{item_type}/{item_id}", response_model=InventoryOut)
def get_record(item_type: ItemType, item_id: str, db: Session = Depends(get_db)):
    svc = get_service(db)
    try:
        return svc.get_record(item_id, item_type)
    except CartError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{item_type}/{item_id}/restock", response_model=InventoryOut)
def restock(
    item_type: ItemType,
    item_id: str,
    payload: RestockIn,
    db: Session = Depends(get_db),
):
    """Dostawa towaru: stan += quantity."""
    svc = get_service(db)
    try:
        return svc.restock(item_id, item_type, payload.quantity)
    except CartError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch("/{item_type}/{item_id}/stock", response_model=InventoryOut)
def set_stock(
    item_type: ItemType,
    item_id: str,
    payload: SetStockIn,
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.set_stock(item_id, item_type, payload.stock)
    except CartError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
