#app/api/routers/carts.py
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.data.database import get_db
from app.domain.errors import CartError
from app.domain.schemas import (
    AddItemIn,
    CartLine,
    CartSummary,
    ItemType,
    MergeCartIn,
    ReplaceCartIn,
    UpdateQuantityIn,
)
from app.services.reconciler import build_reconciler

router = APIRouter(prefix="/cart", tags=["cart"])


def get_service(db: Session):
    return build_reconciler(db)


def to_http(e: CartError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.message)


@router.get("", response_model=List[CartLine])
def get_cart(
    user_id: int = Query(...),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.get_cart(user_id)
    except CartError as e:
        raise to_http(e)


@router.get("/summary", response_model=CartSummary)
def get_summary(
    user_id: int = Query(...),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.summarize(user_id)
    except CartError as e:
        raise to_http(e)


@router.post("/items", response_model=List[CartLine])
def add_item(
    payload: AddItemIn,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.add_item(
            user_id=user_id,
            item_id=payload.item_id,
            item_type=payload.item_type,
            quantity=payload.quantity,
            unit_price=payload.unit_price,
            display_name=payload.display_name,
            image_ref=payload.image_ref,
        )
    except CartError as e:
        raise to_http(e)


@router.put("/items/{item_type}/{item_id}", response_model=List[CartLine])
def update_quantity(
    item_type: ItemType,
    item_id: str,
    payload: UpdateQuantityIn,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.update_quantity(user_id, item_id, item_type, payload.quantity)
    except CartError as e:
        raise to_http(e)


@router.delete("/items/{item_type}/{item_id}", response_model=List[CartLine])
def remove_item(
    item_type: ItemType,
    item_id: str,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.remove_item(user_id, item_id, item_type)
    except CartError as e:
        raise to_http(e)


@router.put("", response_model=List[CartLine])
def replace_cart(
    payload: ReplaceCartIn,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.replace_cart(user_id, payload.items)
    except CartError as e:
        raise to_http(e)


@router.delete("", response_model=List[CartLine])
def clear_cart(
    user_id: int = Query(...),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.clear_cart(user_id)
    except CartError as e:
        raise to_http(e)


@router.post("/merge", response_model=List[CartLine])
def merge_guest_cart(
    payload: MergeCartIn,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
):
    """Wywolywane raz po zalogowaniu, z koszykiem sesji anonimowej."""
    svc = get_service(db)
    try:
        return svc.merge_guest_cart(user_id, payload.guest_items)
    except CartError as e:
        raise to_http(e)
