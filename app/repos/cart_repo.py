# app/repos/cart_repo.py
from datetime import datetime, timezone
from typing import List

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.data.models.cart import CartModel
from app.data.models.cart_item import CartLineModel
from app.data.models.user import UserModel
from app.domain.errors import NotFound, StorageConflict
from app.domain.schemas import CartLine, ItemType
from app.domain.stores import CartStore
from app.repos.base import storage_errors
from app.utils.retry import storage_retry
from app.utils.logging import get_logger

logger = get_logger(__name__)


def _to_line(row: CartLineModel) -> CartLine:
    return CartLine(
        item_id=row.item_id,
        item_type=ItemType(row.item_type),
        quantity=row.quantity,
        unit_price=row.unit_price,
        display_name=row.display_name,
        image_ref=row.image_ref,
    )


class CartRepo(CartStore):
    """
    Koszyki w SQL.
    Kazdy zapis podbija cart.version warunkowo (optimistic locking);
    0 zmienionych wierszy = ktos nas wyprzedzil -> StorageConflict.
    """

    def __init__(self, db: Session):
        self.db = db

    def _get_cart(self, user_id: int, create: bool = False) -> CartModel | None:
        if self.db.get(UserModel, user_id) is None:
            raise NotFound(f"User {user_id} not found")

        cart = self.db.execute(
            select(CartModel)
            .where(CartModel.user_id == user_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if cart is None and create:
            cart = CartModel(user_id=user_id, version=1)
            self.db.add(cart)
            self.db.flush()
        return cart

    def _get_lines(self, cart_id: int) -> List[CartLineModel]:
        return list(
            self.db.execute(
                select(CartLineModel)
                .where(CartLineModel.cart_id == cart_id)
                .order_by(CartLineModel.position)
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def _bump_version(self, cart: CartModel) -> None:
        # np UPDATE carts SET version = 3 WHERE id = 1 AND version = 2
        rowcount = self.db.execute(
            update(CartModel)
            .where(CartModel.id == cart.id, CartModel.version == cart.version)
            .values(version=cart.version + 1, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        ).rowcount

        if rowcount == 0:
            raise StorageConflict(f"Cart {cart.id} was modified by another operation")

    # =====================================================
    # QUERY
    # =====================================================
    @storage_retry()
    def get(self, user_id: int) -> List[CartLine]:
        with storage_errors(self.db, "cart get"):
            cart = self._get_cart(user_id)
            lines = [] if cart is None else [_to_line(r) for r in self._get_lines(cart.id)]
            self.db.commit()
        return lines

    @storage_retry()
    def user_ids_with_items(self) -> List[int]:
        with storage_errors(self.db, "cart owners"):
            ids = list(
                self.db.execute(
                    select(CartModel.user_id)
                    .join(CartLineModel, CartLineModel.cart_id == CartModel.id)
                    .distinct()
                    .order_by(CartModel.user_id)
                ).scalars()
            )
            self.db.commit()
        return ids

    # =====================================================
    # COMMANDS
    # =====================================================
    @storage_retry()
    def replace(self, user_id: int, items: List[CartLine]) -> None:
        with storage_errors(self.db, "cart replace"):
            cart = self._get_cart(user_id, create=True)

            for row in self._get_lines(cart.id):
                self.db.delete(row)
            self.db.flush()

            for position, line in enumerate(items):
                self.db.add(
                    CartLineModel(
                        cart_id=cart.id,
                        item_id=line.item_id,
                        item_type=ItemType(line.item_type).value,
                        quantity=line.quantity,
                        unit_price=line.unit_price,
                        display_name=line.display_name,
                        image_ref=line.image_ref,
                        position=position,
                    )
                )

            self._bump_version(cart)
            self.db.commit()

        logger.info(f"Cart of user {user_id} replaced with {len(items)} line(s)")

    @storage_retry()
    def upsert_line(self, user_id: int, line: CartLine) -> None:
        item_type = ItemType(line.item_type).value
        with storage_errors(self.db, "cart upsert"):
            cart = self._get_cart(user_id, create=True)

            existing = self.db.execute(
                select(CartLineModel)
                .where(
                    CartLineModel.cart_id == cart.id,
                    CartLineModel.item_id == line.item_id,
                    CartLineModel.item_type == item_type,
                )
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()

            if existing:
                existing.quantity = line.quantity
                existing.unit_price = line.unit_price
                existing.display_name = line.display_name
                existing.image_ref = line.image_ref
            else:
                next_position = self.db.execute(
                    select(func.coalesce(func.max(CartLineModel.position) + 1, 0))
                    .where(CartLineModel.cart_id == cart.id)
                ).scalar_one()
                self.db.add(
                    CartLineModel(
                        cart_id=cart.id,
                        item_id=line.item_id,
                        item_type=item_type,
                        quantity=line.quantity,
                        unit_price=line.unit_price,
                        display_name=line.display_name,
                        image_ref=line.image_ref,
                        position=next_position,
                    )
                )

            self.db.flush()
            self._bump_version(cart)
            self.db.commit()

    @storage_retry()
    def remove_line(self, user_id: int, item_id: str, item_type: ItemType) -> None:
        with storage_errors(self.db, "cart remove"):
            cart = self._get_cart(user_id)
            if cart is None:
                self.db.commit()
                return

            row = self.db.execute(
                select(CartLineModel).where(
                    CartLineModel.cart_id == cart.id,
                    CartLineModel.item_id == item_id,
                    CartLineModel.item_type == ItemType(item_type).value,
                )
            ).scalar_one_or_none()
            if row is not None:
                self.db.delete(row)
                self.db.flush()

            self._bump_version(cart)
            self.db.commit()
