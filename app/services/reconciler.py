# app/services/reconciler.py
import time
from contextlib import contextmanager
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Tuple

from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.domain.errors import (
    InsufficientStock,
    InvalidLineItem,
    InvalidQuantity,
    ItemNotInCart,
    NotFound,
    StorageTimeout,
)
from app.domain.schemas import CartLine, CartSummary, ItemType
from app.domain.stores import CartStore, InventoryStore
from app.repos.cart_repo import CartRepo
from app.repos.inventory_repo import InventoryRepo
from app.services.lock_service import get_lock_service
from app.utils.settings import OPERATION_TIMEOUT_SECONDS
from app.utils.logging import get_logger

logger = get_logger(__name__)

LineKey = Tuple[str, ItemType]

# ile razy probujemy "zabrac co zostalo" przy tolerancyjnej rezerwacji
_CLAMP_ATTEMPTS = 3


def _check_quantity(quantity) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidQuantity(quantity)


def _key(item_id: str, item_type) -> LineKey:
    try:
        return item_id, ItemType(item_type)
    except ValueError as e:
        raise InvalidLineItem(f"Unknown item type {item_type!r}") from e


def _label(item_id: str, item_type) -> str:
    return f"{ItemType(item_type).value}:{item_id}"


def _index(lines: Iterable[CartLine]) -> Dict[LineKey, CartLine]:
    return {line.key: line for line in lines}


def _coalesce(lines: Iterable[CartLine]) -> Dict[LineKey, CartLine]:
    """Jedna pozycja na klucz; duplikaty sumujemy (pierwsza wygrywa cene i nazwe)."""
    merged: Dict[LineKey, CartLine] = {}
    for line in lines:
        existing = merged.get(line.key)
        if existing is None:
            merged[line.key] = line.model_copy()
        else:
            merged[line.key] = existing.model_copy(update={"quantity": existing.quantity + line.quantity})
    return merged


class CartStockReconciler:
    """
    Jedyne miejsce, ktore przesuwa ilosci miedzy "zarezerwowane w koszyku"
    a "dostepne na magazynie".

    Kazda komenda ma ten sam ksztalt: lock uzytkownika, odczyt koszyka,
    zmiany stanu przez adjust_stock, na koniec zapis koszyka. Jesli zapis
    koszyka padnie, juz wykonane zmiany stanu sa cofane zanim blad poleci dalej.
    Cala komenda (czekanie na lock + praca) miesci sie w self.timeout,
    po przekroczeniu leci StorageTimeout.

    commands: add_item, update_quantity, remove_item, replace_cart,
    clear_cart, merge_guest_cart
    queries: get_cart, summarize
    """

    def __init__(
        self,
        cart_store: CartStore,
        inventory_store: InventoryStore,
        lock_service,
        timeout: float = OPERATION_TIMEOUT_SECONDS,
    ):
        self.carts = cart_store
        self.inventory = inventory_store
        self.lock_service = lock_service
        self.timeout = timeout

    # =====================================================
    # STOCK
    # =====================================================
    def adjust_stock(self, item_id: str, item_type: ItemType, delta: int, strict: bool = True) -> int:
        """
        Move ``delta`` units between available stock and a cart.

        Positive delta reserves, negative delta releases. Returns the number
        of units actually moved (negative for releases).

        strict=True raises NotFound / InsufficientStock. strict=False is the
        bulk sync/merge policy: a missing record or a shortfall is logged as
        a warning, whatever stock is left is reserved (stock stops at 0), and
        the caller keeps the full quantity in the cart anyway (oversell).
        """
        if delta == 0:
            return 0
        label = _label(item_id, item_type)

        if delta < 0:
            try:
                self.inventory.release(item_id, item_type, -delta)
            except NotFound:
                logger.warning(
                    f"[STOCK] Cannot release {-delta} of {label}, record no longer exists"
                )
                return 0
            logger.info(f"[STOCK] Released {-delta} of {label}")
            return delta

        if self.inventory.try_reserve(item_id, item_type, delta):
            logger.info(f"[STOCK] Reserved {delta} of {label}")
            return delta

        try:
            record = self.inventory.get(item_id, item_type)
        except NotFound:
            if strict:
                raise
            logger.warning(f"[STOCK] {label} not in inventory, keeping it in cart unreserved")
            return 0

        if strict:
            logger.info(
                f"[STOCK] Reservation of {delta} {label} refused, only {record.stock} left"
            )
            raise InsufficientStock(item_id, ItemType(item_type).value, delta, record.stock)

        reserved = self._reserve_remaining(item_id, item_type)
        logger.warning(
            f"[STOCK] Insufficient stock for {record.name} ({label}): "
            f"requested {delta}, reserved {reserved}, keeping requested quantity in cart"
        )
        return reserved

    def _reserve_remaining(self, item_id: str, item_type: ItemType) -> int:
        # bierzemy caly pozostaly stan, ale nadal przez warunkowe try_reserve
        for _ in range(_CLAMP_ATTEMPTS):
            try:
                available = self.inventory.get(item_id, item_type).stock
            except NotFound:
                # rekord zniknal miedzy odczytami
                logger.warning(f"[STOCK] {_label(item_id, item_type)} removed from inventory during reservation")
                return 0
            if available <= 0:
                return 0
            if self.inventory.try_reserve(item_id, item_type, available):
                return available
        return 0

    def _undo(self, applied: List[Tuple[LineKey, int]]) -> None:
        for (item_id, item_type), moved in reversed(applied):
            try:
                if moved > 0:
                    self.adjust_stock(item_id, item_type, -moved)
                elif moved < 0:
                    self.adjust_stock(item_id, item_type, -moved, strict=False)
            except Exception as e:
                logger.error(f"[STOCK] Compensation failed for {_label(item_id, item_type)} ({moved}): {e}")

    @contextmanager
    def _operation(self, user_id: int):
        # budzet liczony od wejscia, czekanie na lock tez sie wlicza
        deadline = time.monotonic() + self.timeout
        with self.lock_service.hold(user_id, self.timeout):
            yield deadline

    def _check_deadline(self, deadline: float, user_id: int) -> None:
        if time.monotonic() > deadline:
            logger.warning(f"Cart operation of user {user_id} ran past {self.timeout}s, aborting")
            raise StorageTimeout(f"Cart operation for user {user_id} timed out, try again")

    # =====================================================
    # QUERY
    # =====================================================
    def get_cart(self, user_id: int) -> List[CartLine]:
        return self.carts.get(user_id)

    def summarize(self, user_id: int) -> CartSummary:
        lines = self.carts.get(user_id)
        total = sum((line.unit_price * line.quantity for line in lines), Decimal("0.00"))
        return CartSummary(
            total_items=sum(line.quantity for line in lines),
            total_price=total.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
            item_count=len(lines),
        )

    # =====================================================
    # COMMANDS
    # =====================================================
    def add_item(
        self,
        user_id: int,
        item_id: str,
        item_type: ItemType,
        quantity: int,
        unit_price,
        display_name: str,
        image_ref: str | None = None,
    ) -> List[CartLine]:
        _check_quantity(quantity)
        key = _key(item_id, item_type)
        try:
            line = CartLine(
                item_id=item_id,
                item_type=key[1],
                quantity=quantity,
                unit_price=unit_price,
                display_name=display_name,
                image_ref=image_ref,
            )
        except ValidationError as e:
            raise InvalidLineItem(f"Invalid cart line: {e.errors()[0]['msg']}") from e

        with self._operation(user_id) as deadline:
            existing = _index(self.carts.get(user_id)).get(key)
            self._check_deadline(deadline, user_id)
            moved = self.adjust_stock(item_id, key[1], quantity)

            if existing:
                logger.info(
                    f"{key[1].value}:{item_id} already in cart of user {user_id}, "
                    f"quantity {existing.quantity} -> {existing.quantity + quantity}"
                )
                line = existing.model_copy(update={"quantity": existing.quantity + quantity})

            try:
                self._check_deadline(deadline, user_id)
                self.carts.upsert_line(user_id, line)
            except Exception as e:
                logger.error(f"Add to cart failed for user {user_id}, releasing reservation: {e}")
                self._undo([(key, moved)])
                raise

            return self.carts.get(user_id)

    def update_quantity(self, user_id: int, item_id: str, item_type: ItemType, new_quantity: int) -> List[CartLine]:
        _check_quantity(new_quantity)
        key = _key(item_id, item_type)

        with self._operation(user_id) as deadline:
            lines = self.carts.get(user_id)
            existing = _index(lines).get(key)
            if existing is None:
                raise ItemNotInCart(item_id, key[1].value)

            delta = new_quantity - existing.quantity
            if delta == 0:
                return lines

            self._check_deadline(deadline, user_id)
            moved = self.adjust_stock(item_id, key[1], delta)
            try:
                self._check_deadline(deadline, user_id)
                self.carts.upsert_line(user_id, existing.model_copy(update={"quantity": new_quantity}))
            except Exception as e:
                logger.error(f"Quantity update failed for user {user_id}, undoing stock change: {e}")
                self._undo([(key, moved)])
                raise

            return self.carts.get(user_id)

    def remove_item(self, user_id: int, item_id: str, item_type: ItemType) -> List[CartLine]:
        key = _key(item_id, item_type)

        with self._operation(user_id) as deadline:
            lines = self.carts.get(user_id)
            existing = _index(lines).get(key)
            if existing is None:
                return lines

            self._check_deadline(deadline, user_id)
            moved = self.adjust_stock(item_id, key[1], -existing.quantity)
            try:
                self._check_deadline(deadline, user_id)
                self.carts.remove_line(user_id, item_id, key[1])
            except Exception as e:
                logger.error(f"Remove from cart failed for user {user_id}, re-reserving stock: {e}")
                self._undo([(key, moved)])
                raise

            logger.info(f"{key[1].value}:{item_id} removed from cart of user {user_id}")
            return self.carts.get(user_id)

    def replace_cart(self, user_id: int, new_lines: List[CartLine]) -> List[CartLine]:
        """
        Pelna synchronizacja koszyka z klienta.
        Niedobor stanu NIE przerywa synchronizacji (strict=False), zeby nie blokowac UI.
        Przekroczenie czasu juz tak: StorageTimeout i wszystkie zmiany stanu cofniete.
        """
        desired = _coalesce(new_lines)

        with self._operation(user_id) as deadline:
            current = _index(self.carts.get(user_id))
            applied: List[Tuple[LineKey, int]] = []

            try:
                # 1. wzrosty -> rezerwacja
                for key, line in desired.items():
                    held = current[key].quantity if key in current else 0
                    if line.quantity > held:
                        self._check_deadline(deadline, user_id)
                        applied.append((key, self.adjust_stock(*key, line.quantity - held, strict=False)))

                # 2. spadki i usuniete pozycje -> zwrot na magazyn
                for key, line in current.items():
                    wanted = desired[key].quantity if key in desired else 0
                    if wanted < line.quantity:
                        self._check_deadline(deadline, user_id)
                        applied.append((key, self.adjust_stock(*key, wanted - line.quantity, strict=False)))

                self._check_deadline(deadline, user_id)
                self.carts.replace(user_id, list(desired.values()))
            except Exception as e:
                logger.error(f"Cart sync failed for user {user_id}, undoing stock changes: {e}")
                self._undo(applied)
                raise

            return self.carts.get(user_id)

    def clear_cart(self, user_id: int) -> List[CartLine]:
        with self._operation(user_id) as deadline:
            lines = self.carts.get(user_id)
            applied: List[Tuple[LineKey, int]] = []

            try:
                for line in lines:
                    self._check_deadline(deadline, user_id)
                    applied.append((line.key, self.adjust_stock(*line.key, -line.quantity)))
                self._check_deadline(deadline, user_id)
                self.carts.replace(user_id, [])
            except Exception as e:
                logger.error(f"Clearing cart of user {user_id} failed, undoing stock changes: {e}")
                self._undo(applied)
                raise

            logger.info(f"Cart of user {user_id} cleared, {len(lines)} line(s) released")
            return []

    def merge_guest_cart(self, user_id: int, guest_lines: List[CartLine]) -> List[CartLine]:
        """
        Laczenie koszyka goscia z koszykiem uzytkownika przy logowaniu.
        Kazda pozycja goscia rezerwowana w calosci; niedobor = warning, pozycja i tak trafia do koszyka.
        """
        with self._operation(user_id) as deadline:
            merged = _index(self.carts.get(user_id))
            if not guest_lines:
                return list(merged.values())

            applied: List[Tuple[LineKey, int]] = []
            try:
                for guest in guest_lines:
                    self._check_deadline(deadline, user_id)
                    applied.append((guest.key, self.adjust_stock(*guest.key, guest.quantity, strict=False)))

                    existing = merged.get(guest.key)
                    if existing:
                        merged[guest.key] = existing.model_copy(
                            update={"quantity": existing.quantity + guest.quantity}
                        )
                    else:
                        merged[guest.key] = guest.model_copy()

                self._check_deadline(deadline, user_id)
                self.carts.replace(user_id, list(merged.values()))
            except Exception as e:
                logger.error(f"Guest cart merge failed for user {user_id}, undoing stock changes: {e}")
                self._undo(applied)
                raise

            logger.info(f"Merged {len(guest_lines)} guest line(s) into cart of user {user_id}")
            return self.carts.get(user_id)


def build_reconciler(db: Session, lock_service=None) -> CartStockReconciler:
    return CartStockReconciler(
        cart_store=CartRepo(db),
        inventory_store=InventoryRepo(db),
        lock_service=lock_service or get_lock_service(),
    )
