# app/domain/errors.py
"""
Bledy rekoncyliacji koszyka i stanow magazynowych.

Business errors (InvalidQuantity, InvalidLineItem, NotFound, ItemNotInCart,
InsufficientStock) go straight back to the caller. StorageError subclasses
are retried by the repositories and only surface once the retry budget is
spent; they are always safe for the client to retry.
"""


class CartError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidQuantity(CartError):
    def __init__(self, quantity, minimum: int = 1):
        super().__init__(f"Quantity must be a whole number >= {minimum}, got {quantity!r}")
        self.quantity = quantity


class InvalidLineItem(CartError):
    pass


class NotFound(CartError):
    status_code = 404


class ItemNotInCart(CartError):
    status_code = 404

    def __init__(self, item_id: str, item_type: str):
        super().__init__(f"Item {item_type}:{item_id} is not in the cart")
        self.item_id = item_id
        self.item_type = item_type


class InsufficientStock(CartError):
    status_code = 409

    def __init__(self, item_id: str, item_type: str, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for {item_type}:{item_id} "
            f"(requested {requested}, available {available})"
        )
        self.item_id = item_id
        self.item_type = item_type
        self.requested = requested
        self.available = available


class StorageError(CartError):
    status_code = 503
    retryable = True


class StorageTimeout(StorageError):
    pass


class StorageConflict(StorageError):
    pass
