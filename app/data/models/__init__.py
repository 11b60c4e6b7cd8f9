#import wszystkich modeli zeby SQLAlchemy je zarejestrowal w base metadata

from app.data.models.user import UserModel
from app.data.models.cart import CartModel
from app.data.models.cart_item import CartLineModel
from app.data.models.product import ProductModel, ComboModel

__all__ = ["UserModel", "CartModel", "CartLineModel", "ProductModel", "ComboModel"]
