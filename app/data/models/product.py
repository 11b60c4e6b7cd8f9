# app/data/models/product.py
from sqlalchemy import CheckConstraint, Column, DateTime, Integer, Numeric, String

from app.data.database import Base


class StockedItem:
    """Wspolne kolumny dla produktow i zestawow (combo)."""

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    stock = Column(Integer, nullable=False, default=0)
    last_restocked = Column(DateTime(timezone=True), nullable=True)


class ProductModel(StockedItem, Base):
    __tablename__ = "products"
    __table_args__ = (CheckConstraint("stock >= 0", name="ck_products_stock"),)


class ComboModel(StockedItem, Base):
    __tablename__ = "combos"
    __table_args__ = (CheckConstraint("stock >= 0", name="ck_combos_stock"),)
