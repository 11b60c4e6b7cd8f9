from sqlalchemy import CheckConstraint, Column, Integer, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship

from app.data.database import Base


class CartLineModel(Base):
    __tablename__ = "cart_lines"

    id = Column(Integer, primary_key=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    item_id = Column(String, nullable=False)
    item_type = Column(String(16), nullable=False)

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    display_name = Column(String, nullable=False)
    image_ref = Column(String, nullable=True)
    position = Column(Integer, nullable=False, default=0)

    cart = relationship("CartModel", back_populates="lines")

    __table_args__ = (
        UniqueConstraint("cart_id", "item_id", "item_type", name="u_cart_line_item"),
        CheckConstraint("quantity >= 1", name="ck_cart_line_quantity"),
    )
