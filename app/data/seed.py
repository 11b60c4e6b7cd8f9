# app/data/seed.py
from decimal import Decimal

from app.data.database import Base, SessionLocal, engine
from app.data.models import ComboModel, ProductModel, UserModel
from app.utils.logging import get_logger

logger = get_logger(__name__)

DEMO_PRODUCTS = [
    ("urad-classic", "Urad Dal Papad Classic", Decimal("120.00"), 50),
    ("urad-millet", "Urad Millet Papad", Decimal("140.00"), 8),
    ("black-rice", "Black Rice Papad", Decimal("160.00"), 0),
]
DEMO_COMBOS = [
    ("papad-sampler", "Papad Sampler Combo", Decimal("399.00"), 20),
]


def seed(session_factory=SessionLocal):
    db = session_factory()
    try:
        # not forcing: only seed if empty
        if db.query(ProductModel).first():
            logger.info("Catalog already seeded, skipping")
            return

        db.add(UserModel(id=1, name="Demo Shopper", email="demo@example.com"))
        for item_id, name, price, stock in DEMO_PRODUCTS:
            db.add(ProductModel(id=item_id, name=name, price=price, stock=stock))
        for item_id, name, price, stock in DEMO_COMBOS:
            db.add(ComboModel(id=item_id, name=name, price=price, stock=stock))
        db.commit()
        logger.info(f"Seeded {len(DEMO_PRODUCTS)} products and {len(DEMO_COMBOS)} combos")
    finally:
        db.close()


if __name__ == "__main__":
    Base.metadata.create_all(bind=engine)
    seed()
