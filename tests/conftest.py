import os

# przed importem app: sqlite w pamieci zamiast postgresa, lock w procesie zamiast redisa
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOCK_BACKEND"] = "local"

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.data.database import Base  # noqa: E402
from app.data.models import ComboModel, ProductModel, UserModel  # noqa: E402
from app.domain.schemas import CartLine, ItemType  # noqa: E402
from app.repos.memory import InMemoryCartStore, InMemoryInventoryStore  # noqa: E402
from app.services.lock_service import LocalLockService  # noqa: E402
from app.services.reconciler import CartStockReconciler  # noqa: E402


def make_line(item_id="urad", quantity=1, item_type=ItemType.PRODUCT, price="120.00", name=None):
    return CartLine(
        item_id=item_id,
        item_type=item_type,
        quantity=quantity,
        unit_price=Decimal(price),
        display_name=name or item_id.title(),
    )


@pytest.fixture
def inventory():
    store = InMemoryInventoryStore()
    store.add("urad", ItemType.PRODUCT, "Urad Classic", Decimal("120.00"), stock=10)
    store.add("millet", ItemType.PRODUCT, "Millet Papad", Decimal("80.50"), stock=5)
    store.add("sampler", ItemType.COMBO, "Sampler Combo", Decimal("399.00"), stock=3)
    return store


@pytest.fixture
def carts():
    return InMemoryCartStore()


@pytest.fixture
def reconciler(carts, inventory):
    return CartStockReconciler(carts, inventory, LocalLockService(), timeout=2)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    db = factory()
    db.add_all(
        [
            UserModel(id=1, name="Asha", email="asha@example.com"),
            UserModel(id=2, name="Ravi", email="ravi@example.com"),
            ProductModel(id="urad", name="Urad Classic", price=Decimal("120.00"), stock=10),
            ProductModel(id="millet", name="Millet Papad", price=Decimal("80.50"), stock=5),
            ComboModel(id="sampler", name="Sampler Combo", price=Decimal("399.00"), stock=3),
        ]
    )
    db.commit()
    db.close()

    yield factory

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()
