"""Pytest fixtures: in-memory store seeded with books, shipping and promotions."""

from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
from models import CatalogItem, DiscountType, Promotion, ShippingMethod

TODAY = date.today()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.close()


def add_promo(session, code, type=DiscountType.PERCENT, discount=10, start=-10, end=10,
              min_price=None, quantity=None, used=0, items=()):
    promo = Promotion(
        promotion_code=code,
        name=f"{code} promotion",
        type=type,
        discount=discount,
        start_date=TODAY + timedelta(days=start),
        end_date=TODAY + timedelta(days=end),
        min_price=min_price,
        quantity=quantity,
        used_quantity=used,
        items=list(items),
    )
    session.add(promo)
    return promo


@pytest.fixture
def store(session):
    session.add_all([
        CatalogItem(id=1, title="De Men Phieu Luu Ky", author="To Hoai", price=100000, quantity_in_stock=5),
        CatalogItem(id=2, title="So Do", author="Vu Trong Phung", price=50000, quantity_in_stock=10),
        CatalogItem(id=3, title="Tat Den", author="Ngo Tat To", price=80000, quantity_in_stock=2),
        CatalogItem(id=4, title="Out Of Print", author="Unknown", price=70000, quantity_in_stock=0),
    ])
    session.add_all([
        ShippingMethod(id=1, name="Standard", fee=30000, is_active=True),
        ShippingMethod(id=2, name="Retired courier", fee=10000, is_active=False),
    ])
    add_promo(session, "PERCENT10", discount=10, min_price=50000, quantity=100)
    add_promo(session, "FIXED50K", type=DiscountType.FIXED, discount=50000, min_price=50000, used=10)
    add_promo(session, "FUTURE", start=10, end=40, quantity=100)
    add_promo(session, "EXPIRED", start=-40, end=-10, quantity=100)
    add_promo(session, "MAXED", quantity=100, used=100)
    add_promo(session, "MINPRICE", min_price=200000, quantity=100)
    add_promo(session, "LASTONE", quantity=1)
    session.commit()
    return session


@pytest.fixture
def stock_of(session):
    def _stock(item_id: int) -> int:
        session.expire_all()
        return session.get(CatalogItem, item_id).quantity_in_stock

    return _stock


@pytest.fixture
def client(session_factory, store):
    from main import app

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
