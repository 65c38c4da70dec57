from __future__ import annotations

from decimal import Decimal

import pytest

from compras.db import create_engine_from_url, init_db, make_session_factory, session_scope
from compras.repos import ProductRepo, ProviderRepo
from compras.settings import Settings
from compras.tipos import ProductInfo, ProviderInfo


@pytest.fixture
def settings(tmp_path):
    s = Settings(INSTANCE_DIR=tmp_path, DATABASE_URL=f"sqlite:///{(tmp_path / 'compras.sqlite').as_posix()}")
    s.ensure_instance()
    return s


@pytest.fixture
def session_factory(settings):
    engine = create_engine_from_url(settings.DATABASE_URL)
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def seeded(session_factory):
    """Two providers and three products; returns their ids as strings."""
    with session_scope(session_factory) as session:
        providers = ProviderRepo(session)
        products = ProductRepo(session)
        lacteos = providers.create(commercial_name="Lácteos del Sur", rut="21-234567-0018")
        panaderia = providers.create(commercial_name="Panadería Norte", rut="219999990011")

        leche = products.create(
            name="Leche entera",
            sku="P001",
            supplier_code="L-1",
            purchase_packaging="caja",
            price=Decimal("100.00"),
            provider_id=lacteos.id,
            order=2001,
            desired_stock=10,
        )
        queso = products.create(
            name="Queso colonia",
            sku="P002",
            purchase_packaging="horma",
            price=Decimal("250.50"),
            sale_price=Decimal("300.00"),
            provider_id=lacteos.id,
            order=1001,
            desired_stock=4,
        )
        pan = products.create(
            name="Pan flauta",
            sku="P003",
            purchase_packaging="bolsa",
            price=Decimal("40.00"),
            provider_id=panaderia.id,
            order=3001,
        )
        return {
            "lacteos": str(lacteos.id),
            "panaderia": str(panaderia.id),
            "leche": str(leche.id),
            "queso": str(queso.id),
            "pan": str(pan.id),
        }


@pytest.fixture
def catalog():
    return [
        ProductInfo(id="p1", name="Harina", sku="H01", provider_id="prov-1", price=Decimal("10.00"), order=3),
        ProductInfo(id="p2", name="Azúcar", sku="A01", provider_id="prov-1", price=Decimal("25.50"), order=1),
        ProductInfo(id="p3", name="Sal", sku="S01", provider_id="prov-1", price=Decimal("5.25"), order=2),
    ]


@pytest.fixture
def providers():
    return [
        ProviderInfo(id="prov-1", commercial_name="Molino", rut="210000000011"),
        ProviderInfo(id="prov-2", commercial_name="Distribuidora", rut="21.111.111.0012"),
    ]
