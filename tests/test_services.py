import asyncio
from decimal import Decimal

import pytest

from compras.autosave import AutosavePolicy
from compras.db import session_scope
from compras.errors import NotFoundError, ValidationError
from compras.repos import OrderRepo, ProductRepo, ProviderRepo, RecipeRepo
from compras.services import OrderService, PriceImportService, ProductService, ProviderService, RecipeService
from compras.tipos import RecipeMaterialInfo


def test_provider_lookup_by_rut_ignores_formatting(session_factory, seeded):
    with session_scope(session_factory) as session:
        row = ProviderRepo(session).find_by_rut("21.234.567.0018")
        assert row is not None
        assert str(row.id) == seeded["lacteos"]
        assert ProviderRepo(session).find_by_rut("") is None


def test_catalog_is_scoped_and_sorted(session_factory, settings, seeded):
    svc = OrderService(session_factory, settings)
    names = [p.name for p in svc.catalog(seeded["lacteos"])]
    assert names == ["Queso colonia", "Leche entera"]


def test_submit_persists_order_and_lines(session_factory, settings, seeded):
    svc = OrderService(session_factory, settings)

    res = svc.submit(seeded["lacteos"], {seeded["leche"]: 3, seeded["queso"]: Decimal("0.5")})

    assert res.ok
    assert res.total == Decimal("425.25")
    rec = svc.get(res.order_id)
    assert rec.status == "pending"
    assert rec.total == Decimal("425.25")
    # Queso sorts first (order 1001).
    assert [it["product_id"] for it in rec.items] == [seeded["queso"], seeded["leche"]]
    assert rec.items[0]["subtotal"] == 125.25


def test_submit_reports_build_and_validation_errors(session_factory, settings, seeded):
    svc = OrderService(session_factory, settings)

    res = svc.submit(seeded["lacteos"], {seeded["pan"]: 1})
    assert not res.ok
    assert seeded["pan"] in res.error

    res = svc.submit(seeded["lacteos"], {seeded["leche"]: 0})
    assert res.error == "La cantidad debe ser mayor a 0"

    res = svc.submit("", {seeded["leche"]: 1})
    assert res.error == "Datos de orden inválidos"
    assert svc.list() == []


def test_overwrite_replaces_lines(session_factory, settings, seeded):
    svc = OrderService(session_factory, settings)
    first = svc.submit(seeded["lacteos"], {seeded["leche"]: 1, seeded["queso"]: 1})

    again = svc.submit(seeded["lacteos"], {seeded["leche"]: 2}, first.order_id)

    assert again.order_id == first.order_id
    rec = svc.get(first.order_id)
    assert len(rec.items) == 1
    assert rec.items[0]["quantity"] == 2.0
    assert rec.total == Decimal("200.00")
    assert len(svc.list()) == 1


def test_status_changes_and_delete(session_factory, settings, seeded):
    svc = OrderService(session_factory, settings)
    oid = svc.submit(seeded["panaderia"], {seeded["pan"]: 12}).order_id

    svc.complete(oid)
    assert svc.get(oid).status == "completed"
    assert [o.id for o in svc.list(status="completed")] == [oid]

    svc.reopen(oid)
    assert svc.get(oid).status == "pending"

    svc.delete(oid)
    with pytest.raises(NotFoundError):
        svc.get(oid)
    with session_scope(session_factory) as session:
        assert OrderRepo(session).list() == []


def test_purchase_import_updates_prices_and_history(session_factory, settings, seeded):
    svc = PriceImportService(session_factory, settings)
    csv_text = (
        "fecha;rut;codigo;nombre;precio\n"
        "01/05/2024;212345670018;P001;LECHE ENTERA 1L;110\n"
        "01/05/2024;212345670018;P003;PAN;50\n"
        "01/05/2024;212345670018;P002;QUESO;250,50\n"
    )

    res = svc.import_text(csv_text, "purchase")

    assert res.updated == 1
    # P003 belongs to the other provider.
    assert [e.code for e in res.not_found_products] == ["P003"]
    with session_scope(session_factory) as session:
        repo = ProductRepo(session)
        assert repo.get(seeded["leche"]).price == Decimal("110.00")
        assert repo.get(seeded["pan"]).price == Decimal("40.00")
        history = repo.price_history(seeded["leche"])
        assert [(h.kind, h.old_price, h.new_price) for h in history] == [
            ("purchase", Decimal("100.00"), Decimal("110.00"))
        ]

    assert svc.import_text(csv_text, "purchase").updated == 0


def test_dry_run_does_not_write(session_factory, settings, seeded):
    svc = PriceImportService(session_factory, settings)
    res = svc.import_text("codigo;nombre;contado\nP002;Queso;350", "sale", dry_run=True)
    assert res.updated == 1
    with session_scope(session_factory) as session:
        assert ProductRepo(session).get(seeded["queso"]).sale_price == Decimal("300.00")


def test_sale_import_from_file_marks_product_for_sale(session_factory, settings, seeded, tmp_path):
    path = tmp_path / "ventas.csv"
    path.write_bytes("codigo;nombre;contado\nP001;Leche;35,5\n".encode("cp1252"))

    res = PriceImportService(session_factory, settings).import_file(path, "sale")

    assert res.updated == 1
    with session_scope(session_factory) as session:
        leche = ProductRepo(session).get(seeded["leche"])
        assert leche.sale_price == Decimal("35.50")
        assert leche.for_sale is True


def test_autosave_session_creates_then_overwrites(session_factory, settings, seeded):
    svc = OrderService(session_factory, settings)
    catalog = svc.catalog(seeded["lacteos"])

    async def scenario():
        coord = svc.autosave_session(
            policy=AutosavePolicy(debounce_seconds=100, interval_seconds=100), notify=lambda level, msg: None
        )
        coord.notify_change(seeded["lacteos"], {seeded["leche"]: 1}, catalog)
        await coord.tick()
        coord.notify_change(seeded["lacteos"], {seeded["leche"]: 4}, catalog)
        await coord.tick()
        coord.dispose()
        return coord

    coord = asyncio.run(scenario())

    assert coord.save_count == 2
    orders = svc.list()
    assert len(orders) == 1
    assert orders[0].total == Decimal("400.00")


def test_recipe_save_costs_and_propagates(session_factory, seeded):
    with session_scope(session_factory) as session:
        repo = ProductRepo(session)
        repo.update_product(seeded["leche"], {"price_per_unit": Decimal("0.10")})

    svc = RecipeService(session_factory)
    base = svc.save_recipe(
        {"name": "Crema", "yield_qty": 2, "profit_percentage": 50},
        [RecipeMaterialInfo(id=seeded["leche"], kind="product", quantity=Decimal("100"))],
    )
    assert base.total_cost == Decimal("10.00")
    assert base.unit_cost == Decimal("5.00")
    assert base.suggested_price == Decimal("10.00")

    postre = svc.save_recipe(
        {"name": "Postre", "yield_qty": 1},
        [RecipeMaterialInfo(id=base.id, kind="recipe", quantity=Decimal("3"))],
    )
    assert postre.unit_cost == Decimal("15.00")

    svc.save_recipe(
        {"name": "Crema", "yield_qty": 1, "profit_percentage": 50},
        [RecipeMaterialInfo(id=seeded["leche"], kind="product", quantity=Decimal("100"))],
        base.id,
    )

    with session_scope(session_factory) as session:
        by_name = {r.name: r for r in RecipeRepo(session).snapshots()}
        assert by_name["Crema"].unit_cost == Decimal("10.00")
        assert by_name["Postre"].unit_cost == Decimal("30.00")
        assert len(RecipeRepo(session).get(postre.id).cost_history) == 1


def test_recipe_rejects_self_reference_and_bad_quantities(session_factory, seeded):
    svc = RecipeService(session_factory)
    saved = svc.save_recipe({"name": "Base"}, [])

    with pytest.raises(ValidationError):
        svc.save_recipe({"name": "Base"}, [RecipeMaterialInfo(id=saved.id, kind="recipe", quantity=Decimal("1"))], saved.id)
    with pytest.raises(ValidationError):
        svc.save_recipe({"name": "Otra"}, [RecipeMaterialInfo(id=seeded["leche"], kind="product", quantity=Decimal("0"))])
    with pytest.raises(ValidationError):
        svc.save_recipe({"name": " "}, [])


def _product_data(provider_id, **overrides):
    data = {
        "name": "Manteca",
        "sku": "P010",
        "purchase_packaging": "caja",
        "provider_id": provider_id,
        "min_package_stock": 1,
        "desired_stock": 5,
        "price": "55.555",
        "order": 1500,
    }
    data.update(overrides)
    return data


def test_save_provider_validates_and_keeps_rut_unique(session_factory, seeded):
    svc = ProviderService(session_factory)

    saved = svc.save_provider({"commercial_name": " Almacén Centro ", "rut": "210000000019", "order_days": ["monday"]})
    assert saved.commercial_name == "Almacén Centro"
    assert saved.order_days == frozenset({"monday"})

    with pytest.raises(ValidationError) as exc:
        svc.save_provider({"commercial_name": "Copia", "rut": "21.234.567.0018"})
    assert exc.value.field == "rut"
    assert str(exc.value) == "Ya existe un proveedor con ese RUT"

    with pytest.raises(ValidationError):
        svc.save_provider({"commercial_name": "X", "rut": "123"})
    with pytest.raises(ValidationError):
        svc.save_provider({"commercial_name": ""})

    # Re-saving a provider with its own RUT is fine.
    renamed = svc.save_provider({"commercial_name": "Lácteos SA", "rut": "21-234567-0018"}, seeded["lacteos"])
    assert renamed.id == seeded["lacteos"]
    assert [p.commercial_name for p in svc.list()] == ["Almacén Centro", "Lácteos SA", "Panadería Norte"]


def test_save_product_creates_and_updates_with_history(session_factory, seeded):
    svc = ProductService(session_factory)

    created = svc.save_product(_product_data(seeded["lacteos"]))
    assert created.price == Decimal("55.56")
    assert created.order == 1500
    assert svc.price_history(created.id) == []

    updated = svc.save_product(_product_data(seeded["lacteos"], price=60), created.id)
    assert updated.id == created.id
    history = svc.price_history(created.id)
    assert [(h.kind, h.old_price, h.new_price) for h in history] == [("purchase", Decimal("55.56"), Decimal("60.00"))]
    assert history[0].to_dict()["new_price"] == 60.0


def test_save_product_rejects_invalid_data(session_factory, seeded):
    svc = ProductService(session_factory)

    with pytest.raises(ValidationError) as exc:
        svc.save_product(_product_data(seeded["lacteos"], min_package_stock=9))
    assert exc.value.field == "min_package_stock"
    with pytest.raises(ValidationError):
        svc.save_product(_product_data(seeded["lacteos"], price="NaN"))
    with pytest.raises(NotFoundError):
        svc.save_product(_product_data("999"))

    with session_scope(session_factory) as session:
        assert [p.sku for p in ProductRepo(session).list()] == ["P002", "P001", "P003"]


def test_fixed_cost_percentage_uses_production_share(session_factory):
    svc = RecipeService(session_factory)

    assert svc.fixed_cost_percentage(1000, 300) == Decimal("30.00")
    assert svc.fixed_cost_percentage(1000, 300, total_sales=10000, production_sales=4000) == Decimal("12.00")
    assert svc.fixed_cost_percentage(1000, 300, total_sales=0, production_sales=0) == Decimal("0.00")
    assert svc.fixed_cost_percentage(0, 300) == Decimal("0.00")
    with pytest.raises(ValidationError):
        svc.fixed_cost_percentage(1000, 300, total_sales=100, production_sales=200)
