from decimal import Decimal

import pytest

from compras.errors import CsvImportError
from compras.price_import import ImportResult, NotFoundEntry, UpdatedEntry, clean_code, normalize_header, reconcile
from compras.tipos import ProductInfo, RecipeInfo


class Recorder:
    def __init__(self):
        self.calls = []

    def __call__(self, item_id, fields):
        self.calls.append((item_id, fields))


def test_sale_price_update_reports_catalog_and_file_names():
    products = [ProductInfo(id="1", name="Widget de catálogo", sku="P001", provider_id="x", sale_price=Decimal("1000"))]
    upd = Recorder()

    res = reconcile("codigo;nombre;contado\nP001;Widget;1500", products, [], [], "sale", update_product=upd)

    assert res.updated == 1
    assert res.errors == []
    entry = res.updated_products[0]
    assert entry.name == "Widget de catálogo"
    assert entry.csv_name == "Widget"
    assert entry.old_price == Decimal("1000")
    assert entry.new_price == Decimal("1500.00")
    assert upd.calls == [("1", {"sale_price": Decimal("1500.00"), "for_sale": True})]


def test_reimporting_the_same_file_changes_nothing():
    products = [ProductInfo(id="1", name="Widget", sku="P001", provider_id="x", sale_price=Decimal("1500.00"))]
    upd = Recorder()

    res = reconcile("codigo;nombre;contado\nP001;Widget;1.500,00", products, [], [], "sale", update_product=upd)

    assert res.updated == 0
    assert upd.calls == []
    assert res.not_found_products == []


def test_short_row_is_invalid_and_the_rest_still_processed():
    products = [
        ProductInfo(id="1", name="Uno", sku="A", provider_id="x", sale_price=Decimal("1")),
        ProductInfo(id="3", name="Tres", sku="C", provider_id="x", sale_price=Decimal("1")),
    ]
    csv_text = "codigo;nombre;contado\nA;Uno;10\nB;Dos\nC;Tres;30\n"

    res = reconcile(csv_text, products, [], [], "sale", update_product=Recorder())

    assert res.updated == 2
    assert len(res.invalid_rows) == 1
    assert res.invalid_rows[0].row == 3
    assert res.invalid_rows[0].reason == "Número incorrecto de columnas"
    assert res.errors == ["Fila 3: Número incorrecto de columnas"]


def test_unknown_code_is_not_found_and_never_updated():
    res = reconcile("codigo;nombre;contado\nZZZ;Nada;10", [], [], [], "sale")

    assert res.updated == 0
    assert [(e.code, e.csv_name) for e in res.not_found_products] == [("ZZZ", "Nada")]
    assert res.updated_products == []


def test_purchase_rows_only_update_products_of_the_rut_provider(catalog, providers):
    # A01 belongs to prov-1; the row comes from prov-2.
    csv_text = (
        "Fecha;RUT;Código;Nombre;Precio\n"
        "01/05/2024;21-0000000-011;H01;Harina 000;12,50\n"
        "01/05/2024;211111110012;A01;Azúcar;30\n"
    )
    upd = Recorder()

    res = reconcile(csv_text, catalog, providers, [], "purchase", update_product=upd)

    assert res.updated == 1
    assert upd.calls == [("p1", {"price": Decimal("12.50")})]
    assert [(e.code, e.provider_rut) for e in res.not_found_products] == [("A01", "211111110012")]


def test_purchase_row_with_unknown_rut_is_not_found(catalog, providers):
    res = reconcile(
        "fecha;rut;codigo;nombre;precio\n01/05/2024;999;H01;Harina;12",
        catalog,
        providers,
        [],
        "purchase",
        update_product=Recorder(),
    )
    assert res.updated == 0
    assert len(res.not_found_products) == 1


def test_sale_updates_products_and_recipes_sharing_a_code():
    products = [ProductInfo(id="1", name="Pan", sku="PAN", provider_id="x", sale_price=None)]
    recipes = [RecipeInfo(id="r1", name="Pan casero", sku="PAN", sale_price=Decimal("50"))]
    upd_p, upd_r = Recorder(), Recorder()

    res = reconcile(
        "codigo,nombre,contado\nPAN,Pan,60",
        products,
        [],
        recipes,
        "sale",
        update_product=upd_p,
        update_recipe=upd_r,
    )

    assert res.updated == 2
    assert [e.kind for e in res.updated_products] == ["product", "recipe"]
    assert upd_p.calls == [("1", {"sale_price": Decimal("60.00"), "for_sale": True})]
    assert upd_r.calls == [("r1", {"sale_price": Decimal("60.00"), "for_sale": True})]


def test_recipe_only_code_is_found_on_sale_import():
    recipes = [RecipeInfo(id="r1", name="Torta", sku="T1", sale_price=Decimal("100"))]
    res = reconcile("codigo;nombre;contado\nT1;Torta;100", [], [], recipes, "sale")
    assert res.not_found_products == []
    assert res.updated == 0


def test_bad_price_and_empty_code_are_invalid_rows():
    products = [ProductInfo(id="1", name="Uno", sku="A", provider_id="x")]
    res = reconcile("codigo;nombre;contado\nA;Uno;abc\n[°];Vacío;5\nA;Uno;-3", products, [], [], "sale")

    assert [r.row for r in res.invalid_rows] == [2, 3, 4]
    assert res.invalid_rows[1].reason == "Código vacío"
    assert "Precio negativo" in res.invalid_rows[2].reason
    assert res.updated == 0


def test_dry_run_reports_changes_without_callbacks():
    products = [ProductInfo(id="1", name="Uno", sku="A", provider_id="x", sale_price=Decimal("5"))]
    res = reconcile("codigo;nombre;contado\nA;Uno;7", products, [], [], "sale")
    assert res.updated == 1
    assert res.to_dict()["details"]["updated_products"][0]["new_price"] == 7.0


def test_match_on_supplier_code(providers):
    products = [ProductInfo(id="p9", name="Yerba", sku="Y01", supplier_code="PROV-77", provider_id="prov-1", price=Decimal("80"))]
    upd = Recorder()

    res = reconcile(
        "fecha;rut;codigo;nombre;precio\n01/05/2024;210000000011;PROV-77;Yerba 1kg;95",
        products,
        providers,
        [],
        "purchase",
        update_product=upd,
        match_field="supplier_code",
    )

    assert res.updated == 1
    assert upd.calls == [("p9", {"price": Decimal("95.00")})]


def test_articulo_header_is_accepted_as_nombre():
    products = [ProductInfo(id="1", name="Uno", sku="A", provider_id="x", sale_price=Decimal("1"))]
    res = reconcile("Código;Artículo;Contado\nA;Uno;2", products, [], [], "sale")
    assert res.updated == 1


def test_missing_columns_fail_the_whole_file():
    with pytest.raises(CsvImportError) as exc:
        reconcile("codigo;nombre\nA;Uno", [], [], [], "purchase")
    assert "fecha" in str(exc.value)
    assert "precio" in str(exc.value)


def test_empty_and_header_only_files_fail():
    with pytest.raises(CsvImportError):
        reconcile("", [], [], [], "sale")
    with pytest.raises(CsvImportError):
        reconcile("codigo;nombre;contado\n", [], [], [], "sale")


def test_unknown_import_type_fails():
    with pytest.raises(CsvImportError):
        reconcile("codigo;nombre;contado\nA;B;1", [], [], [], "inventory")


def test_callback_errors_propagate_after_earlier_updates():
    products = [
        ProductInfo(id="1", name="Uno", sku="A", provider_id="x"),
        ProductInfo(id="2", name="Dos", sku="B", provider_id="x"),
    ]
    applied = []

    def update(pid, fields):
        if pid == "2":
            raise RuntimeError("db down")
        applied.append(pid)

    with pytest.raises(RuntimeError):
        reconcile("codigo;nombre;contado\nA;Uno;1\nB;Dos;2", products, [], [], "sale", update_product=update)
    assert applied == ["1"]


def test_header_and_code_helpers():
    assert normalize_header("  Código ") == "codigo"
    assert normalize_header("ARTÍCULO") == "nombre"
    assert clean_code(" [A-1]° ") == "A-1"


def test_report_lines_use_local_number_format():
    res = ImportResult(
        updated=1,
        updated_products=[UpdatedEntry("Queso", Decimal("12345.5"), Decimal("13000"), "QUESO 1KG")],
        not_found_products=[NotFoundEntry("X9", "RARO")],
    )
    res.add_invalid(4, "Precio inválido")

    assert res.report_lines() == [
        "Queso: 12.345,50 -> 13.000,00 (QUESO 1KG)",
        "no encontrado: X9 RARO",
        "fila 4: Precio inválido",
        "actualizados 1, no encontrados 1, inválidos 1",
    ]
