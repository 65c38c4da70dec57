from __future__ import annotations

from pathlib import Path

from flask import Flask, Response, jsonify, request

from compras.settings import Settings
from compras.ui.backend import ComprasBackend


def create_app(session_factory, settings: Settings) -> Flask:
    backend = ComprasBackend(session_factory=session_factory, settings=settings)

    app = Flask(__name__, static_folder=None)

    @app.get("/health")
    def health() -> Response:
        return jsonify({"ok": True, "app": settings.APP_NAME})

    def _ok(payload):
        return jsonify(payload)

    # --- JSON API ---
    @app.get("/api/getAppInfo")
    def api_get_app_info():
        return _ok(backend.getAppInfo())

    @app.get("/api/getProviders")
    def api_get_providers():
        return _ok(backend.getProviders())

    @app.get("/api/getProducts")
    def api_get_products():
        return _ok(backend.getProducts(request.args.get("provider_id") or None, request.args.get("q", "")))

    @app.post("/api/importPrices")
    def api_import_prices():
        f = request.files.get("file")
        if f is not None:
            if not f.filename:
                return _ok({"ok": False, "error": "Archivo inválido"})
            import_type = request.form.get("import_type", "purchase")
            dry_run = request.form.get("dry_run") in ("1", "true", "True")

            suffix = Path(f.filename).suffix.lower() or ".csv"
            tmp = (settings.INSTANCE_DIR / f"_upload_prices{suffix}").resolve()
            try:
                f.save(tmp)
            except OSError as e:
                return _ok({"ok": False, "error": f"No se pudo guardar el archivo: {e}"})
            try:
                return _ok(backend.importPricesFile(tmp, import_type, dry_run))
            finally:
                tmp.unlink(missing_ok=True)

        data = request.get_json(silent=True) or {}
        return _ok(
            backend.importPrices(data.get("content", ""), data.get("import_type", "purchase"), bool(data.get("dry_run")))
        )

    @app.post("/api/createOrder")
    def api_create_order():
        data = request.get_json(silent=True) or {}
        return _ok(backend.createOrder(data.get("provider_id"), data.get("items"), data.get("order_id")))

    @app.get("/api/listOrders")
    def api_list_orders():
        limit = request.args.get("limit", "200")
        return _ok(
            backend.listOrders(
                status=request.args.get("status") or None,
                provider_id=request.args.get("provider_id") or None,
                limit=int(limit),
            )
        )

    @app.post("/api/completeOrder")
    def api_complete_order():
        data = request.get_json(silent=True) or {}
        return _ok(backend.completeOrder(data.get("id")))

    @app.post("/api/reopenOrder")
    def api_reopen_order():
        data = request.get_json(silent=True) or {}
        return _ok(backend.reopenOrder(data.get("id")))

    @app.post("/api/deleteOrder")
    def api_delete_order():
        data = request.get_json(silent=True) or {}
        return _ok(backend.deleteOrder(data.get("id")))

    @app.get("/api/getSummary")
    def api_get_summary():
        limit = request.args.get("limit", "5")
        return _ok(backend.getSummary(int(limit)))

    @app.post("/api/saveRecipe")
    def api_save_recipe():
        data = request.get_json(silent=True) or {}
        return _ok(backend.saveRecipe(data))

    @app.post("/api/saveProvider")
    def api_save_provider():
        data = request.get_json(silent=True) or {}
        return _ok(backend.saveProvider(data))

    @app.post("/api/saveProduct")
    def api_save_product():
        data = request.get_json(silent=True) or {}
        return _ok(backend.saveProduct(data))

    @app.get("/api/getPriceHistory")
    def api_get_price_history():
        return _ok(backend.getPriceHistory(request.args.get("product_id")))

    @app.post("/api/getFixedCostPercentage")
    def api_get_fixed_cost_percentage():
        data = request.get_json(silent=True) or {}
        return _ok(backend.getFixedCostPercentage(data))

    return app
