from __future__ import annotations

import argparse
import logging
import socket

from compras.db import create_engine_from_url, init_db, make_session_factory
from compras.settings import Settings
from compras.ui.web_server import create_app


def _ensure_port_free(host: str, port: int) -> bool:
    # Returns True if we can bind (port free), False otherwise.
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            s.bind((host, port))
            return True
        finally:
            s.close()
    except OSError:
        return False


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Compras - servidor web")
    p.add_argument("--host", default="127.0.0.1", help="Bind host (use 0.0.0.0 for LAN)")
    p.add_argument("--port", type=int, default=8000, help="Port")
    p.add_argument("--debug", action="store_true", help="Flask debug mode")
    args = p.parse_args(argv)

    settings = Settings()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not _ensure_port_free(args.host, args.port):
        print(f"El servidor ya está iniciado (o el puerto está ocupado): {args.host}:{args.port}")
        return 2

    settings.ensure_instance()

    engine = create_engine_from_url(settings.DATABASE_URL)
    init_db(engine)
    session_factory = make_session_factory(engine)

    app = create_app(session_factory, settings)
    logging.getLogger(__name__).info("Servidor en http://%s:%s/ (db: %s)", args.host, args.port, settings.DATABASE_URL)

    app.run(host=args.host, port=args.port, debug=args.debug)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
