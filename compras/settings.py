from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from compras.autosave import AutosavePolicy

load_dotenv()


def _env_float(name: str, default: str) -> float:
    try:
        return float(os.environ.get(name, default))
    except ValueError:
        return float(default)


@dataclass(frozen=True)
class Settings:
    # App
    APP_NAME: str = os.environ.get("APP_NAME", "Compras")
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")

    # Storage
    INSTANCE_DIR: Path = Path(os.environ.get("INSTANCE_DIR", "instance")).resolve()
    DATABASE_URL: str = os.environ.get(
        "DATABASE_URL", f"sqlite:///{(Path('instance') / 'compras.sqlite').as_posix()}"
    )

    # Price import
    # Which product field the "codigo" column is matched against: "sku" or "supplier_code".
    PRICE_IMPORT_MATCH_FIELD: str = os.environ.get("PRICE_IMPORT_MATCH_FIELD", "sku")
    EXCEL_WORKSHEET_NAME: str = os.environ.get("EXCEL_WORKSHEET_NAME", "")

    # Order autosave
    AUTOSAVE_DEBOUNCE_SECONDS: float = _env_float("AUTOSAVE_DEBOUNCE_SECONDS", "2")
    AUTOSAVE_INTERVAL_SECONDS: float = _env_float("AUTOSAVE_INTERVAL_SECONDS", "60")
    # 0 means retry forever.
    AUTOSAVE_MAX_FAILURES: int = int(os.environ.get("AUTOSAVE_MAX_FAILURES", "0"))
    AUTOSAVE_BACKOFF_FACTOR: float = _env_float("AUTOSAVE_BACKOFF_FACTOR", "1.0")

    def __post_init__(self) -> None:
        db_url_env_set = os.environ.get("DATABASE_URL") is not None

        object.__setattr__(self, "INSTANCE_DIR", Path(self.INSTANCE_DIR).resolve())

        field = (self.PRICE_IMPORT_MATCH_FIELD or "").strip().lower()
        if field not in ("sku", "supplier_code"):
            field = "sku"
        object.__setattr__(self, "PRICE_IMPORT_MATCH_FIELD", field)

        # If DATABASE_URL was not explicitly provided, always place the DB inside INSTANCE_DIR.
        if not db_url_env_set:
            abs_db = (self.INSTANCE_DIR / "compras.sqlite").resolve()
            object.__setattr__(self, "DATABASE_URL", f"sqlite:///{abs_db.as_posix()}")
            return

        db = str(self.DATABASE_URL or "").strip()
        if not db:
            abs_db = (self.INSTANCE_DIR / "compras.sqlite").resolve()
            object.__setattr__(self, "DATABASE_URL", f"sqlite:///{abs_db.as_posix()}")
            return

        # Normalize relative SQLite URLs so they don't depend on the working directory.
        if db.startswith("sqlite:///") and not db.startswith("sqlite:////"):
            path_part = db[len("sqlite:///") :]
            if "?" in path_part:
                path_part = path_part.split("?", 1)[0]

            p = Path(path_part)
            if path_part != ":memory:" and not p.is_absolute():
                project_root = Path(__file__).resolve().parents[1]
                abs_path = (project_root / p).resolve()
                object.__setattr__(self, "DATABASE_URL", f"sqlite:///{abs_path.as_posix()}")

    def ensure_instance(self) -> None:
        self.INSTANCE_DIR.mkdir(parents=True, exist_ok=True)

    def autosave_policy(self) -> AutosavePolicy:
        return AutosavePolicy(
            debounce_seconds=float(self.AUTOSAVE_DEBOUNCE_SECONDS),
            interval_seconds=float(self.AUTOSAVE_INTERVAL_SECONDS),
            max_failures=int(self.AUTOSAVE_MAX_FAILURES) or None,
            backoff_factor=float(self.AUTOSAVE_BACKOFF_FACTOR),
        )
