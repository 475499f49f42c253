"""Quick validation to ensure required secrets are present before running or deploying."""
from __future__ import annotations

import os
import sys
from typing import Iterable


BACKEND_REQUIRED = (
    "SECRET_KEY",
)

BACKEND_DB_REQUIRED = (
    "POSTGRES_HOST",
    "POSTGRES_PORT",
    "POSTGRES_DB",
    "POSTGRES_USER",
    "POSTGRES_PASSWORD",
)

INSECURE_DEFAULTS = {
    "SECRET_KEY": "dev-secret-licitacoes",
}


def missing(keys: Iterable[str]) -> list[str]:
    return [k for k in keys if not os.getenv(k)]


def insecure() -> list[str]:
    return [k for k, v in INSECURE_DEFAULTS.items() if os.getenv(k) == v]


def main() -> int:
    missing_backend = missing(BACKEND_REQUIRED)
    # DATABASE_URL dispensa as variáveis POSTGRES_*
    missing_db = [] if os.getenv("DATABASE_URL") else missing(BACKEND_DB_REQUIRED)
    weak = insecure()

    if not missing_backend and not missing_db and not weak:
        print("All required secrets are available.")
        if not os.getenv("BLOB_READ_WRITE_TOKEN"):
            print("[storage] BLOB_READ_WRITE_TOKEN not set: uploads go to the local filesystem.")
        return 0

    if missing_backend:
        print("[backend] Missing:", ", ".join(missing_backend))
    if missing_db:
        print("[database] Missing:", ", ".join(missing_db))
    if weak:
        print("[backend] Insecure default value:", ", ".join(weak))
    return 1


if __name__ == "__main__":
    sys.exit(main())
