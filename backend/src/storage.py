import logging
import os
import time
from pathlib import Path

import httpx

from .errors import StorageError

logger = logging.getLogger("storage")

BLOB_READ_WRITE_TOKEN = os.getenv("BLOB_READ_WRITE_TOKEN")
BLOB_API_URL = os.getenv("BLOB_API_URL", "https://blob.vercel-storage.com")
BLOB_TIMEOUT = float(os.getenv("BLOB_TIMEOUT", "30"))
UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", str(Path(__file__).resolve().parent.parent / "storage" / "uploads")))
UPLOAD_URL_PREFIX = os.getenv("UPLOAD_URL_PREFIX", "/uploads")


def _safe_name(filename: str | None) -> str:
    # Só o nome final: diretórios enviados pelo cliente são descartados
    name = Path((filename or "").replace("\\", "/")).name
    if name in ("", ".", ".."):
        name = "arquivo"
    return name.replace(" ", "-")


def upload_to_blob(filename: str, data: bytes, content_type: str) -> str:
    url = f"{BLOB_API_URL.rstrip('/')}/{_safe_name(filename)}"
    try:
        r = httpx.put(
            url,
            content=data,
            headers={
                "Authorization": f"Bearer {BLOB_READ_WRITE_TOKEN}",
                "Content-Type": content_type,
                "x-content-type": content_type,
            },
            timeout=BLOB_TIMEOUT,
        )
        r.raise_for_status()
        return r.json()["url"]
    except (httpx.HTTPError, KeyError, ValueError):
        logger.exception(f"[upload] falha no blob storage arquivo={filename}")
        raise StorageError("Erro no upload para o storage")


def save_local(filename: str, data: bytes) -> str:
    """Grava em UPLOAD_DIR com prefixo de timestamp para não sobrescrever."""
    try:
        UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
        safe_name = f"{int(time.time() * 1000)}-{_safe_name(filename)}"
        dest = UPLOAD_DIR / safe_name
        with dest.open("wb") as f:
            f.write(data)
    except OSError:
        logger.exception(f"[upload] falha ao gravar arquivo local {filename}")
        raise StorageError("Erro no upload local")
    logger.info(f"[upload] arquivo salvo em {dest} (size={len(data)})")
    return f"{UPLOAD_URL_PREFIX}/{safe_name}"


def store_upload(filename: str, data: bytes, content_type: str | None = None) -> str:
    content_type = content_type or "application/octet-stream"
    if BLOB_READ_WRITE_TOKEN:
        return upload_to_blob(filename, data, content_type)
    return save_local(filename, data)
