import httpx
import pytest

from backend.src import storage
from backend.src.errors import StorageError


def test_upload_local(client, user_headers):
    response = client.post(
        "/upload",
        files={"file": ("proposta final.pdf", b"%PDF-1.4 conteudo", "application/pdf")},
        headers=user_headers,
    )
    assert response.status_code == 200
    url = response.json()["url"]
    assert url.startswith("/uploads/")
    assert url.endswith("-proposta-final.pdf")

    saved = storage.UPLOAD_DIR / url.rsplit("/", 1)[1]
    assert saved.read_bytes() == b"%PDF-1.4 conteudo"

    served = client.get(url)
    assert served.status_code == 200
    assert served.content == b"%PDF-1.4 conteudo"


def test_upload_sem_arquivo(client, user_headers):
    response = client.post("/upload", headers=user_headers)
    assert response.status_code == 400
    assert response.json() == {"error": "Nenhum arquivo enviado"}


def test_upload_exige_token(client):
    response = client.post("/upload", files={"file": ("a.txt", b"x", "text/plain")})
    assert response.status_code == 401


def test_upload_blob(client, user_headers, monkeypatch, mocker):
    monkeypatch.setattr(storage, "BLOB_READ_WRITE_TOKEN", "blob-token")
    fake = mocker.MagicMock()
    fake.json.return_value = {"url": "https://blob.example.com/orcamento.pdf"}
    put = mocker.patch("backend.src.storage.httpx.put", return_value=fake)

    response = client.post(
        "/upload",
        files={"file": ("orcamento.pdf", b"pdf", "application/pdf")},
        headers=user_headers,
    )
    assert response.status_code == 200
    assert response.json() == {"url": "https://blob.example.com/orcamento.pdf"}

    args, kwargs = put.call_args
    assert args[0].endswith("/orcamento.pdf")
    assert kwargs["content"] == b"pdf"
    assert kwargs["headers"]["Authorization"] == "Bearer blob-token"


def test_upload_blob_falha(client, user_headers, monkeypatch, mocker):
    monkeypatch.setattr(storage, "BLOB_READ_WRITE_TOKEN", "blob-token")
    mocker.patch("backend.src.storage.httpx.put", side_effect=httpx.ConnectError("sem rede"))

    response = client.post(
        "/upload",
        files={"file": ("orcamento.pdf", b"pdf", "application/pdf")},
        headers=user_headers,
    )
    assert response.status_code == 500
    assert response.json() == {"error": "Erro no upload para o storage"}


def test_save_local_erro_de_disco(monkeypatch, tmp_path):
    bloqueio = tmp_path / "arquivo"
    bloqueio.write_text("não é diretório")
    monkeypatch.setattr(storage, "UPLOAD_DIR", bloqueio / "uploads")

    with pytest.raises(StorageError) as exc:
        storage.save_local("a.txt", b"x")
    assert exc.value.http_status == 500
    assert exc.value.message == "Erro no upload local"


def test_upload_local_descarta_diretorios(client, user_headers):
    response = client.post(
        "/upload",
        files={"file": ("../../fora do lugar.pdf", b"pdf", "application/pdf")},
        headers=user_headers,
    )
    assert response.status_code == 200
    url = response.json()["url"]
    assert url.startswith("/uploads/")
    assert url.endswith("-fora-do-lugar.pdf")
    assert "/.." not in url
    assert (storage.UPLOAD_DIR / url.rsplit("/", 1)[1]).exists()


def test_nome_seguro_para_blob(monkeypatch, mocker):
    monkeypatch.setattr(storage, "BLOB_READ_WRITE_TOKEN", "blob-token")
    fake = mocker.MagicMock()
    fake.json.return_value = {"url": "https://blob.example.com/b.pdf"}
    put = mocker.patch("backend.src.storage.httpx.put", return_value=fake)

    storage.store_upload("a/b.pdf", b"pdf", "application/pdf")
    storage.store_upload("..\\c d.pdf", b"pdf", "application/pdf")
    urls = [c.args[0] for c in put.call_args_list]
    assert urls == [f"{storage.BLOB_API_URL}/b.pdf", f"{storage.BLOB_API_URL}/c-d.pdf"]
