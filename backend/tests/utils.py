from fastapi.testclient import TestClient

ADMIN_EMAIL = "admin@sistema.com"
ADMIN_PASSWORD = "admin123"
USER_EMAIL = "cesar@compasa.com.br"
USER_PASSWORD = "Cesar@0011"


def login(client: TestClient, email: str, password: str) -> dict:
    response = client.post("/login", data={"username": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['accessToken']}"}


def create_proposta_completa(client: TestClient, headers: dict, municipio_id: int, **overrides) -> dict:
    """Cria licitação, fornecedor, produto e proposta com um item; devolve os ids."""
    licitacao = client.post(
        "/licitacoes",
        json={"nome": overrides.get("licitacao", "Pregão 01/2024"), "municipioId": municipio_id},
        headers=headers,
    ).json()
    fornecedor = client.post(
        "/fornecedores", json={"nome": overrides.get("fornecedor", "ACME Materiais")}, headers=headers
    ).json()
    produto = client.post("/produtos", json={"nome": overrides.get("produto", "Cimento")}, headers=headers).json()
    proposta = client.post(
        "/propostas",
        json={
            "licitacaoId": licitacao["id"],
            "fornecedorId": fornecedor["id"],
            "data": overrides.get("data", "2024-05-10"),
            "observacoes": overrides.get("obs_proposta"),
        },
        headers=headers,
    ).json()
    item = client.post(
        "/itens",
        json={
            "propostaId": proposta["id"],
            "produtoId": produto["id"],
            "quantidade": overrides.get("quantidade", 10),
            "precoUnitario": overrides.get("preco", 2.5),
            "observacoes": overrides.get("obs_item"),
        },
        headers=headers,
    ).json()
    return {
        "licitacao": licitacao["id"],
        "fornecedor": fornecedor["id"],
        "produto": produto["id"],
        "proposta": proposta["id"],
        "item": item["id"],
    }
