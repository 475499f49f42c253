from backend.src import models


# --- Categorias ---

def test_categoria_nome_obrigatorio(client, user_headers):
    response = client.post("/categorias", json={}, headers=user_headers)
    assert response.status_code == 400
    assert response.json() == {"error": "Nome é obrigatório"}


def test_categorias_ordenadas_por_nome(client, user_headers):
    for nome in ("Hidráulica", "Alvenaria", "Elétrica"):
        client.post("/categorias", json={"nome": nome}, headers=user_headers)
    nomes = [c["nome"] for c in client.get("/categorias", headers=user_headers).json()]
    assert nomes == ["Alvenaria", "Elétrica", "Hidráulica"]


def test_delete_categoria_em_uso(client, user_headers):
    categoria = client.post("/categorias", json={"nome": "Alvenaria"}, headers=user_headers).json()
    client.post("/produtos", json={"nome": "Cimento", "categoriaId": categoria["id"]}, headers=user_headers)

    response = client.delete(f"/categorias/{categoria['id']}", headers=user_headers)
    assert response.status_code == 400
    assert response.json() == {"error": "Categoria em uso por produtos"}


def test_delete_categoria_livre(client, user_headers):
    categoria = client.post("/categorias", json={"nome": "Pintura"}, headers=user_headers).json()
    response = client.delete(f"/categorias/{categoria['id']}", headers=user_headers)
    assert response.status_code == 200
    assert client.get("/categorias", headers=user_headers).json() == []


def test_delete_categoria_inexistente(client, user_headers):
    response = client.delete("/categorias/999", headers=user_headers)
    assert response.status_code == 404


# --- Unidades ---

def test_unidade_sigla_obrigatoria(client, user_headers):
    response = client.post("/unidades", json={"nome": "Quilograma"}, headers=user_headers)
    assert response.status_code == 400
    assert response.json() == {"error": "Sigla é obrigatória"}


def test_delete_unidade_em_uso_pelo_conjunto_do_produto(client, user_headers):
    unidade = client.post("/unidades", json={"sigla": "SC", "nome": "Saco"}, headers=user_headers).json()
    client.post("/produtos", json={"nome": "Cimento", "unidadeIds": [unidade["id"]]}, headers=user_headers)

    response = client.delete(f"/unidades/{unidade['id']}", headers=user_headers)
    assert response.status_code == 400
    assert response.json() == {"error": "Unidade em uso"}


def test_delete_unidade_em_uso_pela_unidade_legada(client, user_headers):
    unidade = client.post("/unidades", json={"sigla": "M3"}, headers=user_headers).json()
    client.post("/produtos", json={"nome": "Areia", "unidadeId": unidade["id"]}, headers=user_headers)
    assert client.delete(f"/unidades/{unidade['id']}", headers=user_headers).status_code == 400


def test_delete_unidade_livre(client, user_headers):
    unidade = client.post("/unidades", json={"sigla": "KG"}, headers=user_headers).json()
    assert client.delete(f"/unidades/{unidade['id']}", headers=user_headers).status_code == 200
    assert client.get("/unidades", headers=user_headers).json() == []


# --- Fornecedores ---

def test_fornecedor_duplicado_ignora_maiusculas(client, user_headers):
    assert client.post("/fornecedores", json={"nome": "ACME Materiais"}, headers=user_headers).status_code == 200

    response = client.post("/fornecedores", json={"nome": "acme materiais"}, headers=user_headers)
    assert response.status_code == 400
    assert response.json() == {"error": "Já existe um fornecedor com este nome"}

    response = client.post("/fornecedores", json={"nome": "Acme Materiais Ltda"}, headers=user_headers)
    assert response.status_code == 200


def test_fornecedor_duplicado_com_acentos(client, user_headers):
    assert client.post("/fornecedores", json={"nome": "ÁGUA Mineral Paraná"}, headers=user_headers).status_code == 200

    response = client.post("/fornecedores", json={"nome": "água mineral paraná"}, headers=user_headers)
    assert response.status_code == 400
    assert response.json() == {"error": "Já existe um fornecedor com este nome"}


def test_fornecedor_nome_obrigatorio(client, user_headers):
    response = client.post("/fornecedores", json={"contato": "João"}, headers=user_headers)
    assert response.status_code == 400


def test_update_fornecedor_parcial(client, user_headers):
    fornecedor = client.post(
        "/fornecedores",
        json={"nome": "Casa do Construtor", "contato": "João", "whatsapp": "41999990000"},
        headers=user_headers,
    ).json()

    response = client.put(
        f"/fornecedores/{fornecedor['id']}",
        json={"cnpj": "12345678000195"},
        headers=user_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["cnpj"] == "12345678000195"
    assert data["contato"] == "João"
    assert data["whatsapp"] == "41999990000"


def test_update_fornecedor_nome_conflitante(client, user_headers):
    client.post("/fornecedores", json={"nome": "Alfa"}, headers=user_headers)
    beta = client.post("/fornecedores", json={"nome": "Beta"}, headers=user_headers).json()

    response = client.put(f"/fornecedores/{beta['id']}", json={"nome": "ALFA"}, headers=user_headers)
    assert response.status_code == 400

    # O próprio nome com outra grafia é permitido
    response = client.put(f"/fornecedores/{beta['id']}", json={"nome": "BETA"}, headers=user_headers)
    assert response.status_code == 200
    assert response.json()["nome"] == "BETA"


def test_update_fornecedor_inexistente(client, user_headers):
    response = client.put("/fornecedores/404", json={"nome": "X"}, headers=user_headers)
    assert response.status_code == 404
    assert response.json() == {"error": "Fornecedor não encontrado"}


# --- Produtos ---

def test_produto_sincroniza_unidade_legada(client, user_headers):
    kg = client.post("/unidades", json={"sigla": "KG"}, headers=user_headers).json()
    sc = client.post("/unidades", json={"sigla": "SC"}, headers=user_headers).json()

    produto = client.post(
        "/produtos",
        json={"nome": "Cimento", "unidadeIds": [sc["id"], kg["id"]]},
        headers=user_headers,
    ).json()
    # Mantém a ordem enviada; a primeira vira a unidade principal
    assert [u["sigla"] for u in produto["unidades"]] == ["SC", "KG"]
    assert produto["unidadeTexto"] == "SC"
    listado = client.get("/produtos", headers=user_headers).json()[0]
    assert [u["sigla"] for u in listado["unidades"]] == ["SC", "KG"]

    response = client.put(
        f"/produtos/{produto['id']}",
        json={"unidadeIds": [kg["id"], sc["id"]]},
        headers=user_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert [u["sigla"] for u in data["unidades"]] == ["KG", "SC"]
    assert data["unidadeTexto"] == "KG"
    assert data["nome"] == "Cimento"


def test_produto_com_unidade_inexistente(client, user_headers):
    response = client.post("/produtos", json={"nome": "Brita", "unidadeIds": [77]}, headers=user_headers)
    assert response.status_code == 400


def test_produtos_embutem_categoria(client, user_headers):
    categoria = client.post("/categorias", json={"nome": "Agregados"}, headers=user_headers).json()
    client.post("/produtos", json={"nome": "Brita", "categoriaId": categoria["id"]}, headers=user_headers)
    produtos = client.get("/produtos", headers=user_headers).json()
    assert produtos[0]["categoria"]["nome"] == "Agregados"


def test_delete_produto_em_uso(client, user_headers, municipio):
    licitacao = client.post("/licitacoes", json={"nome": "PE 1", "municipioId": municipio.id}, headers=user_headers).json()
    fornecedor = client.post("/fornecedores", json={"nome": "F1"}, headers=user_headers).json()
    produto = client.post("/produtos", json={"nome": "Cimento"}, headers=user_headers).json()
    proposta = client.post(
        "/propostas",
        json={"licitacaoId": licitacao["id"], "fornecedorId": fornecedor["id"]},
        headers=user_headers,
    ).json()
    client.post(
        "/itens",
        json={"propostaId": proposta["id"], "produtoId": produto["id"], "quantidade": 1, "precoUnitario": 1},
        headers=user_headers,
    )

    assert client.delete(f"/produtos/{produto['id']}", headers=user_headers).status_code == 400
    assert client.delete(f"/fornecedores/{fornecedor['id']}", headers=user_headers).status_code == 400


def test_delete_produto_livre(client, user_headers, db_session):
    produto = client.post("/produtos", json={"nome": "Tijolo"}, headers=user_headers).json()
    assert client.delete(f"/produtos/{produto['id']}", headers=user_headers).status_code == 200
    assert db_session.query(models.Produto).count() == 0


# --- Municípios ---

def test_municipios_busca_minimo_tres_caracteres(client, user_headers, municipio, outro_municipio):
    assert client.get("/municipios", params={"search": "Cu"}, headers=user_headers).json() == []
    assert client.get("/municipios", headers=user_headers).json() == []

    data = client.get("/municipios", params={"search": "curi"}, headers=user_headers).json()
    assert [m["nomeCompleto"] for m in data] == ["Curitiba/PR"]


def test_municipios_busca_pelo_nome_completo(client, user_headers, municipio, outro_municipio):
    data = client.get("/municipios", params={"search": "/PR"}, headers=user_headers).json()
    assert [m["nome"] for m in data] == ["Curitiba", "Maringá"]


def test_municipios_busca_ignora_caixa_com_acentos(client, user_headers, municipio, outro_municipio):
    data = client.get("/municipios", params={"search": "MARINGÁ"}, headers=user_headers).json()
    assert [m["nomeCompleto"] for m in data] == ["Maringá/PR"]
