from sqlalchemy.exc import SQLAlchemyError

from backend.src import audit, models
from backend.tests.utils import USER_EMAIL


def test_mutacao_gera_log(client, user_headers, admin_headers, common_user):
    fornecedor = client.post("/fornecedores", json={"nome": "ACME Materiais"}, headers=user_headers).json()

    logs = client.get("/audit", headers=admin_headers).json()
    assert len(logs) == 1
    log = logs[0]
    assert log["action"] == "CREATE"
    assert log["entity"] == "FORNECEDOR"
    assert log["entityId"] == fornecedor["id"]
    assert log["details"] == "Criou fornecedor: ACME Materiais"
    assert log["userId"] == common_user.id
    assert log["user"]["email"] == USER_EMAIL


def test_leituras_nao_geram_log(client, user_headers, db_session):
    client.get("/fornecedores", headers=user_headers)
    client.get("/relatorios/geral", headers=user_headers)
    assert db_session.query(models.AuditLog).count() == 0


def test_falha_validacao_nao_gera_log(client, user_headers, db_session):
    assert client.post("/categorias", json={}, headers=user_headers).status_code == 400
    assert db_session.query(models.AuditLog).count() == 0


def test_logs_mais_recentes_primeiro(client, user_headers, admin_headers):
    categoria = client.post("/categorias", json={"nome": "Alvenaria"}, headers=user_headers).json()
    client.delete(f"/categorias/{categoria['id']}", headers=user_headers)

    logs = client.get("/audit", headers=admin_headers).json()
    assert [(log["action"], log["details"]) for log in logs] == [
        ("DELETE", "Excluiu categoria: Alvenaria"),
        ("CREATE", "Criou categoria: Alvenaria"),
    ]


def test_falha_na_auditoria_nao_afeta_a_operacao(client, user_headers, db_session, mocker):
    session = mocker.MagicMock()
    session.commit.side_effect = SQLAlchemyError("audit indisponível")
    mocker.patch("backend.src.audit.SessionLocal", return_value=session)

    response = client.post("/categorias", json={"nome": "Hidráulica"}, headers=user_headers)
    assert response.status_code == 200
    assert response.json()["nome"] == "Hidráulica"
    session.rollback.assert_called_once()
    session.close.assert_called_once()

    assert db_session.query(models.CategoriaProduto).count() == 1
    assert db_session.query(models.AuditLog).count() == 0


def test_record_log_direto(common_user, db_session):
    audit.record_log(common_user.id, models.AuditAction.UPDATE, models.AuditEntity.PRODUTO, 7, "Atualizou produto: Cimento")
    logs = audit.get_logs(db_session)
    assert len(logs) == 1
    assert logs[0].entity == models.AuditEntity.PRODUTO
    assert logs[0].user.email == USER_EMAIL
