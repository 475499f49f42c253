import os
import tempfile

# Configuração do ambiente antes de importar a aplicação
_TMP_DIR = tempfile.mkdtemp(prefix="licitacoes-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["UPLOAD_DIR"] = os.path.join(_TMP_DIR, "uploads")
os.environ.pop("BLOB_READ_WRITE_TOKEN", None)
os.environ.pop("ADMIN_EMAIL", None)

import pytest
from fastapi.testclient import TestClient

from backend.main import app
from backend.src import crud, models, schemas
from backend.src.database import Base, SessionLocal, engine
from backend.tests.utils import ADMIN_EMAIL, ADMIN_PASSWORD, USER_EMAIL, USER_PASSWORD, login


@pytest.fixture(autouse=True)
def db_session():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def admin_user(db_session):
    return crud.create_user(
        db_session,
        schemas.UserCreate(name="Administrador", email=ADMIN_EMAIL, password=ADMIN_PASSWORD),
    )


@pytest.fixture
def common_user(db_session):
    return crud.create_user(
        db_session,
        schemas.UserCreate(name="Cesar Zanoni", email=USER_EMAIL, password=USER_PASSWORD),
    )


@pytest.fixture
def admin_headers(client, admin_user):
    return login(client, ADMIN_EMAIL, ADMIN_PASSWORD)


@pytest.fixture
def user_headers(client, common_user):
    return login(client, USER_EMAIL, USER_PASSWORD)


@pytest.fixture
def municipio(db_session):
    m = models.Municipio(codigo_ibge="4106902", nome="Curitiba", uf="PR", nome_completo="Curitiba/PR")
    db_session.add(m)
    db_session.commit()
    db_session.refresh(m)
    return m


@pytest.fixture
def outro_municipio(db_session):
    m = models.Municipio(codigo_ibge="4115200", nome="Maringá", uf="PR", nome_completo="Maringá/PR")
    db_session.add(m)
    db_session.commit()
    db_session.refresh(m)
    return m
