from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
import os
from pathlib import Path
from dotenv import load_dotenv

# Carrega .env do cwd (sem sobrescrever variáveis já definidas)
load_dotenv(override=False)
# Também tenta backend/.env relativo a este arquivo (quando executar a partir da raiz)
backend_env = Path(__file__).resolve().parent.parent / ".env"
if backend_env.exists():
    load_dotenv(backend_env, override=False)


def _database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)
        return url

    host = os.getenv("POSTGRES_HOST", "localhost")
    port = int(os.getenv("POSTGRES_PORT", "5432"))
    name = os.getenv("POSTGRES_DB", "licitacoes")
    user = os.getenv("POSTGRES_USER", "licitacoes_user")
    password = os.getenv("POSTGRES_PASSWORD")
    # A senha do banco nunca deve ser nula ou vazia
    if not password:
        raise ValueError(
            "A variável de ambiente POSTGRES_PASSWORD não está definida. "
            "Defina DATABASE_URL ou as variáveis POSTGRES_*."
        )
    return f"postgresql+psycopg2://{user}:{password}@{host}:{port}/{name}"


DATABASE_URL = _database_url()
DB_TIMEOUT = int(os.getenv("POSTGRES_CONNECT_TIMEOUT", "5"))

if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False})

    def _unicode_lower(value):
        return value.lower() if isinstance(value, str) else value

    @event.listens_for(engine, "connect")
    def _enable_sqlite_fks(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
        # lower() nativo do SQLite só converte ASCII ("ÁGUA" != "água")
        dbapi_connection.create_function("lower", 1, _unicode_lower)
else:
    engine = create_engine(
        DATABASE_URL,
        pool_pre_ping=True,
        connect_args={"connect_timeout": DB_TIMEOUT, "client_encoding": "utf8"},
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base declarativa para os modelos do SQLAlchemy
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
