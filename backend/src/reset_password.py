"""Cria ou redefine um usuário direto no banco (acesso inicial, senha esquecida).

    python -m backend.src.reset_password --email admin@sistema.com --password nova --admin
"""
import argparse
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from backend.src import crud, models, schemas
from backend.src.database import Base, SessionLocal, engine
from backend.src.errors import AppError

logger = logging.getLogger("auth")


def reset_or_create_user(
    db: Session,
    email: str,
    password: str,
    name: Optional[str] = None,
    is_admin: Optional[bool] = None,
) -> models.User:
    """Troca a senha de um usuário existente ou cria um novo.

    ``is_admin=None`` preserva a flag atual; na criação vale a regra do ADMIN_EMAIL.
    """
    email = (email or "").strip()
    user = crud.get_user_by_email(db, email)
    if user is None:
        user = crud.create_user(
            db,
            schemas.UserCreate(name=name or email.split("@")[0], email=email, password=password),
            is_admin=is_admin,
        )
        logger.info(f"[auth] usuário criado via CLI user_id={user.id}")
        return user

    if not password:
        raise AppError("Senha é obrigatória", 400)
    user.hashed_password = crud.get_password_hash(password)
    if name:
        user.name = name.strip()
    if is_admin is not None:
        user.is_admin = is_admin
    db.commit()
    db.refresh(user)
    logger.info(f"[auth] senha redefinida via CLI user_id={user.id}")
    return user


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Cria ou redefine a senha de um usuário.")
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--name")
    admin = parser.add_mutually_exclusive_group()
    admin.add_argument("--admin", dest="is_admin", action="store_true", default=None)
    admin.add_argument("--no-admin", dest="is_admin", action="store_false")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        user = reset_or_create_user(db, args.email, args.password, args.name, args.is_admin)
    except AppError as e:
        print(f"Erro: {e.message}")
        return 1
    finally:
        db.close()
    print(f"Usuário atualizado/criado: {user.email} (admin={user.is_admin})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
