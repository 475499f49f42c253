import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from . import crud, models
from .database import get_db
from .errors import Forbidden, Unauthorized

logger = logging.getLogger("auth")

SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-licitacoes")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 13 * 60  # 13 horas

CREDENCIAIS_INVALIDAS = "Credenciais inválidas"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="login", auto_error=False)


def authenticate_user(db: Session, email: str, password: str) -> models.User:
    """Confere o par email/senha. Não revela qual das verificações falhou."""
    email = (email or "").strip()
    if not email or not password:
        raise Unauthorized(CREDENCIAIS_INVALIDAS)
    user = crud.get_user_by_email(db, email=email)
    if not user or not crud.verify_password(password, user.hashed_password):
        logger.info(f"[auth] login recusado email={email}")
        raise Unauthorized(CREDENCIAIS_INVALIDAS)
    return user


def create_access_token(user: models.User, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {"sub": str(user.id), "email": user.email, "exp": expire}
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> models.User:
    if not token:
        raise Unauthorized()
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id = int(payload.get("sub"))
    except (JWTError, TypeError, ValueError):
        raise Unauthorized()
    user = crud.get_user(db, user_id)
    if user is None:
        raise Unauthorized()
    return user


def get_current_admin(current_user: models.User = Depends(get_current_user)) -> models.User:
    if not current_user.is_admin:
        raise Forbidden()
    return current_user
