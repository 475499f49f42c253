import logging
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from . import models
from .database import SessionLocal

logger = logging.getLogger("audit")


def record_log(
    user_id: int,
    action: models.AuditAction,
    entity: models.AuditEntity,
    entity_id: Optional[int] = None,
    details: Optional[str] = None,
) -> None:
    """Grava uma entrada de auditoria. Nunca propaga falhas para quem chamou.

    Executada como background task depois que a mutação foi confirmada,
    por isso abre a própria sessão.
    """
    db: Session = SessionLocal()
    try:
        db.add(
            models.AuditLog(
                user_id=user_id,
                action=action,
                entity=entity,
                entity_id=entity_id,
                details=details,
            )
        )
        db.commit()
        logger.info(f"[audit] {action.value} {entity.value} id={entity_id} user_id={user_id}")
    except Exception:
        logger.exception(f"[audit] falha ao registrar {action.value} {entity.value} id={entity_id}")
        db.rollback()
    finally:
        db.close()


def get_logs(db: Session, limit: int = 500):
    return (
        db.query(models.AuditLog)
        .options(joinedload(models.AuditLog.user))
        .order_by(models.AuditLog.created_at.desc(), models.AuditLog.id.desc())
        .limit(limit)
        .all()
    )
