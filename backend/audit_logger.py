from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
import json
import logging
from typing import Optional, Dict, Any
from datetime import datetime
from decimal import Decimal

import models
from constants import SENSITIVE_FIELD_MARKERS
from enums import ActionType, EntityType

logger = logging.getLogger(__name__)


class AuditLogger:
    """Service de logging pour auditer toutes les mutations des balayages"""

    @staticmethod
    def log_action(
        db: Session,
        action: ActionType,
        entity_type: EntityType,
        description: str,
        entity_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Enregistre une action dans la table audit_logs

        Args:
            db: Session de base de données
            action: Type d'action (CREATE, DELETE, BULK_UPDATE, etc.)
            entity_type: Type d'entité concernée (USER, APARTMENT, etc.)
            description: Description de l'action
            entity_id: ID de l'entité concernée
            details: Détails supplémentaires (avant/après, erreurs, compteurs)
        """
        details_json = None
        if details:
            try:
                details_json = json.dumps(scrub_sensitive(details), default=str, ensure_ascii=False)
            except (TypeError, ValueError) as e:
                details_json = f"Erreur de sérialisation: {str(e)}"

        audit_log = models.AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            description=description,
            details=details_json
        )

        db.add(audit_log)
        try:
            db.commit()
        except SQLAlchemyError as e:
            # La trace d'audit ne doit pas faire échouer le balayage
            db.rollback()
            # Jamais str(e): SQLAlchemy y inclut les paramètres liés
            logger.warning("Erreur lors de l'enregistrement du log d'audit: %s", type(e).__name__)

    @staticmethod
    def log_crud_action(db: Session, action: ActionType, entity_type: EntityType,
                        entity_id: int, description: str,
                        before_data: Dict = None, after_data: Dict = None):
        """Log spécialisé pour les actions unitaires"""
        details = {}
        if before_data:
            details["before"] = before_data
        if after_data:
            details["after"] = after_data

        AuditLogger.log_action(
            db=db,
            action=action,
            entity_type=entity_type,
            description=description,
            entity_id=entity_id,
            details=details
        )

    @staticmethod
    def log_bulk_action(db: Session, action: ActionType, entity_type: EntityType,
                        description: str, affected_rows: int, filters: Dict = None):
        """Log spécialisé pour les opérations en masse"""
        details = {"affected_rows": affected_rows}
        if filters:
            details["filters"] = filters

        AuditLogger.log_action(
            db=db,
            action=action,
            entity_type=entity_type,
            description=description,
            details=details
        )

    @staticmethod
    def log_error(db: Session, entity_type: EntityType, description: str,
                  entity_id: int = None, error_details: Dict = None):
        """Log spécialisé pour les erreurs"""
        AuditLogger.log_action(
            db=db,
            action=ActionType.ERROR,
            entity_type=entity_type,
            description=description,
            entity_id=entity_id,
            details={"error": error_details} if error_details else None
        )


def is_sensitive(field_name: str) -> bool:
    lowered = field_name.lower()
    return any(marker in lowered for marker in SENSITIVE_FIELD_MARKERS)


def scrub_sensitive(data: Any) -> Any:
    """Retire récursivement les champs sensibles d'une structure"""
    if isinstance(data, dict):
        return {
            key: scrub_sensitive(value)
            for key, value in data.items()
            if not is_sensitive(str(key))
        }
    if isinstance(data, (list, tuple)):
        return [scrub_sensitive(item) for item in data]
    return data


def get_model_data(obj) -> Dict:
    """
    Convertit un objet SQLAlchemy en dictionnaire pour le logging
    Les colonnes sensibles (hash de mot de passe, etc.) sont exclues
    """
    if obj is None:
        return {}

    data = {}
    for column in obj.__table__.columns:
        if is_sensitive(column.name):
            continue
        value = getattr(obj, column.name)
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, Decimal):
            value = str(value)
        elif hasattr(value, "value"):
            value = value.value
        data[column.name] = value
    return data
