"""
Couche d'accès au stockage pour les balayages de maintenance
Opérations CRUD génériques, validées une par une, avec audit logging automatique
"""
import logging
from typing import Type, TypeVar, Generic, Optional, List, Dict, Any, Sequence

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from database import Base
from audit_logger import AuditLogger, get_model_data
from enums import ActionType, EntityType
from error_handlers import (
    DatabaseErrorHandler, ForeignKeyViolationError, NotFoundError
)

logger = logging.getLogger(__name__)

# Type générique pour les modèles
ModelType = TypeVar("ModelType", bound=Base)


class ModelStore(Generic[ModelType]):
    """
    Accès au stockage pour un modèle donné

    Chaque mutation est validée (commit) individuellement. Toute erreur
    SQLAlchemy provoque un rollback puis est relevée sous forme de
    MaintenanceError typée (FOREIGN_KEY_VIOLATION, DUPLICATE_IDENTITY, ...).
    """

    def __init__(
        self,
        db: Session,
        model: Type[ModelType],
        entity_type: EntityType,
        entity_name: str = None,
        audit: bool = True
    ):
        self.db = db
        self.model = model
        self.entity_type = entity_type
        self.entity_name = entity_name or model.__name__
        self.audit = audit

    # ==================== LECTURE ====================

    def find_many(
        self,
        filters: Dict[str, Any] = None,
        criteria: Sequence[Any] = None,
        order_by: Sequence[Any] = None
    ) -> List[ModelType]:
        """
        Récupère les objets correspondant aux filtres, triés par clé primaire
        croissante à défaut d'ordre explicite
        """
        query = self._filtered_query(filters, criteria)
        query = query.order_by(*(order_by or [self.model.id.asc()]))
        return self._run(lambda: query.all(), operation="find_many")

    def find_unique(self, **key) -> Optional[ModelType]:
        """
        Récupère un objet par une clé unique (ex: email=...)
        """
        query = self._filtered_query(key, None)
        return self._run(lambda: query.one_or_none(), operation="find_unique")

    def get(self, id: int) -> Optional[ModelType]:
        return self._run(lambda: self.db.get(self.model, id), operation="get", record_id=id)

    def get_or_raise(self, id: int) -> ModelType:
        db_obj = self.get(id)
        if db_obj is None:
            raise NotFoundError(
                f"{self.entity_name} non trouvé (ID: {id})",
                details={"table": self.model.__tablename__, "record_id": id}
            )
        return db_obj

    def count(self, filters: Dict[str, Any] = None, criteria: Sequence[Any] = None) -> int:
        query = self._filtered_query(filters, criteria)
        return self._run(lambda: query.count(), operation="count")

    # ==================== ÉCRITURE UNITAIRE ====================

    def create(self, data: Dict[str, Any]) -> ModelType:
        """
        Crée un nouvel objet et le valide immédiatement
        """
        db_obj = self.model(**data)

        def _create():
            self.db.add(db_obj)
            self.db.commit()
            self.db.refresh(db_obj)
            return db_obj

        created = self._run(_create, operation="create", write=True)

        if self.audit:
            AuditLogger.log_crud_action(
                db=self.db,
                action=ActionType.CREATE,
                entity_type=self.entity_type,
                entity_id=created.id,
                description=f"Création de {self.entity_name.lower()}: {created.id}",
                after_data=get_model_data(created)
            )
        return created

    def update(self, id: int, data: Dict[str, Any]) -> ModelType:
        """
        Met à jour un objet existant et valide immédiatement
        """
        for field in data:
            if not hasattr(self.model, field):
                raise AttributeError(f"{self.entity_name} n'a pas de champ '{field}'")

        db_obj = self.get_or_raise(id)
        before_data = get_model_data(db_obj)

        def _update():
            for field, value in data.items():
                setattr(db_obj, field, value)
            self.db.commit()
            self.db.refresh(db_obj)
            return db_obj

        updated = self._run(_update, operation="update", record_id=id, write=True)

        if self.audit:
            AuditLogger.log_crud_action(
                db=self.db,
                action=ActionType.UPDATE,
                entity_type=self.entity_type,
                entity_id=id,
                description=f"Modification de {self.entity_name.lower()}: {id}",
                before_data=before_data,
                after_data=get_model_data(updated)
            )
        return updated

    def delete(self, id: int) -> Dict[str, Any]:
        """
        Supprime un objet par sa clé primaire et retourne ses données
        """
        db_obj = self.get_or_raise(id)
        before_data = get_model_data(db_obj)

        def _delete():
            # Suppression au niveau requête: aucune cascade ORM implicite
            self.db.query(self.model).filter(self.model.id == id).delete(
                synchronize_session="fetch"
            )
            self.db.commit()

        self._run(_delete, operation="delete", record_id=id, write=True)

        if self.audit:
            AuditLogger.log_crud_action(
                db=self.db,
                action=ActionType.DELETE,
                entity_type=self.entity_type,
                entity_id=id,
                description=f"Suppression de {self.entity_name.lower()}: {id}",
                before_data=before_data
            )
        return before_data

    # ==================== ÉCRITURE EN MASSE ====================

    def update_many(
        self,
        data: Dict[str, Any],
        filters: Dict[str, Any] = None,
        criteria: Sequence[Any] = None
    ) -> int:
        """
        Met à jour en une seule instruction UPDATE; retourne le nombre de lignes
        """
        query = self._filtered_query(filters, criteria)

        def _update_many():
            affected = query.update(data, synchronize_session=False)
            self.db.commit()
            self.db.expire_all()
            return affected

        affected = self._run(_update_many, operation="update_many", write=True)

        if self.audit:
            AuditLogger.log_bulk_action(
                db=self.db,
                action=ActionType.BULK_UPDATE,
                entity_type=self.entity_type,
                description=f"Modification en masse de {self.entity_name.lower()}",
                affected_rows=affected,
                filters=filters
            )
        return affected

    def delete_many(
        self,
        filters: Dict[str, Any] = None,
        criteria: Sequence[Any] = None
    ) -> int:
        """
        Supprime en une seule instruction DELETE; retourne le nombre de lignes
        """
        query = self._filtered_query(filters, criteria)

        def _delete_many():
            affected = query.delete(synchronize_session=False)
            self.db.commit()
            self.db.expire_all()
            return affected

        affected = self._run(_delete_many, operation="delete_many", write=True)

        if self.audit:
            AuditLogger.log_bulk_action(
                db=self.db,
                action=ActionType.BULK_DELETE,
                entity_type=self.entity_type,
                description=f"Suppression en masse de {self.entity_name.lower()}",
                affected_rows=affected,
                filters=filters
            )
        return affected

    # ==================== INTERNE ====================

    def _filtered_query(self, filters: Optional[Dict[str, Any]], criteria: Optional[Sequence[Any]]):
        query = self.db.query(self.model)

        if filters:
            for key, value in filters.items():
                if not hasattr(self.model, key):
                    # Un filtre ignoré élargirait silencieusement une suppression
                    raise AttributeError(f"{self.entity_name} n'a pas de champ '{key}'")
                column = getattr(self.model, key)
                if isinstance(value, (list, tuple, set)):
                    query = query.filter(column.in_(list(value)))
                else:
                    query = query.filter(column == value)

        if criteria:
            query = query.filter(*criteria)

        return query

    def _run(self, operation_fn, operation: str, record_id: int = None, write: bool = False):
        try:
            return operation_fn()
        except SQLAlchemyError as e:
            self.db.rollback()
            context = {
                "table": self.model.__tablename__,
                "operation": operation
            }
            if record_id is not None:
                context["record_id"] = record_id

            error = DatabaseErrorHandler.classify(e, context)
            if isinstance(error, ForeignKeyViolationError):
                error.details["referencing_tables"] = referencing_tables(self.model)

            logger.warning(
                "%s sur %s (%s) a échoué: %s",
                operation, self.model.__tablename__, record_id, error.error_code.value
            )
            if write and self.audit:
                AuditLogger.log_error(
                    db=self.db,
                    entity_type=self.entity_type,
                    description=f"Échec de {operation} sur {self.entity_name.lower()}",
                    entity_id=record_id,
                    error_details=error.to_dict()
                )
            raise error from e


def referencing_tables(model) -> List[str]:
    """Tables possédant une clé étrangère vers la table du modèle"""
    target = model.__table__
    names = set()
    for table in Base.metadata.sorted_tables:
        for foreign_key in table.foreign_keys:
            if foreign_key.column.table is target:
                names.add(table.name)
    return sorted(names)
