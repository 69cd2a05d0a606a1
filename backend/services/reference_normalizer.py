"""
Normalisation des références de fichiers
Réécrit les URLs relatives ("/uploads/...") en URLs absolues sur l'origine du backend
"""
import logging
from typing import List, Tuple, Type

from sqlalchemy.orm import Session

from app_config import normalize_origin
from base_crud import ModelStore
from constants import RELATIVE_UPLOAD_PREFIX
from enums import EntityType
from error_handlers import ConfigurationError, MaintenanceError
from models import Document
from schemas import NormalizationReport, SweepFailure

logger = logging.getLogger(__name__)


class ReferenceNormalizer:
    """
    Réécriture idempotente: seules les URLs commençant par le préfixe sont
    sélectionnées, une URL déjà absolue n'est donc jamais retouchée.
    """

    def __init__(
        self,
        db: Session,
        base_origin: str,
        prefix: str = RELATIVE_UPLOAD_PREFIX,
        model: Type = Document,
        column: str = "file_url",
        entity_type: EntityType = EntityType.DOCUMENT
    ):
        origin = normalize_origin(base_origin)
        if not origin:
            raise ConfigurationError(
                "Origine du backend manquante pour la réécriture des URLs",
                details={"variable": "BACKEND_URL"}
            )
        if not prefix:
            raise ValueError("Le préfixe ne peut pas être vide")

        self.db = db
        self.base_origin = origin
        self.prefix = prefix
        self.model = model
        self.column = column
        self.store = ModelStore(db, model, entity_type, "Document")

    def pending_count(self) -> int:
        """Nombre d'enregistrements qui seraient réécrits"""
        return len(self._pending())

    def normalize(self) -> NormalizationReport:
        """
        Préfixe chaque URL relative par l'origine du backend, un enregistrement à la fois
        """
        pending = self._pending()
        report = NormalizationReport(base_origin=self.base_origin, prefix=self.prefix, processed=len(pending))
        logger.info("%s références relatives à réécrire", len(pending))

        for record_id, relative_url in pending:
            new_url = self.base_origin + relative_url
            try:
                self.store.update(record_id, {self.column: new_url})
            except MaintenanceError as e:
                logger.warning("Référence %s non réécrite: %s", record_id, e.error_code.value)
                report.failures.append(SweepFailure.from_error(e, record_id=record_id))
                continue
            report.updated_ids.append(record_id)
            logger.info("Référence %s: %s → %s", record_id, relative_url, new_url)

        return report

    def _pending(self) -> List[Tuple[int, str]]:
        column = getattr(self.model, self.column)
        records = self.store.find_many(criteria=[column.startswith(self.prefix, autoescape=True)])

        # LIKE est insensible à la casse sous SQLite: contrôle exact côté Python
        return [
            (record.id, getattr(record, self.column))
            for record in records
            if getattr(record, self.column).startswith(self.prefix)
        ]
