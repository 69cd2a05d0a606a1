"""
Service de réconciliation des doublons
Un seul moteur, paramétré par entité, clé métier et règle de sélection du canonique
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type, Union

from sqlalchemy.orm import Session

from base_crud import ModelStore
from enums import EntityType
from error_handlers import MaintenanceError
from models import Apartment
from schemas import DuplicateGroupReport, ReconciliationReport, SweepFailure

logger = logging.getLogger(__name__)


def first_created(group: Sequence[Any]) -> Any:
    """Le premier enregistrement (clé primaire la plus basse) est conservé"""
    return group[0]


@dataclass(frozen=True)
class ReconciliationTarget:
    """
    Description d'une entité à dédoublonner

    business_key: nom de colonne ou fonction extrayant la clé métier.
    order_by: nom de la colonne d'ordre stable (croissant).
    select_canonical: choisit l'enregistrement conservé dans un groupe
    déjà trié.
    """
    name: str
    model: Type
    entity_type: EntityType
    business_key: Union[str, Callable[[Any], Optional[str]]]
    order_by: str = "id"
    select_canonical: Callable[[Sequence[Any]], Any] = first_created

    def key_of(self, record) -> Optional[str]:
        if callable(self.business_key):
            return self.business_key(record)
        return getattr(record, self.business_key)


RECONCILIATION_TARGETS: Dict[str, ReconciliationTarget] = {
    "apartments": ReconciliationTarget(
        name="apartments",
        model=Apartment,
        entity_type=EntityType.APARTMENT,
        business_key="unique_id",
    ),
}


def get_target(name: str) -> ReconciliationTarget:
    try:
        return RECONCILIATION_TARGETS[name]
    except KeyError:
        raise ValueError(
            f"Entité inconnue: {name} (disponibles: {', '.join(sorted(RECONCILIATION_TARGETS))})"
        )


class DuplicateReconciler:
    """
    Supprime les doublons d'une entité en conservant un enregistrement par clé métier

    Aucune fusion de champs: seul l'enregistrement canonique survit, tel quel.
    """

    def __init__(self, db: Session, target: ReconciliationTarget):
        self.db = db
        self.target = target
        self.store = ModelStore(db, target.model, target.entity_type, target.name)

    def find_duplicate_groups(self) -> ReconciliationReport:
        """
        Calcule les groupes de doublons sans rien supprimer
        """
        records, groups = self._load_groups()
        report = ReconciliationReport(entity=self.target.name, total_records=len(records), dry_run=True)

        for key, members in groups:
            kept_id, removed_ids = self._split(members)
            report.groups.append(DuplicateGroupReport(
                business_key=key,
                duplicate_count=len(members),
                kept_id=kept_id,
                removed_ids=removed_ids
            ))

        return report

    def reconcile(self) -> ReconciliationReport:
        """
        Supprime un par un les doublons de chaque groupe

        Chaque suppression est validée séparément. Un échec (ex: documents
        encore liés) est consigné et le moteur passe au membre suivant.
        """
        records, groups = self._load_groups()
        report = ReconciliationReport(entity=self.target.name, total_records=len(records))
        logger.info("%s: %s enregistrements, %s groupes de doublons", self.target.name, len(records), len(groups))

        # Plan complet figé avant la première suppression (le commit expire les objets)
        plan = [(key, len(members)) + self._split(members) for key, members in groups]

        for key, duplicate_count, kept_id, candidate_ids in plan:
            group_report = DuplicateGroupReport(
                business_key=key,
                duplicate_count=duplicate_count,
                kept_id=kept_id
            )
            logger.info("Clé %s: %s doublons, conservation de l'ID %s", key, duplicate_count, kept_id)

            for record_id in candidate_ids:
                try:
                    self.store.delete(record_id)
                except MaintenanceError as e:
                    logger.warning("Suppression de l'ID %s impossible: %s", record_id, e.error_code.value)
                    group_report.failures.append(SweepFailure.from_error(e, record_id=record_id, key=key))
                    continue
                group_report.removed_ids.append(record_id)
                logger.info("ID %s supprimé", record_id)

            report.groups.append(group_report)

        return report

    # ==================== INTERNE ====================

    def _load_groups(self) -> Tuple[List[Any], List[Tuple[str, List[Any]]]]:
        order_column = getattr(self.target.model, self.target.order_by)
        records = self.store.find_many(order_by=[order_column.asc()])

        # Les dicts conservent l'ordre de première apparition
        grouped: Dict[str, List[Any]] = {}
        for record in records:
            key = self.target.key_of(record)
            if key is None:
                continue
            grouped.setdefault(key, []).append(record)

        groups = [(key, members) for key, members in grouped.items() if len(members) > 1]
        return records, groups

    def _split(self, members: Sequence[Any]) -> Tuple[int, List[int]]:
        canonical = self.target.select_canonical(members)
        kept_id = canonical.id
        return kept_id, [member.id for member in members if member.id != kept_id]
