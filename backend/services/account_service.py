"""
Service de gestion des comptes
Création idempotente (trouver-ou-créer), recréation contrôlée et rotation des identifiants
"""
import datetime
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError
from sqlalchemy.orm import Session

from app_config import MaintenanceSettings
from auth import get_password_hash
from base_crud import ModelStore
from constants import DEFAULT_ENTITLEMENT_DAYS, DEFAULT_SUBSCRIPTION_PLAN
from enums import AccountSubscriptionStatus, EntityType, ErrorCode, SubscriptionPlan
from error_handlers import MaintenanceError, NotFoundError
from models import Account
from schemas import (
    AccountCreate, AccountSummary, CredentialRotation, RecreateAccountResult,
    SweepFailure, SweepReport, normalize_email
)

logger = logging.getLogger(__name__)

AccountAttributes = Union[AccountCreate, Dict[str, Any]]


class AccountService:
    """
    Gestionnaire d'identité: un compte par email, jamais de doublon
    """

    def __init__(
        self,
        db: Session,
        settings: Optional[MaintenanceSettings] = None,
        clock: Optional[Callable[[], datetime.datetime]] = None
    ):
        self.db = db
        self.entitlement_days = settings.entitlement_days if settings else DEFAULT_ENTITLEMENT_DAYS
        self.accounts = ModelStore(db, Account, EntityType.USER, "Compte")
        self._now = clock or datetime.datetime.utcnow

    def find_account(self, identity: str) -> Optional[Account]:
        return self.accounts.find_unique(email=normalize_email(identity))

    def ensure_account(self, identity: str, attributes: AccountAttributes) -> Account:
        """
        Retourne le compte existant pour cet email, ou le crée

        Un compte existant est retourné tel quel (aucune écriture). Sinon le
        mot de passe est haché avec argon2 et le compte est créé avec ses
        droits par défaut (fenêtre = maintenant + entitlement_days).
        """
        account, _ = self._find_or_create(identity, attributes)
        return account

    def recreate_account(self, identity: str, attributes: AccountAttributes) -> RecreateAccountResult:
        """
        Supprime le compte existant puis le recrée (environnements de test uniquement)

        Les attributs sont validés et le mot de passe haché AVANT la
        suppression. Si la suppression échoue (ex: abonnements liés),
        l'erreur est relevée et aucune création n'est tentée.
        """
        payload = self._build_payload(identity, attributes)
        password_hash = get_password_hash(payload.password.get_secret_value())

        deleted_account_id = None
        existing = self.find_account(payload.email)
        if existing:
            deleted_account_id = existing.id
            logger.info("Compte %s existant (ID: %s), suppression avant recréation", payload.email, existing.id)
            self.accounts.delete(existing.id)

        account = self._create(payload, password_hash)
        return RecreateAccountResult(account=account, deleted_account_id=deleted_account_id)

    def ensure_accounts(self, entries: Iterable[AccountAttributes]) -> SweepReport:
        """
        Trouver-ou-créer pour une liste de comptes (comptes de test)
        Un échec sur une entrée n'interrompt pas le lot
        """
        report = SweepReport(operation="ensure_accounts")

        for entry in entries:
            report.processed += 1
            if not isinstance(entry, (AccountCreate, dict)):
                report.failures.append(SweepFailure(
                    error_code=ErrorCode.VALIDATION_ERROR.value,
                    message="Entrée de compte invalide: un objet est attendu",
                    details={"type": type(entry).__name__}
                ))
                continue

            email = _entry_email(entry)
            try:
                _, created = self._find_or_create(email, entry)
            except ValidationError as e:
                report.failures.append(SweepFailure(
                    key=email,
                    error_code=ErrorCode.VALIDATION_ERROR.value,
                    message="Données de compte invalides",
                    details={"errors": [error["msg"] for error in e.errors()]}
                ))
                continue
            except MaintenanceError as e:
                report.failures.append(SweepFailure.from_error(e, key=email))
                continue

            if created:
                report.succeeded.append(normalize_email(email))
            else:
                report.skipped.append(normalize_email(email))

        return report

    def rotate_credential(self, identity: str, new_password: str) -> Account:
        """
        Remplace le hash du mot de passe d'un compte existant
        """
        rotation = CredentialRotation(password=new_password)
        account = self.find_account(identity)
        if account is None:
            raise NotFoundError(
                "Compte non trouvé",
                details={"email": normalize_email(identity)}
            )

        password_hash = get_password_hash(rotation.password.get_secret_value())
        return self.accounts.update(account.id, {"password_hash": password_hash})

    def list_accounts(self) -> List[AccountSummary]:
        return [
            AccountSummary.model_validate(account)
            for account in self.accounts.find_many()
        ]

    # ==================== INTERNE ====================

    def _find_or_create(self, identity: str, attributes: AccountAttributes) -> Tuple[Account, bool]:
        # Un compte existant est retourné sans valider les attributs
        existing = self.find_account(identity)
        if existing:
            logger.info("Compte %s déjà présent (ID: %s)", existing.email, existing.id)
            return existing, False

        payload = self._build_payload(identity, attributes)
        password_hash = get_password_hash(payload.password.get_secret_value())
        return self._create(payload, password_hash), True

    def _build_payload(self, identity: str, attributes: AccountAttributes) -> AccountCreate:
        if isinstance(attributes, AccountCreate):
            data = attributes.model_dump()
        else:
            data = dict(attributes)
        data["email"] = identity
        return AccountCreate.model_validate(data)

    def _create(self, payload: AccountCreate, password_hash: str) -> Account:
        data = payload.model_dump(exclude={"password", "subscription_status", "subscription_plan"})
        data["password_hash"] = password_hash
        data.update(self._entitlement_defaults(payload))

        account = self.accounts.create(data)
        logger.info("Compte %s créé (ID: %s)", account.email, account.id)
        return account

    def _entitlement_defaults(self, payload: AccountCreate) -> Dict[str, Any]:
        status = payload.subscription_status
        if status is None:
            return {}

        now = self._now()
        window_end = now + datetime.timedelta(days=self.entitlement_days)

        if status == AccountSubscriptionStatus.trialing:
            return {
                "subscription_status": status,
                "subscription_plan": payload.subscription_plan,
                "trial_ends_at": window_end,
            }

        return {
            "subscription_status": status,
            "subscription_plan": payload.subscription_plan or SubscriptionPlan(DEFAULT_SUBSCRIPTION_PLAN),
            "subscription_start_date": now,
            "subscription_end_date": window_end,
            "trial_ends_at": window_end,
        }


def _entry_email(entry: AccountAttributes) -> str:
    if isinstance(entry, AccountCreate):
        return entry.email
    email = entry.get("email")
    return email if isinstance(email, str) else ""
