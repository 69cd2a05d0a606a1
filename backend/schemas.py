from pydantic import BaseModel, EmailStr, Field, SecretStr, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime

from constants import MIN_PASSWORD_LENGTH, MAX_PASSWORD_LENGTH

# Import centralisé des enums
from enums import UserRole, AccountSubscriptionStatus, SubscriptionPlan

# Statuts acceptés à la création d'un compte
CREATION_STATUSES = (AccountSubscriptionStatus.trialing, AccountSubscriptionStatus.active)


def normalize_email(email: str) -> str:
    """Clé d'identité d'un compte: email sans espaces, en minuscules"""
    return email.strip().lower()


# ==================== COMPTES ====================

class PasswordInput(BaseModel):
    password: SecretStr = Field(..., description="Mot de passe en clair, jamais stocké")

    @field_validator('password')
    @classmethod
    def validate_password(cls, v: SecretStr):
        length = len(v.get_secret_value())
        if length < MIN_PASSWORD_LENGTH:
            raise ValueError(f'Le mot de passe doit contenir au moins {MIN_PASSWORD_LENGTH} caractères')
        if length > MAX_PASSWORD_LENGTH:
            raise ValueError(f'Le mot de passe ne peut pas dépasser {MAX_PASSWORD_LENGTH} caractères')
        return v


class CredentialRotation(PasswordInput):
    pass


class AccountCreate(PasswordInput):
    email: EmailStr = Field(..., description="Adresse email (clé d'identité)")
    name: str = Field(..., max_length=255, description="Nom affiché")
    company_name: Optional[str] = Field(None, max_length=255, description="Nom de l'agence")
    phone: Optional[str] = Field(None, max_length=50, description="Téléphone")
    company_address: Optional[str] = Field(None, max_length=500, description="Adresse de l'agence")
    role: UserRole = Field(default=UserRole.standard, description="Rôle du compte")
    is_email_verified: bool = Field(default=False, description="Email déjà vérifié")
    subscription_status: Optional[AccountSubscriptionStatus] = Field(
        default=AccountSubscriptionStatus.trialing,
        description="Statut initial des droits (None = aucun droit)"
    )
    subscription_plan: Optional[SubscriptionPlan] = Field(None, description="Plan initial")

    @field_validator('email', mode='before')
    @classmethod
    def validate_email(cls, v):
        if isinstance(v, str):
            return normalize_email(v)
        return v

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError('Le nom ne peut pas être vide')
        return v.strip()

    @field_validator('subscription_status')
    @classmethod
    def validate_subscription_status(cls, v):
        if v is None or v == AccountSubscriptionStatus.none:
            return None
        if v not in CREATION_STATUSES:
            raise ValueError('Un nouveau compte ne peut être que trialing, active ou sans droit')
        return v


class AccountSummary(BaseModel):
    id: int
    email: str
    name: Optional[str] = None
    company_name: Optional[str] = None
    role: UserRole
    entitlement_status: AccountSubscriptionStatus
    subscription_plan: Optional[SubscriptionPlan] = None
    trial_ends_at: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RecreateAccountResult(BaseModel):
    account: Any
    deleted_account_id: Optional[int] = None

    @property
    def replaced_existing(self) -> bool:
        return self.deleted_account_id is not None


# ==================== RAPPORTS DE BALAYAGE ====================

class SweepFailure(BaseModel):
    record_id: Optional[int] = None
    key: Optional[str] = None
    error_code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_error(cls, error, record_id: Optional[int] = None, key: Optional[str] = None) -> "SweepFailure":
        """Construit un échec de balayage depuis une MaintenanceError"""
        return cls(
            record_id=record_id,
            key=key,
            error_code=error.error_code.value,
            message=error.message,
            details=dict(error.details)
        )


class SweepReport(BaseModel):
    operation: str
    processed: int = 0
    succeeded: List[Any] = Field(default_factory=list)
    skipped: List[Any] = Field(default_factory=list)
    failures: List[SweepFailure] = Field(default_factory=list)
    counters: Dict[str, int] = Field(default_factory=dict)

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)


class DuplicateGroupReport(BaseModel):
    business_key: str
    duplicate_count: int
    kept_id: int
    removed_ids: List[int] = Field(default_factory=list)
    failures: List[SweepFailure] = Field(default_factory=list)


class ReconciliationReport(BaseModel):
    entity: str
    total_records: int = 0
    dry_run: bool = False
    groups: List[DuplicateGroupReport] = Field(default_factory=list)

    @property
    def duplicate_group_count(self) -> int:
        return len(self.groups)

    @property
    def removed_count(self) -> int:
        return sum(len(group.removed_ids) for group in self.groups)

    @property
    def failures(self) -> List[SweepFailure]:
        return [failure for group in self.groups for failure in group.failures]

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)


class NormalizationReport(BaseModel):
    base_origin: str
    prefix: str
    processed: int = 0
    updated_ids: List[int] = Field(default_factory=list)
    failures: List[SweepFailure] = Field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)


class EntitlementResetReport(BaseModel):
    accounts_reset: int


class PurgeReport(BaseModel):
    payments_deleted: int
    subscriptions_deleted: int
    accounts_reset: int


class SubscriptionConflict(BaseModel):
    account_id: int
    subscription_ids: List[int]
