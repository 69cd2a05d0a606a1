"""
Enums partagés pour les outils de maintenance InmoDash
Centralisation de toutes les énumérations pour éviter la duplication
"""
import enum


class UserRole(str, enum.Enum):
    """Rôles des comptes"""
    standard = "standard"
    admin = "admin"


class AccountSubscriptionStatus(str, enum.Enum):
    """Statut des droits porté par le compte (NULL en base = none)"""
    none = "none"
    trialing = "trialing"
    active = "active"
    pending = "pending"
    expired = "expired"
    cancelled = "cancelled"


class SubscriptionPlan(str, enum.Enum):
    """Plans d'abonnement"""
    basic = "basic"
    professional = "professional"
    enterprise = "enterprise"


class SubscriptionStatus(str, enum.Enum):
    """Statuts d'un abonnement (machine à états)"""
    pending = "pending"       # Checkout initié
    active = "active"         # Paiement confirmé
    cancelled = "cancelled"   # Terminal
    expired = "expired"       # Terminal


class PaymentStatus(str, enum.Enum):
    """Statuts de paiement"""
    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class ActionType(str, enum.Enum):
    """Types d'actions pour l'audit logging"""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    BULK_UPDATE = "BULK_UPDATE"
    BULK_DELETE = "BULK_DELETE"
    ERROR = "ERROR"


class EntityType(str, enum.Enum):
    """Types d'entités dans l'application"""
    USER = "USER"
    SUBSCRIPTION = "SUBSCRIPTION"
    PAYMENT = "PAYMENT"
    APARTMENT = "APARTMENT"
    DOCUMENT = "DOCUMENT"


class ErrorCode(str, enum.Enum):
    """Codes d'erreur remontés par les opérations de maintenance"""
    NOT_FOUND = "NOT_FOUND"
    DUPLICATE_IDENTITY = "DUPLICATE_IDENTITY"
    FOREIGN_KEY_VIOLATION = "FOREIGN_KEY_VIOLATION"
    STORE_ERROR = "STORE_ERROR"
    HASH_FAILURE = "HASH_FAILURE"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    SUBSCRIPTION_CONFLICT = "SUBSCRIPTION_CONFLICT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
