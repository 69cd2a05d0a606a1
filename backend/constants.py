"""
Constantes centralisées pour les outils de maintenance InmoDash
Standardisation des valeurs et conventions utilisées par les balayages
"""

# ==================== CONFIGURATION GÉNÉRALE ====================

APP_NAME = "InmoDash Maintenance"
APP_VERSION = "1.0.0"

# ==================== DROITS ET ABONNEMENTS ====================

# Durée par défaut de la fenêtre d'essai / d'abonnement à la création d'un compte
DEFAULT_ENTITLEMENT_DAYS = 30

# Durée d'un cycle de facturation (mensuel)
BILLING_PERIOD_DAYS = 30

DEFAULT_SUBSCRIPTION_PLAN = "professional"
DEFAULT_SUBSCRIPTION_AMOUNT = 15
DEFAULT_CURRENCY = "ARS"

# Champs de droits d'un compte remis à NULL lors d'une réinitialisation
ENTITLEMENT_FIELDS = (
    "subscription_status",
    "subscription_plan",
    "subscription_start_date",
    "subscription_end_date",
    "trial_ends_at",
    "last_payment_date",
    "next_payment_date",
)

# ==================== RÉFÉRENCES DE FICHIERS ====================

# Préfixe des chemins relatifs à la racine du backend
RELATIVE_UPLOAD_PREFIX = "/uploads/"

# ==================== SÉCURITÉ ====================

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128

# Fragments de noms de colonnes jamais écrits dans les logs ni l'audit
SENSITIVE_FIELD_MARKERS = ("password", "hash", "token", "secret")

# ==================== MESSAGES D'ERREUR STANDARDS ====================

ERROR_MESSAGES = {
    "NOT_FOUND": "Enregistrement introuvable",
    "DUPLICATE_IDENTITY": "Un compte existe déjà pour cet email",
    "FOREIGN_KEY_VIOLATION": "Impossible de supprimer: des éléments dépendants existent",
    "STORE_ERROR": "Erreur de la base de données",
    "HASH_FAILURE": "Échec du hachage du mot de passe",
    "CONFIGURATION_ERROR": "Configuration manquante ou invalide",
    "INVALID_TRANSITION": "Transition de statut d'abonnement interdite",
    "SUBSCRIPTION_CONFLICT": "Un abonnement en attente ou actif existe déjà",
    "VALIDATION_ERROR": "Données invalides",
}
