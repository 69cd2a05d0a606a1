"""
Configuration centralisée des outils de maintenance InmoDash
Toutes les valeurs viennent de l'environnement (ou d'un fichier .env)
"""
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from constants import DEFAULT_ENTITLEMENT_DAYS
from error_handlers import ConfigurationError

# Charge les variables d'environnement depuis le fichier .env
load_dotenv()


@dataclass(frozen=True)
class MaintenanceSettings:
    """
    Paramètres injectés dans les services de maintenance
    """
    database_url: str
    backend_url: Optional[str] = None
    entitlement_days: int = DEFAULT_ENTITLEMENT_DAYS
    environment: str = "development"

    @classmethod
    def from_env(cls) -> "MaintenanceSettings":
        """
        Construit la configuration depuis les variables d'environnement
        """
        database_url = os.getenv("DATABASE_URL", "").strip()
        if not database_url:
            raise ConfigurationError(
                "La variable d'environnement DATABASE_URL est requise",
                details={"variable": "DATABASE_URL"}
            )

        raw_days = os.getenv("ENTITLEMENT_DAYS", str(DEFAULT_ENTITLEMENT_DAYS))
        try:
            entitlement_days = int(raw_days)
        except ValueError:
            raise ConfigurationError(
                "ENTITLEMENT_DAYS doit être un entier",
                details={"variable": "ENTITLEMENT_DAYS", "value": raw_days}
            )
        if entitlement_days <= 0:
            raise ConfigurationError(
                "ENTITLEMENT_DAYS doit être positif",
                details={"variable": "ENTITLEMENT_DAYS", "value": raw_days}
            )

        return cls(
            database_url=database_url,
            backend_url=normalize_origin(os.getenv("BACKEND_URL")),
            entitlement_days=entitlement_days,
            environment=os.getenv("ENVIRONMENT", "development")
        )

    def require_backend_url(self) -> str:
        """Retourne l'origine publique du backend, requise pour la réécriture des URLs"""
        if not self.backend_url:
            raise ConfigurationError(
                "La variable d'environnement BACKEND_URL est requise",
                details={"variable": "BACKEND_URL"}
            )
        return self.backend_url

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def normalize_origin(origin: Optional[str]) -> Optional[str]:
    """
    Nettoie une origine (espaces, slash final) pour une concaténation directe
    avec un chemin commençant par "/"
    """
    if origin is None:
        return None
    cleaned = origin.strip().rstrip("/")
    return cleaned or None
