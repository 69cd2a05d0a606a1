"""Tests de la configuration lue depuis l'environnement."""

import pytest

from app_config import MaintenanceSettings, normalize_origin
from error_handlers import ConfigurationError


@pytest.fixture
def clean_env(monkeypatch):
    for variable in ("DATABASE_URL", "BACKEND_URL", "ENTITLEMENT_DAYS", "ENVIRONMENT"):
        monkeypatch.delenv(variable, raising=False)
    return monkeypatch


class TestFromEnv:

    def test_database_url_required(self, clean_env) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            MaintenanceSettings.from_env()
        assert exc_info.value.details == {"variable": "DATABASE_URL"}

    def test_defaults(self, clean_env) -> None:
        clean_env.setenv("DATABASE_URL", "sqlite:///maintenance.db")
        settings = MaintenanceSettings.from_env()
        assert settings.database_url == "sqlite:///maintenance.db"
        assert settings.backend_url is None
        assert settings.entitlement_days == 30
        assert not settings.is_production

    def test_backend_url_trailing_slash_removed(self, clean_env) -> None:
        clean_env.setenv("DATABASE_URL", "sqlite://")
        clean_env.setenv("BACKEND_URL", " https://api.inmodash.com/ ")
        settings = MaintenanceSettings.from_env()
        assert settings.backend_url == "https://api.inmodash.com"
        assert settings.require_backend_url() == "https://api.inmodash.com"

    @pytest.mark.parametrize("raw", ["abc", "0", "-5"])
    def test_invalid_entitlement_days(self, clean_env, raw) -> None:
        clean_env.setenv("DATABASE_URL", "sqlite://")
        clean_env.setenv("ENTITLEMENT_DAYS", raw)
        with pytest.raises(ConfigurationError):
            MaintenanceSettings.from_env()

    def test_production_flag(self, clean_env) -> None:
        clean_env.setenv("DATABASE_URL", "sqlite://")
        clean_env.setenv("ENVIRONMENT", "production")
        assert MaintenanceSettings.from_env().is_production


def test_require_backend_url_missing() -> None:
    settings = MaintenanceSettings(database_url="sqlite://")
    with pytest.raises(ConfigurationError):
        settings.require_backend_url()


@pytest.mark.parametrize("origin, expected", [
    (None, None),
    ("", None),
    ("   ", None),
    ("http://localhost:3001", "http://localhost:3001"),
    ("http://localhost:3001//", "http://localhost:3001"),
])
def test_normalize_origin(origin, expected) -> None:
    assert normalize_origin(origin) == expected
