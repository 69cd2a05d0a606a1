import bcrypt
from argon2 import PasswordHasher
from argon2.exceptions import HashingError, InvalidHashError, VerificationError

from error_handlers import HashFailureError

# Paramètres par défaut d'argon2id (coûteux en mémoire)
password_hasher = PasswordHasher()

BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")


def get_password_hash(password: str) -> str:
    """Hash un mot de passe avec argon2id"""
    try:
        return password_hasher.hash(password)
    except HashingError as e:
        # Le message d'argon2 ne contient jamais le mot de passe
        raise HashFailureError(details={"reason": str(e)}) from e


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Vérifie un mot de passe contre son hash argon2 (ou bcrypt hérité)"""
    if not hashed_password:
        return False

    if hashed_password.startswith(BCRYPT_PREFIXES):
        try:
            return bcrypt.checkpw(plain_password.encode('utf-8'), hashed_password.encode('utf-8'))
        except ValueError:
            return False

    try:
        return password_hasher.verify(hashed_password, plain_password)
    except (VerificationError, InvalidHashError):
        return False


def needs_rehash(hashed_password: str) -> bool:
    """Indique si le hash doit être régénéré (bcrypt hérité ou paramètres obsolètes)"""
    if hashed_password.startswith(BCRYPT_PREFIXES):
        return True
    try:
        return password_hasher.check_needs_rehash(hashed_password)
    except InvalidHashError:
        return True
