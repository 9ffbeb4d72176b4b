"""Password hashing with PBKDF2-HMAC-SHA256."""

import hashlib
import hmac
import secrets

ALGORITHM = "pbkdf2_sha256"
ITERATIONS = 260000
SALT_BYTES = 16


def hash_password(password: str, iterations: int = ITERATIONS) -> str:
    """
    Hash a password for storage.

    Returns:
        "pbkdf2_sha256$<iterations>$<salt hex>$<digest hex>"
    """
    salt = secrets.token_hex(SALT_BYTES)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), iterations)
    return f"{ALGORITHM}${iterations}${salt}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    """Constant-time check of a password against a stored hash."""
    try:
        algorithm, iterations, salt, expected = encoded.split("$", 3)
        iterations = int(iterations)
    except (AttributeError, ValueError):
        return False

    if algorithm != ALGORITHM:
        return False

    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), iterations)
    return hmac.compare_digest(digest.hex(), expected)
