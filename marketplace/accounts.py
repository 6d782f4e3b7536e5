"""
Credential-based accounts for farmers and consumers.

Passwords are stored only as bcrypt hashes.
"""
import logging
from typing import Any, Dict, Optional

import bcrypt
from psycopg import errors as pg_errors

from .errors import InvalidInput
from .settings import BCRYPT_ROUNDS

logger = logging.getLogger(__name__)

ROLES = ("farmer", "consumer")


class EmailAlreadyExists(Exception):
    """Signup with an email that is already registered"""


class InvalidCredentials(Exception):
    """Unknown email or wrong password"""


class RoleMismatch(Exception):
    """Credentials are valid but belong to a user of another role"""


def hash_password(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # not a bcrypt hash
        return False


def signup(conn, name: str, email: str, password: str, role: str) -> int:
    if not (name and email and password and role):
        raise InvalidInput("All fields are required")
    if role not in ROLES:
        raise InvalidInput("Role must be farmer or consumer")

    email = email.strip().lower()
    existing = conn.execute(
        "SELECT id FROM user_credentials WHERE email = %s",
        (email,),
    ).fetchone()
    if existing:
        raise EmailAlreadyExists(email)

    try:
        row = conn.execute(
            "INSERT INTO user_credentials(name, email, password, role) VALUES (%s, %s, %s, %s) RETURNING id",
            (name.strip(), email, hash_password(password), role),
        ).fetchone()
    except pg_errors.UniqueViolation as exc:
        # lost a race with a concurrent signup
        raise EmailAlreadyExists(email) from exc

    logger.info("User %s signed up as %s", row["id"], role)
    return row["id"]


def login(conn, email: str, password: str, role: Optional[str] = None) -> Dict[str, Any]:
    if not (email and password):
        raise InvalidInput("Email and password are required")

    user = conn.execute(
        "SELECT id, password, role FROM user_credentials WHERE email = %s",
        (email.strip().lower(),),
    ).fetchone()
    if not user or not verify_password(password, user["password"]):
        raise InvalidCredentials()
    if role and role != user["role"]:
        raise RoleMismatch()

    return {"userId": user["id"], "userType": user["role"]}
