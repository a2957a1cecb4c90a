# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

WHY: Orders and admin status changes must be attributable to an account.
Uses bcrypt for password hashing and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters with upper, lower, digit and special char
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt

from ..extensions import db
from ..models import User
from ..models.auth import ROLE_ADMIN, ROLE_USER
from app.time_utils import utcnow


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str, *, rounds: int = 12) -> str:
    """Hash password using bcrypt. Password is validated for strength first."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """bcrypt.checkpw is timing-safe; malformed hashes simply fail."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    email: str,
    name: str,
    password: str,
    *,
    role: str = ROLE_USER,
    phone: str | None = None,
    rounds: int = 12,
) -> User:
    """
    Create a shop account.

    Raises ValueError on duplicate email or unknown role,
    PasswordValidationError on a weak password.
    """
    if role not in (ROLE_USER, ROLE_ADMIN):
        raise ValueError(f"Unknown role: {role}")

    email = email.strip().lower()
    if db.session.query(User).filter_by(email=email).first():
        raise ValueError(f"Email {email} already registered")

    user = User(
        email=email,
        name=name.strip(),
        phone=phone,
        password_hash=hash_password(password, rounds=rounds),
        role=role,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(email: str, password: str) -> User | None:
    """Return the active user for these credentials, or None."""
    user = db.session.query(User).filter_by(email=(email or "").strip().lower()).first()
    if not user or not user.is_active:
        return None
    if not verify_password(password or "", user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user
