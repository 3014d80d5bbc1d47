# Overview: Account creation, password hashing and credential checks.

"""
Authentication Service

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, 12 by default)
- Minimum 8 characters required
- Must contain uppercase, lowercase, digit, and special char
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt
from flask import current_app

from ..errors import AuthenticationError, ConflictError, ValidationError
from ..extensions import db
from ..models import User
from ..models.auth import ROLE_CUSTOMER, ROLES
from storefront.time_utils import utcnow


EMAIL_RE = re.compile(r"^\S+@\S+\.\S+$")


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""


def validate_password_strength(password: str) -> None:
    """
    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)
    """
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


def hash_password(password: str) -> str:
    """Validate strength, then bcrypt-hash the password."""
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=rounds))
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash in the database
        return False


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def create_user(
    first_name: str,
    last_name: str,
    email: str,
    password: str,
    role: str = ROLE_CUSTOMER,
) -> User:
    """
    Create a user account.

    Raises:
        ValidationError: missing names, malformed email, weak password, unknown role
        ConflictError: email already registered
    """
    first_name = (first_name or "").strip()
    last_name = (last_name or "").strip()
    email = normalize_email(email)

    errors = {}
    if not first_name or len(first_name) > 50:
        errors["first_name"] = "required, at most 50 characters"
    if not last_name or len(last_name) > 50:
        errors["last_name"] = "required, at most 50 characters"
    if not EMAIL_RE.match(email):
        errors["email"] = "invalid email address"
    if role not in ROLES:
        errors["role"] = f"must be one of {', '.join(ROLES)}"
    if errors:
        raise ValidationError("Invalid account details", details=errors)

    if db.session.query(User).filter_by(email=email).first():
        raise ConflictError("Email already registered")

    user = User(
        first_name=first_name,
        last_name=last_name,
        email=email,
        password_hash=hash_password(password or ""),
        role=role,
    )

    db.session.add(user)
    db.session.commit()
    return user


def authenticate(email: str, password: str) -> User:
    """
    Check credentials and stamp last_login_at.

    Raises AuthenticationError with one message for every failure so the
    response does not reveal which accounts exist.
    """
    user = db.session.query(User).filter(
        User.email == normalize_email(email),
        User.is_active.is_(True),
    ).first()

    if not user or not verify_password(password or "", user.password_hash):
        raise AuthenticationError("Invalid email or password")

    user.last_login_at = utcnow()
    db.session.commit()
    return user


PHONE_RE = re.compile(r"^\+?[\d\s-]{10,}$")

DETAIL_FIELDS = {
    "first_name": "first_name",
    "firstName": "first_name",
    "last_name": "last_name",
    "lastName": "last_name",
    "email": "email",
    "phone": "phone",
}


def update_details(user: User, data: dict) -> User:
    """
    Partial update of names, email and phone.

    Only keys present in `data` are touched; an empty phone clears it.

    Raises:
        ValidationError: no recognised field, or a value fails its check
        ConflictError: email belongs to another account
    """
    changes = {}
    for key, value in (data or {}).items():
        if key in DETAIL_FIELDS:
            changes[DETAIL_FIELDS[key]] = value
    if not changes:
        raise ValidationError(
            "No updatable fields provided",
            details={"fields": ["first_name", "last_name", "email", "phone"]},
        )

    errors = {}
    for field in ("first_name", "last_name"):
        if field in changes:
            value = changes[field].strip() if isinstance(changes[field], str) else ""
            if not value or len(value) > 50:
                errors[field] = "required, at most 50 characters"
            changes[field] = value
    if "email" in changes:
        changes["email"] = normalize_email(changes["email"] if isinstance(changes["email"], str) else "")
        if not EMAIL_RE.match(changes["email"]):
            errors["email"] = "invalid email address"
    if "phone" in changes:
        phone = changes["phone"]
        if phone is None or phone == "":
            changes["phone"] = None
        elif not isinstance(phone, str) or len(phone.strip()) > 32 or not PHONE_RE.match(phone.strip()):
            errors["phone"] = "invalid phone number"
        else:
            changes["phone"] = phone.strip()
    if errors:
        raise ValidationError("Invalid account details", details=errors)

    if "email" in changes and changes["email"] != user.email:
        taken = db.session.query(User.id).filter(
            User.email == changes["email"],
            User.id != user.id,
        ).first()
        if taken:
            raise ConflictError("Email already in use")

    for field, value in changes.items():
        setattr(user, field, value)
    db.session.commit()
    return user


def change_password(user: User, current_password: str, new_password: str) -> User:
    """
    Replace the password after re-checking the current one.

    Session revocation is left to the caller, which knows the token in use.

    Raises:
        ValidationError: missing fields, weak or unchanged new password
        AuthenticationError: current password is wrong
    """
    if not current_password or not new_password:
        raise ValidationError("current_password and new_password required")

    if not verify_password(current_password, user.password_hash):
        raise AuthenticationError("Current password is incorrect")

    if current_password == new_password:
        raise ValidationError("New password must differ from the current password")

    user.password_hash = hash_password(new_password)
    db.session.commit()
    return user
