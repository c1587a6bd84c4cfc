from __future__ import annotations

import hashlib
import logging
import re
import secrets
from datetime import datetime
from typing import Optional

from sqlalchemy import func as sa_func

from shared.db import AuthUser, Business, BusinessSession, OnboardingProgress, Profile

logger = logging.getLogger(__name__)

PIN_PATTERN = re.compile(r"[0-9]{4,6}")
WEAK_PIN_MESSAGE = "PIN does not meet security requirements"

# Digit-pattern checks below cover repeats and runs; these are the rest.
_COMMON_PINS = {"2580", "0852", "1004", "2000", "6969", "1122", "112233", "123123", "159753", "147258"}


class IdentityError(Exception):
    """Raised for any identity backend failure; the message is shown to callers."""


def _normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def hash_secret(secret: str) -> str:
    salt = secrets.token_hex(16)
    hashed = hashlib.sha256((salt + secret).encode("utf-8")).hexdigest()
    return f"{salt}${hashed}"


def verify_secret(secret: str, stored: Optional[str]) -> bool:
    if not stored or "$" not in stored:
        return False
    salt, hashed = stored.split("$", 1)
    check = hashlib.sha256((salt + secret).encode("utf-8")).hexdigest()
    return secrets.compare_digest(check, hashed)


def is_valid_pin_format(pin) -> bool:
    return isinstance(pin, str) and bool(PIN_PATTERN.fullmatch(pin))


def is_weak_pin(pin: str) -> bool:
    """
    Repeated digits (1111), consecutive runs either way (1234, 9876),
    alternating pairs (1212) and a short list of common PINs.
    """
    digits = [int(ch) for ch in pin]
    if len(set(digits)) == 1:
        return True
    steps = {b - a for a, b in zip(digits, digits[1:])}
    if steps in ({1}, {-1}):
        return True
    if len(pin) % 2 == 0 and pin == pin[:2] * (len(pin) // 2):
        return True
    return pin in _COMMON_PINS


def _check_new_user_metadata(metadata: dict) -> None:
    bin_value = metadata.get("bin")
    pin = metadata.get("pin")
    if not bin_value or not pin:
        raise IdentityError("Database error creating new user: Missing required user data: bin or pin")
    if not is_valid_pin_format(str(pin)) or is_weak_pin(str(pin)):
        raise IdentityError(f"Database error creating new user: {WEAK_PIN_MESSAGE}")


def handle_new_user(db, user: AuthUser) -> Profile:
    """
    Derive the business, profile and onboarding rows for a freshly created
    identity user. The first user of a BIN creates the business and becomes
    its owner; later users join as employees.
    """
    metadata = user.user_metadata or {}
    _check_new_user_metadata(metadata)
    bin_value = str(metadata["bin"])

    business = db.query(Business).filter_by(bin=bin_value).one_or_none()
    is_first_user = business is None
    if is_first_user:
        business = Business(
            bin=bin_value,
            business_name=metadata.get("business_name") or f"{bin_value} Business",
        )
        db.add(business)
        db.flush()

    profile = Profile(
        id=user.id,
        business_id=business.id,
        email=user.email,
        first_name=metadata.get("first_name"),
        last_name=metadata.get("last_name"),
        pin_hash=hash_secret(str(metadata["pin"])),
        role="owner" if is_first_user else "employee",
    )
    db.add(profile)

    if is_first_user:
        db.add(
            OnboardingProgress(
                business_id=business.id,
                user_id=user.id,
                current_step=1,
                user_setup_completed=True,
            )
        )
    db.flush()
    return profile


def create_user(
    db,
    *,
    email: str,
    password: str,
    user_metadata: Optional[dict] = None,
    email_confirm: bool = False,
) -> AuthUser:
    """
    Create an identity user and run the new-user hook in the same unit of work.
    Metadata is validated before anything is written, so a rejected user
    leaves the session clean.
    """
    normalized = _normalize_email(email)
    if not normalized or not password:
        raise IdentityError("Email and password are required")
    metadata = dict(user_metadata or {})

    existing = db.query(AuthUser).filter(sa_func.lower(AuthUser.email) == normalized).one_or_none()
    if existing:
        raise IdentityError("A user with this email address has already been registered")
    _check_new_user_metadata(metadata)

    user = AuthUser(
        email=normalized,
        password_hash=hash_secret(password),
        user_metadata=metadata,
        email_confirmed_at=datetime.utcnow() if email_confirm else None,
    )
    db.add(user)
    db.flush()
    handle_new_user(db, user)
    logger.info("Identity user created: %s", user.id)
    return user


def sign_in_with_password(db, email: str, password: str) -> AuthUser:
    normalized = _normalize_email(email)
    user = db.query(AuthUser).filter(sa_func.lower(AuthUser.email) == normalized).one_or_none()
    if not user or not verify_secret(password or "", user.password_hash):
        raise IdentityError("Invalid login credentials")
    return user


def find_profile_for_bin(db, user_id: str, bin_value: str) -> Optional[Profile]:
    return (
        db.query(Profile)
        .join(Business, Profile.business_id == Business.id)
        .filter(Profile.id == user_id, Business.bin == bin_value)
        .one_or_none()
    )


def verify_pin(db, user_id: str, input_pin: str) -> bool:
    profile = db.query(Profile).filter_by(id=user_id).one_or_none()
    if not profile:
        raise IdentityError("Profile not found")
    return verify_secret(str(input_pin), profile.pin_hash)


def touch_last_login(db, user_id: str) -> None:
    profile = db.query(Profile).filter_by(id=user_id).one_or_none()
    if profile:
        profile.last_login = datetime.utcnow()
        db.flush()


def record_session(
    db,
    *,
    user_id: str,
    business_id: Optional[str],
    token: str,
    expires_at: datetime,
    ip_address: Optional[str],
    user_agent: Optional[str],
) -> BusinessSession:
    session = BusinessSession(
        user_id=user_id,
        business_id=business_id,
        session_token=token,
        ip_address=ip_address,
        user_agent=user_agent[:255] if user_agent else None,
        expires_at=expires_at,
    )
    db.add(session)
    db.flush()
    return session


def get_user_for_session(db, token: str) -> AuthUser:
    if not token:
        raise IdentityError("Missing session token")
    session = db.query(BusinessSession).filter_by(session_token=token).one_or_none()
    if not session:
        raise IdentityError("Invalid session token")
    if session.expires_at <= datetime.utcnow():
        raise IdentityError("Session expired")
    user = db.query(AuthUser).filter_by(id=session.user_id).one_or_none()
    if not user:
        raise IdentityError("User not found")
    return user
