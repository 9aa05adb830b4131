"""
Account creation helpers and upsert by external identity.
"""
import secrets
from typing import Optional

from jose import JWTError, jwt
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..auth import get_password_hash
from ..config import Settings
from ..database import utcnow
from ..models import LoginHistory, User
from ..models.user import ROLE_USER, random_rtc_uid
from .client_info import ClientSnapshot

RTC_UID_ATTEMPTS = 10


class IdentityError(Exception):
    """Base error for account lookups and creation."""


class DuplicateAccount(IdentityError):
    pass


class InvalidIdentityToken(IdentityError):
    pass


class AccountDeactivated(IdentityError):
    pass


def find_duplicate(db: Session, email: str, phone: Optional[str]) -> Optional[User]:
    conditions = [User.email == email.lower()]
    if phone:
        conditions.append(User.phone == phone)
    return db.query(User).filter(or_(*conditions)).first()


def unused_rtc_uid(db: Session) -> int:
    for _ in range(RTC_UID_ATTEMPTS):
        candidate = random_rtc_uid()
        if db.query(User.id).filter(User.rtc_uid == candidate).first() is None:
            return candidate
    raise IdentityError("Could not allocate a voice call id")


def create_account(db: Session, *, name: str, email: str, password: Optional[str],
                   phone: Optional[str] = None, user_name: Optional[str] = None,
                   role: str = ROLE_USER, client: Optional[ClientSnapshot] = None,
                   external_subject: Optional[str] = None, event: str = "register") -> User:
    """Create a user, recording the registration snapshot and a login-history row."""
    if find_duplicate(db, email, phone):
        raise DuplicateAccount("User already exists with this email or phone")

    client = client or ClientSnapshot()
    now = utcnow()
    user = User(
        name=name,
        user_name=user_name,
        email=email.lower(),
        phone=phone,
        hashed_password=get_password_hash(password or secrets.token_urlsafe(32)),
        role=role,
        rtc_uid=unused_rtc_uid(db),
        external_subject=external_subject,
        registered_ip=client.ip,
        registered_device=client.device,
        registered_location=client.location,
        last_ip=client.ip,
        last_device=client.device,
        last_location=client.location,
        last_login_at=now,
    )
    db.add(user)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise DuplicateAccount("User already exists with this email or phone")

    record_login(db, user, client, event=event)
    db.commit()
    db.refresh(user)
    return user


def record_login(db: Session, user: User, client: ClientSnapshot, event: str = "login") -> None:
    """Stamp the last-login snapshot and append a history row (caller commits)."""
    user.last_ip = client.ip
    user.last_device = client.device
    user.last_location = client.location
    user.last_login_at = utcnow()
    db.add(LoginHistory(
        user_id=user.id,
        ip=client.ip,
        device=client.device,
        location=client.location,
        user_agent=(client.user_agent or "")[:500],
        event=event,
    ))


def decode_identity_token(token: str, settings: Settings) -> dict:
    if not settings.external_identity_secret:
        raise InvalidIdentityToken("External sign-in is not configured")
    try:
        claims = jwt.decode(token, settings.external_identity_secret, algorithms=[settings.algorithm])
    except JWTError as e:
        raise InvalidIdentityToken(f"Invalid identity token: {e}")
    if not claims.get("sub") or not claims.get("email"):
        raise InvalidIdentityToken("Identity token must carry sub and email")
    return claims


def upsert_external_identity(db: Session, claims: dict,
                             client: Optional[ClientSnapshot] = None) -> tuple:
    """Find or create the account for an external identity.

    Matching is by email. An unlinked account gets the subject linked, an
    account linked to a different subject is a conflict, and deactivated
    accounts are refused. Returns ``(user, created)``.
    """
    subject = str(claims["sub"])
    email = str(claims["email"]).lower()
    client = client or ClientSnapshot()

    user = db.query(User).filter(User.email == email).first()
    if user is None:
        by_subject = db.query(User).filter(User.external_subject == subject).first()
        if by_subject is not None:
            raise DuplicateAccount("External identity already linked to another account")
        name = (claims.get("name") or email.split("@")[0])[:50]
        user = create_account(db, name=name, email=email, password=None, client=client,
                              external_subject=subject, event="external")
        return user, True

    if not user.is_active:
        raise AccountDeactivated("Invalid credentials or account deactivated")
    if user.external_subject and user.external_subject != subject:
        raise DuplicateAccount("Email already linked to another external identity")

    if not user.external_subject:
        user.external_subject = subject
    record_login(db, user, client, event="external")
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateAccount("External identity already linked to another account")
    db.refresh(user)
    return user, False
