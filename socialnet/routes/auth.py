"""
Authentication routes for registration, login and token management.
"""
from fastapi import APIRouter, Depends, HTTPException, status, Request
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from ..database import get_db
from ..deps import get_geolocator
from ..limiter import limiter
from ..models import User
from ..models.user import ROLE_ADMIN
from ..responses import success, conflict, forbidden, unauthorized
from ..schemas.auth import (
    AdminCreate,
    ExternalLogin,
    ProfileUpdate,
    RefreshRequest,
    UserCreate,
    UserLogin,
)
from ..auth import (
    verify_password,
    get_required_user,
    refresh_access_token,
    token_response,
)
from ..config import get_settings
from ..logging_config import api_logger
from ..services.client_info import snapshot_request
from ..services.geolocation import GeoLocator
from ..services.identity import (
    AccountDeactivated,
    DuplicateAccount,
    InvalidIdentityToken,
    create_account,
    decode_identity_token,
    record_login,
    upsert_external_identity,
)

settings = get_settings()

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])

INVALID_LOGIN = "Invalid credentials or account deactivated"


def _register(request: Request, user_data: UserCreate, role: str, db: Session, geolocator: GeoLocator):
    client = snapshot_request(request, geolocator)
    try:
        user = create_account(
            db,
            name=user_data.name,
            user_name=user_data.user_name,
            email=user_data.email,
            phone=user_data.phone,
            password=user_data.password,
            role=role,
            client=client,
        )
    except DuplicateAccount as e:
        conflict(str(e))

    api_logger.info("User registered", user_id=user.id, role=role, ip=client.ip)
    data = {"user": user.to_dict(include_private=True)}
    data.update(token_response(user))
    return success(data, "User registered successfully")


@router.post("/register", status_code=201)
@limiter.limit(settings.register_rate_limit)
def register(
    request: Request,
    user_data: UserCreate,
    db: Session = Depends(get_db),
    geolocator: GeoLocator = Depends(get_geolocator),
):
    """Register a new user account."""
    return _register(request, user_data, "USER", db, geolocator)


@router.post("/register-admin", status_code=201)
@limiter.limit(settings.register_rate_limit)
def register_admin(
    request: Request,
    admin_data: AdminCreate,
    db: Session = Depends(get_db),
    geolocator: GeoLocator = Depends(get_geolocator),
):
    """Register an administrator; requires the configured admin secret."""
    if not settings.admin_secret or admin_data.secret != settings.admin_secret:
        forbidden("Invalid admin secret")
    return _register(request, admin_data, ROLE_ADMIN, db, geolocator)


def _login(request: Request, email: str, password: str, db: Session, geolocator: GeoLocator):
    user = db.query(User).filter(User.email == email.lower()).first()
    if not user or not user.is_active or not verify_password(password, user.hashed_password):
        api_logger.warning("Login failed", email=email)
        unauthorized(INVALID_LOGIN)

    client = snapshot_request(request, geolocator)
    record_login(db, user, client)
    db.commit()
    db.refresh(user)

    data = {"user": user.to_dict()}
    data.update(token_response(user))
    return success(data, "Login successful")


@router.post("/login")
@limiter.limit(settings.login_rate_limit)
def login(
    request: Request,
    credentials: UserLogin,
    db: Session = Depends(get_db),
    geolocator: GeoLocator = Depends(get_geolocator),
):
    """Login with JSON body (email/password)."""
    return _login(request, credentials.email, credentials.password, db, geolocator)


@router.post("/login/form")
@limiter.limit(settings.login_rate_limit)
def login_form(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
    geolocator: GeoLocator = Depends(get_geolocator),
):
    """Login with OAuth2 form (username is the email), for the interactive docs."""
    result = _login(request, form_data.username, form_data.password, db, geolocator)
    result["access_token"] = result["data"]["token"]
    result["token_type"] = "bearer"
    return result


@router.post("/external")
@limiter.limit(settings.login_rate_limit)
def external_login(
    request: Request,
    body: ExternalLogin,
    db: Session = Depends(get_db),
    geolocator: GeoLocator = Depends(get_geolocator),
):
    """Sign in with an externally issued identity token, creating the account if needed."""
    try:
        claims = decode_identity_token(body.id_token, settings)
    except InvalidIdentityToken as e:
        unauthorized(str(e))

    try:
        user, created = upsert_external_identity(db, claims, snapshot_request(request, geolocator))
    except AccountDeactivated as e:
        unauthorized(str(e))
    except DuplicateAccount as e:
        conflict(str(e))

    data = {"user": user.to_dict(), "created": created}
    data.update(token_response(user))
    return success(data, "Account created" if created else "Login successful")


@router.post("/refresh")
@limiter.limit(settings.refresh_rate_limit)
def refresh_tokens(request: Request, refresh_request: RefreshRequest, db: Session = Depends(get_db)):
    """Get new access and refresh tokens using a valid refresh token."""
    tokens = refresh_access_token(refresh_request.refresh_token, db)
    if not tokens:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token",
        )

    access_token, refresh_token = tokens
    return success({"token": access_token, "refresh_token": refresh_token, "token_type": "bearer"})


@router.get("/me")
def get_me(current_user: User = Depends(get_required_user)):
    """Get current authenticated user."""
    return success({"user": current_user.to_dict(include_private=True)})


@router.put("/update-profile")
def update_profile(
    update: ProfileUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Update name, user name, phone or avatar."""
    changes = update.model_dump(exclude_unset=True)
    phone = changes.get("phone")
    if phone and phone != current_user.phone:
        taken = db.query(User.id).filter(User.phone == phone, User.id != current_user.id).first()
        if taken:
            conflict("Phone number already in use")

    for key, value in changes.items():
        setattr(current_user, key, value)
    db.commit()
    db.refresh(current_user)
    return success({"user": current_user.to_dict()}, "Profile updated successfully")


@router.post("/logout")
def logout(current_user: User = Depends(get_required_user)):
    """
    Logout the current user.

    Tokens are stateless; the client discards them.
    """
    return success(message="Logged out successfully")
