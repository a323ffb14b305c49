from fastapi import APIRouter, HTTPException, Request, status
from pymongo.errors import DuplicateKeyError
from database import database
from models import (
    SignupRequest, SigninRequest, AdminSignupRequest, ForgotPasswordRequest, ResetPasswordRequest,
    UserRole, AuditAction,
)
from auth import (
    verify_password, hash_password, create_access_token, validate_password_strength,
    normalize_phone_number, generate_secure_token, hash_token,
)
from middleware import require_auth
from config import admin_signup_enabled, get_frontend_url, get_password_reset_ttl_minutes, password_reset_links_logged
from utils.audit import create_audit_log
from utils.rate_limiter import (
    rate_limiter, SIGNIN_MAX_ATTEMPTS, SIGNIN_WINDOW_MINUTES, RESET_MAX_ATTEMPTS, RESET_WINDOW_MINUTES,
)
from utils.serialization import to_json_safe
from datetime import datetime, timedelta, timezone
import logging
import uuid

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/auth", tags=["auth"])
admin_router = APIRouter(prefix="/api/admin/auth", tags=["admin-auth"])


def _public_user(user: dict) -> dict:
    return to_json_safe({k: v for k, v in user.items() if k != "passwordHash"})


def _token_for(user: dict, role: UserRole) -> str:
    return create_access_token({
        "user_id": user["uid"],
        "email": user["email"],
        "role": role.value,
    })


async def _create_identity(email: str, password: str, display_name: str = None, phone: str = None) -> dict:
    """Insert the identity record; raises 400 when the email is taken."""
    valid, message = validate_password_strength(password)
    if not valid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)

    db = database.get_db()
    now = datetime.now(timezone.utc)
    user = {
        "uid": str(uuid.uuid4()),
        "email": email.lower(),
        "displayName": display_name,
        "photoURL": None,
        "phoneNumber": phone,
        "providerData": [{"providerId": "password", "uid": email.lower(), "email": email.lower()}],
        "passwordHash": hash_password(password),
        "creationTime": now,
        "lastSignInTime": now,
    }
    try:
        await db.users.insert_one(user)
    except DuplicateKeyError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="An account with this email already exists"
        )
    user.pop("_id", None)
    return user


async def _authenticate(request: Request, credentials: SigninRequest) -> dict:
    """Rate-limited password check shared by user and admin sign-in."""
    email = credentials.email.lower()
    allowed, error_message = await rate_limiter.check_rate_limit(
        f"signin:{email}", SIGNIN_MAX_ATTEMPTS, SIGNIN_WINDOW_MINUTES
    )
    if not allowed:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=error_message)

    db = database.get_db()
    user = await db.users.find_one({"email": email}, {"_id": 0})
    if not user or not verify_password(credentials.password, user.get("passwordHash") or ""):
        await create_audit_log(
            action=AuditAction.USER_LOGIN_FAILED,
            actor_id=user["uid"] if user else None,
            metadata={"email": email, "reason": "invalid_credentials"},
            ip_address=request.client.host if request.client else None,
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials"
        )

    rate_limiter.reset(f"signin:{email}")
    now = datetime.now(timezone.utc)
    await db.users.update_one({"uid": user["uid"]}, {"$set": {"lastSignInTime": now}})
    user["lastSignInTime"] = now
    return user


# ============================================================================
# User auth
# ============================================================================

@router.post("/signup")
async def signup(payload: SignupRequest):
    """Create an account and its profile."""
    phone = normalize_phone_number(payload.phone)
    if not phone:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Please enter a valid phone number"
        )

    try:
        user = await _create_identity(
            payload.email,
            payload.password,
            display_name=f"{payload.firstName.strip()} {payload.lastName.strip()}",
            phone=phone,
        )

        db = database.get_db()
        await db.profiles.insert_one({
            "uid": user["uid"],
            "firstName": payload.firstName.strip(),
            "lastName": payload.lastName.strip(),
            "email": user["email"],
            "phone": phone,
            "createdAt": datetime.now(timezone.utc),
        })

        await create_audit_log(
            action=AuditAction.USER_SIGNUP,
            actor_role=UserRole.ROLE_USER,
            actor_id=user["uid"],
            user_id=user["uid"],
        )
        logger.info(f"User signed up: {user['uid']}")

        return {
            "access_token": _token_for(user, UserRole.ROLE_USER),
            "token_type": "bearer",
            "user": _public_user(user),
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Signup error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create account"
        )


@router.post("/signin")
async def signin(request: Request, credentials: SigninRequest):
    """User sign-in."""
    try:
        user = await _authenticate(request, credentials)
        await create_audit_log(
            action=AuditAction.USER_LOGIN_SUCCESS,
            actor_role=UserRole.ROLE_USER,
            actor_id=user["uid"],
            user_id=user["uid"],
        )
        return {
            "access_token": _token_for(user, UserRole.ROLE_USER),
            "token_type": "bearer",
            "user": _public_user(user),
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Signin error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Sign in failed"
        )


@router.get("/me")
async def me(request: Request):
    """Current user with profile."""
    user = await require_auth(request)
    db = database.get_db()
    account = await db.users.find_one({"uid": user["user_id"]}, {"_id": 0, "passwordHash": 0})
    if not account:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    profile = await db.profiles.find_one({"uid": user["user_id"]}, {"_id": 0})
    return to_json_safe({**account, "profile": profile, "role": user.get("role")})


# ============================================================================
# Password reset
# ============================================================================

FORGOT_PASSWORD_MESSAGE = "If an account exists for this email, a password reset link has been sent."


def _as_utc(value: datetime) -> datetime:
    """Mongo returns naive UTC datetimes unless the client is tz_aware."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


@router.post("/forgot-password")
async def forgot_password(request: Request, payload: ForgotPasswordRequest):
    """Issue a single-use reset token. The response never reveals whether the email exists."""
    email = payload.email.lower()
    allowed, error_message = await rate_limiter.check_rate_limit(
        f"reset:{email}", RESET_MAX_ATTEMPTS, RESET_WINDOW_MINUTES
    )
    if not allowed:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=error_message)

    try:
        db = database.get_db()
        user = await db.users.find_one({"email": email}, {"_id": 0, "uid": 1, "email": 1})
        if not user:
            logger.info("forgot_password unknown email")
            return {"message": FORGOT_PASSWORD_MESSAGE}

        now = datetime.now(timezone.utc)
        # Only the newest link works
        await db.password_tokens.update_many(
            {"uid": user["uid"], "used_at": None, "revoked_at": None},
            {"$set": {"revoked_at": now}},
        )

        raw_token = generate_secure_token()
        await db.password_tokens.insert_one({
            "token_hash": hash_token(raw_token),
            "uid": user["uid"],
            "purpose": "password_reset",
            "created_at": now,
            "expires_at": now + timedelta(minutes=get_password_reset_ttl_minutes()),
            "used_at": None,
            "revoked_at": None,
        })

        reset_link = f"{get_frontend_url()}/reset-password?token={raw_token}"
        if password_reset_links_logged():
            logger.info(f"Password reset link for {email}: {reset_link}")
        else:
            logger.info("Password reset token issued uid=%s token_prefix=%s", user["uid"], raw_token[:6])

        await create_audit_log(
            action=AuditAction.PASSWORD_RESET_REQUESTED,
            actor_role=UserRole.ROLE_USER,
            actor_id=user["uid"],
            user_id=user["uid"],
            ip_address=request.client.host if request.client else None,
        )
        return {"message": FORGOT_PASSWORD_MESSAGE}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Forgot password error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not start password reset"
        )


@router.post("/reset-password")
async def reset_password(payload: ResetPasswordRequest):
    """Set a new password with a reset token from /forgot-password."""
    db = database.get_db()
    token_hash_value = hash_token(payload.token)
    token_prefix = payload.token[:6] if len(payload.token) >= 6 else "short"

    reset_token = await db.password_tokens.find_one({"token_hash": token_hash_value}, {"_id": 0})
    if not reset_token:
        logger.warning("reset_password invalid token token_prefix=%s reason=unknown", token_prefix)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired password reset link")

    now = datetime.now(timezone.utc)
    if reset_token.get("used_at"):
        logger.warning("reset_password invalid token token_prefix=%s reason=used", token_prefix)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="This password reset link has already been used")
    if reset_token.get("revoked_at"):
        logger.warning("reset_password invalid token token_prefix=%s reason=revoked", token_prefix)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="This password reset link has been replaced by a newer one")
    if now > _as_utc(reset_token["expires_at"]):
        logger.warning("reset_password invalid token token_prefix=%s reason=expired", token_prefix)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="This password reset link has expired")

    valid, message = validate_password_strength(payload.password)
    if not valid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)

    user = await db.users.find_one({"uid": reset_token["uid"]}, {"_id": 0, "uid": 1, "email": 1})
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    await db.users.update_one({"uid": user["uid"]}, {"$set": {"passwordHash": hash_password(payload.password)}})
    await db.password_tokens.update_one({"token_hash": token_hash_value}, {"$set": {"used_at": now}})
    rate_limiter.reset(f"signin:{user['email']}")

    await create_audit_log(
        action=AuditAction.PASSWORD_RESET_COMPLETED,
        actor_role=UserRole.ROLE_USER,
        actor_id=user["uid"],
        user_id=user["uid"],
    )
    logger.info(f"Password reset completed for user {user['uid']}")
    return {"message": "Password has been reset. You can now sign in."}


# ============================================================================
# Admin auth
# ============================================================================

@admin_router.post("/signup")
async def admin_signup(payload: AdminSignupRequest):
    """Register an admin account. Only available while ADMIN_SIGNUP_ENABLED=true."""
    if not admin_signup_enabled():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin sign-up is disabled"
        )
    try:
        user = await _create_identity(payload.email, payload.password, display_name=payload.displayName)
        db = database.get_db()
        await db.admins.update_one(
            {"email": user["email"]},
            {"$setOnInsert": {"email": user["email"], "role": "admin", "createdAt": datetime.now(timezone.utc)}},
            upsert=True,
        )
        await create_audit_log(
            action=AuditAction.ADMIN_SIGNUP,
            actor_role=UserRole.ROLE_ADMIN,
            actor_id=user["uid"],
            user_id=user["uid"],
        )
        logger.info(f"Admin signed up: {user['email']}")
        return {
            "access_token": _token_for(user, UserRole.ROLE_ADMIN),
            "token_type": "bearer",
            "user": _public_user(user),
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Admin signup error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create admin account"
        )


@admin_router.post("/signin")
async def admin_signin(request: Request, credentials: SigninRequest):
    """Admin sign-in: valid credentials and an entry in the admins collection."""
    try:
        user = await _authenticate(request, credentials)
        db = database.get_db()
        admin = await db.admins.find_one({"email": user["email"]}, {"_id": 0})
        if not admin:
            await create_audit_log(
                action=AuditAction.USER_LOGIN_FAILED,
                actor_id=user["uid"],
                metadata={"email": user["email"], "reason": "not_admin"},
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not authorized as admin"
            )
        await create_audit_log(
            action=AuditAction.USER_LOGIN_SUCCESS,
            actor_role=UserRole.ROLE_ADMIN,
            actor_id=user["uid"],
            user_id=user["uid"],
        )
        return {
            "access_token": _token_for(user, UserRole.ROLE_ADMIN),
            "token_type": "bearer",
            "user": _public_user(user),
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Admin signin error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Sign in failed"
        )
