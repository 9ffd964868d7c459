import logging
from datetime import datetime, timedelta, timezone

import jwt
from core.config import settings
from core.logging_setup import log_step
from cryptography.fernet import Fernet, InvalidToken
from fastapi import Depends, Header, HTTPException, status
from models.calendar import UserProfile, UserRole
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

LOG_STEP = "SESSION"

TOKEN_ISSUER = "school-auth-service"
TOKEN_AUDIENCE = "calendar-service"


class TokenPayload(BaseModel):
    """Claims carried by the bearer token the school auth service issues."""

    iss: str
    iat: int
    exp: int
    sub: str
    aud: str
    role: UserRole
    school_id: str | None = None
    branch_id: str | None = None
    branch_name: str | None = None
    class_id: str | None = None
    grade: str | None = None
    email: str | None = None
    auth_code: str | None = None
    is_admin: bool = False
    is_demo: bool = False
    permissions: list[str] = []


def generate_jwt_token(
    profile: UserProfile, expires_delta: timedelta = timedelta(hours=1)
) -> str:
    """
    Generates an HS256 token describing a user profile.
    """
    now = datetime.now(timezone.utc)

    payload = {
        "iss": TOKEN_ISSUER,
        "iat": now,
        "exp": now + expires_delta,
        "sub": profile.id,
        "aud": TOKEN_AUDIENCE,
        "role": profile.role.value,
        "school_id": profile.school_id,
        "branch_id": profile.branch_id,
        "branch_name": profile.branch_name,
        "class_id": profile.class_id,
        "grade": profile.grade,
        "email": profile.email,
        "auth_code": profile.auth_token,
        "is_admin": profile.is_admin,
        "is_demo": profile.is_demo,
        "permissions": sorted(profile.permissions),
    }

    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm="HS256")


async def get_token_from_header(
    authorization: str | None = Header(None),
) -> str:
    """Extracts the Bearer token from the Authorization header."""
    if not authorization:
        with log_step(LOG_STEP):
            logger.warning("Auth failed: No Authorization header.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header",
        )

    parts = authorization.split()
    if len(parts) != 2 or parts[0] != "Bearer":
        with log_step(LOG_STEP):
            logger.warning("Auth failed: Invalid header format.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Authorization header format. Expected 'Bearer <token>'",
        )
    return parts[1]


def get_current_user(
    token: str = Depends(get_token_from_header),
) -> UserProfile:
    """
    Validates the bearer token and turns its claims into a UserProfile.
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=["HS256"],
            issuer=TOKEN_ISSUER,
            audience=TOKEN_AUDIENCE,
        )
        claims = TokenPayload(**payload)
    except jwt.ExpiredSignatureError:
        with log_step(LOG_STEP):
            logger.warning("Auth failed: Token has expired.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has expired"
        )
    except (
        jwt.InvalidIssuerError,
        jwt.InvalidAudienceError,
        jwt.InvalidTokenError,
        ValidationError,
    ) as e:
        with log_step(LOG_STEP):
            logger.warning(f"Auth failed: Invalid token. {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token"
        )

    return UserProfile(
        id=claims.sub,
        role=claims.role,
        school_id=claims.school_id,
        branch_id=claims.branch_id,
        branch_name=claims.branch_name,
        class_id=claims.class_id,
        grade=claims.grade,
        email=claims.email,
        auth_token=claims.auth_code,
        is_admin=claims.is_admin,
        is_demo=claims.is_demo,
        permissions=frozenset(claims.permissions),
    )


try:
    _cipher_suite = Fernet(settings.ENCRYPTION_KEY.encode())
except Exception as e:
    logger.error(f"Failed to initialize Fernet cipher: {e}. Is ENCRYPTION_KEY valid?")
    raise


def encrypt(plaintext: str) -> str:
    """
    Encrypts a plaintext string.
    """
    try:
        token = _cipher_suite.encrypt(plaintext.encode())
        return token.decode()
    except Exception as e:
        logger.error(f"Encryption failed: {e}")
        raise


def decrypt(ciphertext: str) -> str:
    """
    Decrypts a ciphertext string. Returns an empty string when the
    ciphertext was produced with a different key.
    """
    try:
        decrypted_bytes = _cipher_suite.decrypt(ciphertext.encode())
        return decrypted_bytes.decode()
    except InvalidToken:
        logger.error("Decryption failed: Invalid token or key.")
        return ""
