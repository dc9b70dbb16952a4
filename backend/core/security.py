from datetime import datetime, timedelta, timezone
from typing import Optional
import uuid
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi.security import HTTPBearer
from core.config import settings
from services.state_store import EphemeralStateStore
import logging

logger = logging.getLogger(__name__)

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Bearer scheme (used by OpenAPI 'Authorize' button); missing header is handled by get_current_user
bearer_scheme = HTTPBearer(auto_error=False)

def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash"""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError) as e:
        logger.warning(f"Password hash could not be verified: {e}")
        return False

def get_password_hash(password: str) -> str:
    """Generate password hash"""
    return pwd_context.hash(password)

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token with a unique token id (jti)"""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire, "jti": uuid.uuid4().hex})
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt

def decode_token(token: str) -> Optional[dict]:
    """Decode a JWT without consulting the revocation list"""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        if payload.get("sub") is None or payload.get("jti") is None:
            return None
        return payload
    except JWTError as e:
        logger.warning(f"JWT decode failed: {e}")
        return None

def revoked_key(jti: str) -> str:
    return f"revoked_token_{jti}"


class TokenIssuer:
    """Issues, validates and invalidates bearer tokens.

    Invalidated token ids are kept in the ephemeral state store until the
    token would have expired anyway.
    """

    def __init__(self, store: EphemeralStateStore, expires_minutes: Optional[int] = None):
        self.store = store
        self.expires_minutes = settings.ACCESS_TOKEN_EXPIRE_MINUTES if expires_minutes is None else expires_minutes

    @property
    def expires_in(self) -> int:
        return int(self.expires_minutes) * 60

    def issue(self, identity: dict) -> str:
        return create_access_token(identity, timedelta(minutes=self.expires_minutes))

    async def invalidate(self, token: str) -> bool:
        payload = decode_token(token)
        if not payload:
            return False
        remaining = float(payload["exp"]) - datetime.now(timezone.utc).timestamp()
        if remaining > 0:
            await self.store.put(revoked_key(payload["jti"]), True, remaining)
        logger.info(f"Token {payload['jti']} invalidated for user {payload.get('sub')}")
        return True

    async def current_identity(self, token: str) -> Optional[dict]:
        payload = decode_token(token)
        if not payload:
            return None
        if await self.store.get(revoked_key(payload["jti"])):
            logger.info(f"Rejected revoked token {payload['jti']}")
            return None
        return payload
