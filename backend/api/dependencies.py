from functools import lru_cache
from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from core.config import settings
from core.security import TokenIssuer, bearer_scheme
from db.mongodb import get_mongo_db
from db.session import get_db_session
from services.credential_store import CredentialStore, MongoCredentialStore, SQLCredentialStore
from services.password_reset import PasswordResetService
from services.state_store import EphemeralStateStore, build_state_store
from services.user_service import AccountService
from utils.email import NotificationSender, build_notification_sender
import logging

logger = logging.getLogger(__name__)


@lru_cache
def get_state_store() -> EphemeralStateStore:
    # One store per process; all instances must share it when Redis-backed
    return build_state_store()


@lru_cache
def get_notifier() -> NotificationSender:
    return build_notification_sender()


def get_credential_store(db: Optional[AsyncSession] = Depends(get_db_session)) -> CredentialStore:
    if settings.USE_MONGO:
        mongo = get_mongo_db()
        if mongo is None:
            raise RuntimeError("USE_MONGO=true but MongoDB is not configured")
        return MongoCredentialStore(mongo)
    return SQLCredentialStore(db)


def get_token_issuer(store: EphemeralStateStore = Depends(get_state_store)) -> TokenIssuer:
    return TokenIssuer(store)


def get_reset_service(
    store: EphemeralStateStore = Depends(get_state_store),
    credentials: CredentialStore = Depends(get_credential_store),
    notifier: NotificationSender = Depends(get_notifier),
) -> PasswordResetService:
    return PasswordResetService(store, credentials, notifier)


def get_account_service(
    credentials: CredentialStore = Depends(get_credential_store),
    tokens: TokenIssuer = Depends(get_token_issuer),
) -> AccountService:
    return AccountService(credentials, tokens)


def get_bearer_token(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> str:
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthenticated.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


async def get_current_identity(
    token: str = Depends(get_bearer_token),
    tokens: TokenIssuer = Depends(get_token_issuer),
) -> dict:
    identity = await tokens.current_identity(token)
    if not identity:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity
