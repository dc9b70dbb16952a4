"""Account lookup and password persistence behind a narrow interface.

The reset flow and the account service only ever call ``find_by_email``,
``create`` and ``update_password_hash``; the SQL and Mongo backends below are
interchangeable.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
import logging

from bson import ObjectId
from bson.errors import InvalidId
from pymongo.errors import DuplicateKeyError, PyMongoError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import CredentialStoreError, DuplicateEmailError
from db.models.user import User as UserModel
from services.otp import normalize_email
from utils.db import safe_commit

logger = logging.getLogger(__name__)


@dataclass
class UserRecord:
    id: str
    name: str
    email: str
    hashed_password: str
    created_at: Optional[datetime] = None

    def public(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class CredentialStore:
    async def find_by_email(self, email: str) -> Optional[UserRecord]:
        raise NotImplementedError

    async def find_by_id(self, user_id: str) -> Optional[UserRecord]:
        raise NotImplementedError

    async def create(self, name: str, email: str, hashed_password: str) -> UserRecord:
        raise NotImplementedError

    async def update_password_hash(self, email: str, hashed_password: str) -> bool:
        """Return False when no account matches the email."""
        raise NotImplementedError


def _from_row(row: UserModel) -> UserRecord:
    return UserRecord(
        id=str(row.id),
        name=row.name,
        email=row.email,
        hashed_password=row.hashed_password,
        created_at=row.created_at,
    )


class SQLCredentialStore(CredentialStore):
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _fetch(self, email: str) -> Optional[UserModel]:
        try:
            result = await self.db.execute(select(UserModel).where(UserModel.email == normalize_email(email)))
        except SQLAlchemyError as e:
            raise CredentialStoreError("User lookup failed") from e
        return result.scalars().first()

    async def find_by_email(self, email: str) -> Optional[UserRecord]:
        row = await self._fetch(email)
        return _from_row(row) if row else None

    async def find_by_id(self, user_id: str) -> Optional[UserRecord]:
        try:
            pk = int(user_id)
        except (TypeError, ValueError):
            return None
        try:
            row = await self.db.get(UserModel, pk)
        except SQLAlchemyError as e:
            raise CredentialStoreError("User lookup failed") from e
        return _from_row(row) if row else None

    async def create(self, name: str, email: str, hashed_password: str) -> UserRecord:
        row = UserModel(name=name, email=normalize_email(email), hashed_password=hashed_password)
        self.db.add(row)
        await safe_commit(self.db, error_message=f"Could not create account for {email}")
        await self.db.refresh(row)
        return _from_row(row)

    async def update_password_hash(self, email: str, hashed_password: str) -> bool:
        row = await self._fetch(email)
        if not row:
            return False
        row.hashed_password = hashed_password
        await safe_commit(self.db, error_message="Could not update password")
        return True


def _from_doc(doc: dict) -> UserRecord:
    created = doc.get("created_at")
    if isinstance(created, str):
        created = datetime.fromisoformat(created)
    return UserRecord(
        id=str(doc.get("_id")),
        name=doc.get("name", ""),
        email=doc.get("email", ""),
        hashed_password=doc.get("hashed_password", ""),
        created_at=created,
    )


class MongoCredentialStore(CredentialStore):
    def __init__(self, mongo_db):
        self.mongo = mongo_db

    async def find_by_email(self, email: str) -> Optional[UserRecord]:
        try:
            doc = await self.mongo.users.find_one({"email": normalize_email(email)})
        except PyMongoError as e:
            raise CredentialStoreError("User lookup failed") from e
        return _from_doc(doc) if doc else None

    async def find_by_id(self, user_id: str) -> Optional[UserRecord]:
        try:
            oid = ObjectId(user_id)
        except (InvalidId, TypeError):
            return None
        try:
            doc = await self.mongo.users.find_one({"_id": oid})
        except PyMongoError as e:
            raise CredentialStoreError("User lookup failed") from e
        return _from_doc(doc) if doc else None

    async def create(self, name: str, email: str, hashed_password: str) -> UserRecord:
        doc = {
            "name": name,
            "email": normalize_email(email),
            "hashed_password": hashed_password,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            result = await self.mongo.users.insert_one(doc)
        except DuplicateKeyError as e:
            raise DuplicateEmailError(f"Could not create account for {email}") from e
        except PyMongoError as e:
            raise CredentialStoreError(f"Could not create account for {email}") from e
        doc["_id"] = result.inserted_id
        return _from_doc(doc)

    async def update_password_hash(self, email: str, hashed_password: str) -> bool:
        try:
            result = await self.mongo.users.update_one(
                {"email": normalize_email(email)},
                {"$set": {"hashed_password": hashed_password, "updated_at": datetime.now(timezone.utc).isoformat()}},
            )
        except PyMongoError as e:
            raise CredentialStoreError("Could not update password") from e
        return result.matched_count > 0
